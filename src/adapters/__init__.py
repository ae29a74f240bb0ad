"""Telethon, SQLite and console adapters for the core ports."""
