"""Core forwarding engine for telerelay.

Core contains album aggregation, rule resolution, rate-limited dispatch and
batch replay without any Telegram or storage-specific code.
"""
