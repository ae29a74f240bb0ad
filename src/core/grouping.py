"""Rebuild delivery units from a chronological slice of the media log."""

from __future__ import annotations

from typing import Iterable, List, Optional

from core.models import DeliveryUnit, MediaLogEntry


def group_units(entries: Iterable[MediaLogEntry]) -> List[DeliveryUnit]:
    """Partition chronologically ordered entries into album and single units.

    This is a single linear pass: a maximal run of adjacent entries sharing a
    non-null group id becomes one album, an entry without a group id is a
    single. Entries with the same group id separated by anything else end up
    in different albums.
    """

    units: List[DeliveryUnit] = []
    run: List[MediaLogEntry] = []
    run_group: Optional[int] = None

    for entry in entries:
        if entry.group_id is not None and entry.group_id == run_group:
            run.append(entry)
            continue
        if run:
            units.append(DeliveryUnit.album(run))
            run = []
            run_group = None
        if entry.group_id is None:
            units.append(DeliveryUnit.single(entry))
        else:
            run = [entry]
            run_group = entry.group_id

    if run:
        units.append(DeliveryUnit.album(run))
    return units


def albums_only(units: Iterable[DeliveryUnit]) -> List[DeliveryUnit]:
    return [unit for unit in units if unit.is_album]
