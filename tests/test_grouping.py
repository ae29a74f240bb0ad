from __future__ import annotations

from typing import Optional

from core.grouping import albums_only, group_units
from core.models import ALBUM, SINGLE, MediaLogEntry


def _entry(message_id: int, group_id: Optional[int]) -> MediaLogEntry:
    return MediaLogEntry(
        chat_id=-100,
        message_id=message_id,
        topic_id=None,
        group_id=group_id,
        media_ref=f"ref-{message_id}",
        file_unique_id=f"photo:{message_id}",
        caption="",
        media_kind="photo",
    )


def _shape(units) -> list[tuple[str, list[int]]]:
    return [(unit.kind, [item.message_id for item in unit.items]) for unit in units]


def test_repeated_group_id_across_a_gap_does_not_merge() -> None:
    entries = [_entry(1, 11), _entry(2, 11), _entry(3, None), _entry(4, 11)]

    units = group_units(entries)

    assert _shape(units) == [(ALBUM, [1, 2]), (SINGLE, [3]), (ALBUM, [4])]


def test_adjacent_albums_with_different_groups_split() -> None:
    entries = [_entry(1, 11), _entry(2, 11), _entry(3, 22), _entry(4, 22), _entry(5, 22)]

    assert _shape(group_units(entries)) == [(ALBUM, [1, 2]), (ALBUM, [3, 4, 5])]


def test_grouping_is_deterministic_for_fixed_input() -> None:
    entries = [_entry(1, None), _entry(2, 8), _entry(3, 8), _entry(4, None), _entry(5, 9)]

    assert group_units(entries) == group_units(list(entries))


def test_albums_only_drops_singles() -> None:
    entries = [_entry(1, 11), _entry(2, 11), _entry(3, None), _entry(4, 22), _entry(5, 22)]

    units = albums_only(group_units(entries))

    assert [len(unit) for unit in units] == [2, 2]
    assert all(unit.is_album for unit in units)


def test_empty_input_has_no_units() -> None:
    assert group_units([]) == []
