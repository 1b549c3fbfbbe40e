"""Dense integer ordering for sibling groups.

A sibling group (the lists of one board, the cards of one list) is passed in as
a mapping of ``key -> position``.  Every planning function returns a *writes*
mapping holding only the records whose position changes.  When the moved
record itself is written it is always the last entry, so a caller applying the
writes in order updates the moved record after all sibling shifts.

Positions are plain integers forming ``{0, ..., n-1}`` between operations; a
move touches only the span between the old and the new slot.
"""

from __future__ import annotations

from typing import Dict, Hashable, Mapping, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)


class PositionError(ValueError):
    """Raised when a requested position does not fit its sibling group."""


def _check_range(position: int, upper: int, what: str) -> None:
    if position < 0 or position > upper:
        raise PositionError(f"{what} {position} is outside 0..{upper}")


def append(positions: Mapping[K, int]) -> int:
    """Return the slot for a new record placed after every sibling."""
    return len(positions)


def delete_at(positions: Mapping[K, int], removed: int) -> Dict[K, int]:
    """Close the gap left by the record at ``removed``.

    ``positions`` is the group as read before the delete, removed record
    included.
    """
    _check_range(removed, len(positions) - 1, "position")
    return {key: pos - 1 for key, pos in positions.items() if pos > removed}


def move_within(positions: Mapping[K, int], key: K, to_position: int) -> Dict[K, int]:
    if key not in positions:
        raise PositionError(f"{key!r} is not part of the group")
    last = len(positions) - 1
    from_position = positions[key]
    _check_range(from_position, last, "current position")
    _check_range(to_position, last, "target position")
    if to_position == from_position:
        return {}

    writes: Dict[K, int] = {}
    if to_position > from_position:
        for other, pos in positions.items():
            if other != key and from_position < pos <= to_position:
                writes[other] = pos - 1
    else:
        for other, pos in positions.items():
            if other != key and to_position <= pos < from_position:
                writes[other] = pos + 1
    writes[key] = to_position
    return writes


def move_across(
    source: Mapping[K, int],
    key: K,
    dest: Mapping[K, int],
    to_position: int,
) -> Tuple[Dict[K, int], Dict[K, int]]:
    """Plan a transfer of ``key`` from ``source`` into ``dest`` at ``to_position``.

    Returns ``(source_writes, dest_writes)``.  Both halves must be applied
    together; either one alone leaves its group broken.  ``to_position`` may
    equal ``len(dest)`` to append.
    """
    if key not in source:
        raise PositionError(f"{key!r} is not part of the source group")
    if key in dest:
        raise PositionError(f"{key!r} already belongs to the destination group")
    from_position = source[key]
    _check_range(from_position, len(source) - 1, "current position")
    _check_range(to_position, len(dest), "target position")

    source_writes = {other: pos - 1 for other, pos in source.items() if pos > from_position}
    dest_writes = {other: pos + 1 for other, pos in dest.items() if pos >= to_position}
    dest_writes[key] = to_position
    return source_writes, dest_writes


def normalize(positions: Mapping[K, int]) -> Dict[K, int]:
    """Renumber a damaged group to ``0..n-1`` keeping its relative order.

    Records sharing a position keep the order they have in ``positions``.
    """
    ordered = sorted(positions.items(), key=lambda item: item[1])
    return {key: index for index, (key, pos) in enumerate(ordered) if pos != index}


def is_contiguous(positions: Mapping[K, int]) -> bool:
    return sorted(positions.values()) == list(range(len(positions)))


def apply(positions: Mapping[K, int], writes: Mapping[K, int]) -> Dict[K, int]:
    result = dict(positions)
    result.update(writes)
    return result
