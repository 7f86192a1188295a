"""Contiguous, near-equal partitioning of the entry set into chunks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from merkle_aggregation.exceptions import EntryValidationError

if TYPE_CHECKING:
    from merkle_aggregation.models import Entry

logger = logging.getLogger(__name__)


def chunk_bounds(total: int, count: int) -> list[tuple[int, int]]:
    """Slice bounds for ``count`` contiguous chunks over ``total`` items.

    The first ``total % count`` chunks get one extra item, so sizes
    differ by at most one.
    """
    base, extra = divmod(total, count)
    return [
        (i * base + min(i, extra), (i + 1) * base + min(i + 1, extra))
        for i in range(count)
    ]


def validate_entries(entries: Sequence[Entry]) -> int:
    """Check a run's entry set and return its balance column count.

    Raises:
        EntryValidationError: On an empty set or mismatched column counts.
    """
    if not entries:
        raise EntryValidationError("Cannot aggregate an empty entry set")
    width = len(entries[0].balances)
    for position, entry in enumerate(entries):
        if len(entry.balances) != width:
            raise EntryValidationError(
                f"Entry {position} ('{entry.username}') has "
                f"{len(entry.balances)} balance columns, expected {width}"
            )
    return width


def partition(entries: Sequence[Entry], executor_count: int) -> list[list[Entry]]:
    """Split entries into contiguous chunks in original order.

    An executor count above the entry count is clamped to the entry count
    (no empty chunks).

    Raises:
        EntryValidationError: If the entry set is invalid or
            ``executor_count`` is not positive.
    """
    if executor_count < 1:
        raise EntryValidationError(
            f"Executor count must be at least 1, got {executor_count}"
        )
    validate_entries(entries)
    count = executor_count
    if count > len(entries):
        logger.warning(
            "Requested %d executors for %d entries, using %d",
            executor_count,
            len(entries),
            len(entries),
        )
        count = len(entries)
    return [list(entries[start:end]) for start, end in chunk_bounds(len(entries), count)]
