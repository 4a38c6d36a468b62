"""Batch planning for one sync round.

A round covers the heights ``[cursor, min(cursor + limit, head))`` and is cut
into consecutive windows of ``offset`` heights. The last window is shortened
so no window reaches past the bounded range, and therefore past the head
observed when the round was planned.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SyncWindow:
    """A contiguous height range fetched and persisted as one unit.

    Attributes:
        from_height: First height of the window (the node ``after`` cursor).
        to_height: Exclusive upper bound, strictly greater than ``from_height``.
    """

    from_height: int
    to_height: int

    def __post_init__(self) -> None:
        if self.from_height < 0:
            raise ValueError(f"from_height must be non-negative, got {self.from_height}")
        if self.to_height <= self.from_height:
            raise ValueError(
                f"to_height ({self.to_height}) must be greater than "
                f"from_height ({self.from_height})"
            )

    @property
    def size(self) -> int:
        """Number of blocks requested for this window."""
        return self.to_height - self.from_height


def plan_windows(cursor: int, offset: int, limit: int, head_height: int) -> list[SyncWindow]:
    """Plan the windows of one round.

    Args:
        cursor: Committed cursor, the exclusive lower bound of unsynced data.
        offset: Blocks per window.
        limit: Heights covered by the round.
        head_height: Last known head height (``0`` when no head is known).

    Returns:
        Windows in increasing height order. Empty when the cursor has
        reached the head.

    Raises:
        ValueError: If ``offset`` or ``limit`` is below 1 or ``cursor`` is
            negative.

    Examples:
        ```python
        plan_windows(cursor=0, offset=10, limit=25, head_height=22)
        # [SyncWindow(0, 10), SyncWindow(10, 20), SyncWindow(20, 22)]
        ```
    """
    if offset < 1:
        raise ValueError(f"offset must be >= 1, got {offset}")
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    if cursor < 0:
        raise ValueError(f"cursor must be non-negative, got {cursor}")

    end = min(cursor + limit, head_height)
    return [
        SyncWindow(start, min(start + offset, end))
        for start in range(cursor, end, offset)
    ]
