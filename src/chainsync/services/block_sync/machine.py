"""
Block sync protocol as an explicit state machine.

The machine is data plus one pure function:
[SyncState][chainsync.services.block_sync.machine.SyncState] names the
states, [SyncEvent][chainsync.services.block_sync.machine.SyncEvent] carries
the outcome of a state's async step, and
[transition()][chainsync.services.block_sync.machine.transition] maps
``(state, event, context)`` to the next state and a new context. All I/O
lives in the driver
([BlockSync][chainsync.services.block_sync.service.BlockSync]), which runs
the step for the current state and feeds its result back as an event.

```text
idle --START_SYNC--> getting_last_block --HEAD_FETCHED--> syncing_blocks
syncing_blocks --ROUND_DONE--> checking
checking --ALWAYS--> syncing_blocks   (last round had blocks)
                 --> waiting          (caught up, watch on)
                 --> idle             (caught up, watch off)
waiting --TIMER_ELAPSED--> syncing_missing_blocks
syncing_missing_blocks --ROUND_DONE--> resetting_last_block
resetting_last_block --HEAD_FETCHED--> waiting
```
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import StrEnum

from chainsync.core.exceptions import InvalidTransitionError
from chainsync.models import Block

from .syncer import BatchRoundResult


class SyncState(StrEnum):
    """States of the block sync protocol. The initial state is ``IDLE``."""

    IDLE = "idle"
    GETTING_LAST_BLOCK = "getting_last_block"
    SYNCING_BLOCKS = "syncing_blocks"
    CHECKING = "checking"
    WAITING = "waiting"
    SYNCING_MISSING_BLOCKS = "syncing_missing_blocks"
    RESETTING_LAST_BLOCK = "resetting_last_block"


class SyncEventType(StrEnum):
    """Event kinds accepted by [transition()][chainsync.services.block_sync.machine.transition]."""

    START_SYNC = "start_sync"
    HEAD_FETCHED = "head_fetched"
    ROUND_DONE = "round_done"
    TIMER_ELAPSED = "timer_elapsed"
    ALWAYS = "always"


@dataclass(frozen=True, slots=True)
class SyncEvent:
    """An event and its payload.

    Attributes:
        type: Event kind.
        head: Chain head, for ``HEAD_FETCHED``.
        result: Round outcome, for ``ROUND_DONE``.
    """

    type: SyncEventType
    head: Block | None = None
    result: BatchRoundResult | None = None

    @classmethod
    def start(cls) -> SyncEvent:
        return cls(SyncEventType.START_SYNC)

    @classmethod
    def head_fetched(cls, head: Block) -> SyncEvent:
        return cls(SyncEventType.HEAD_FETCHED, head=head)

    @classmethod
    def round_done(cls, result: BatchRoundResult) -> SyncEvent:
        return cls(SyncEventType.ROUND_DONE, result=result)

    @classmethod
    def timer_elapsed(cls) -> SyncEvent:
        return cls(SyncEventType.TIMER_ELAPSED)

    @classmethod
    def always(cls) -> SyncEvent:
        return cls(SyncEventType.ALWAYS)


@dataclass(frozen=True, slots=True)
class SyncContext:
    """State threaded through the protocol, owned by one driver.

    Attributes:
        cursor: Committed cursor, exclusive lower bound of unsynced data.
        offset: Blocks per window.
        limit: Heights covered by one planning round.
        watch: Keep polling once caught up.
        last_block: Last known chain head, replaced on every head fetch.
        last_result: Outcome of the most recent round.
    """

    cursor: int = 0
    offset: int = 100
    limit: int = 10_000
    watch: bool = True
    last_block: Block | None = None
    last_result: BatchRoundResult | None = None

    @property
    def head_height(self) -> int:
        """Height of ``last_block``, ``0`` when no head is known yet."""
        return self.last_block.height if self.last_block is not None else 0


def _apply_result(context: SyncContext, result: BatchRoundResult | None) -> SyncContext:
    if result is None:
        raise InvalidTransitionError("ROUND_DONE event without a result", cursor=context.cursor)
    cursor = context.cursor
    if result.end_cursor is not None:
        cursor = max(cursor, result.end_cursor)
    return replace(context, last_result=result, cursor=cursor)


def _apply_head(context: SyncContext, head: Block | None) -> SyncContext:
    if head is None:
        raise InvalidTransitionError("HEAD_FETCHED event without a head", cursor=context.cursor)
    return replace(context, last_block=head)


def _from_checking(context: SyncContext) -> SyncState:
    if context.last_result is not None and context.last_result.has_blocks:
        return SyncState.SYNCING_BLOCKS
    if context.watch:
        return SyncState.WAITING
    return SyncState.IDLE


_Handler = Callable[[SyncEvent, SyncContext], tuple[SyncState, SyncContext]]

_TRANSITIONS: dict[tuple[SyncState, SyncEventType], _Handler] = {
    (SyncState.IDLE, SyncEventType.START_SYNC): lambda _e, ctx: (
        SyncState.GETTING_LAST_BLOCK,
        ctx,
    ),
    (SyncState.GETTING_LAST_BLOCK, SyncEventType.HEAD_FETCHED): lambda e, ctx: (
        SyncState.SYNCING_BLOCKS,
        _apply_head(ctx, e.head),
    ),
    (SyncState.SYNCING_BLOCKS, SyncEventType.ROUND_DONE): lambda e, ctx: (
        SyncState.CHECKING,
        _apply_result(ctx, e.result),
    ),
    (SyncState.CHECKING, SyncEventType.ALWAYS): lambda _e, ctx: (_from_checking(ctx), ctx),
    (SyncState.WAITING, SyncEventType.TIMER_ELAPSED): lambda _e, ctx: (
        SyncState.SYNCING_MISSING_BLOCKS,
        ctx,
    ),
    (SyncState.SYNCING_MISSING_BLOCKS, SyncEventType.ROUND_DONE): lambda e, ctx: (
        SyncState.RESETTING_LAST_BLOCK,
        _apply_result(ctx, e.result),
    ),
    (SyncState.RESETTING_LAST_BLOCK, SyncEventType.HEAD_FETCHED): lambda e, ctx: (
        SyncState.WAITING,
        _apply_head(ctx, e.head),
    ),
}


def transition(
    state: SyncState, event: SyncEvent, context: SyncContext
) -> tuple[SyncState, SyncContext]:
    """Compute the next state and context.

    A round result moves the cursor forward to its ``end_cursor``; a result
    without one keeps the prior cursor, and the cursor never moves back.

    Raises:
        InvalidTransitionError: If ``event`` is not accepted in ``state``.
    """
    handler = _TRANSITIONS.get((state, event.type))
    if handler is None:
        raise InvalidTransitionError(
            f"event {event.type} is not accepted in state {state}", cursor=context.cursor
        )
    return handler(event, context)
