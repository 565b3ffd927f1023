"""Per-entity debounce and serialization.

Bursts of changes for the same member collapse into one application of
the latest snapshot, and applications for the same member run strictly one
after another. Different members proceed concurrently.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .models import Record

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5


class TaskState(Enum):
    """Lifecycle of an entity's reconciliation."""

    IDLE = "idle"
    PENDING_DEBOUNCE = "pending_debounce"
    QUEUED = "queued"
    APPLYING = "applying"
    FAILED = "failed"


@dataclass
class ReconciliationState:
    """
    Scheduler bookkeeping for one entity key.

    Created on the first event for the key and dropped once its chain has
    settled with nothing pending.
    """

    key: str
    state: TaskState = TaskState.IDLE
    pending: Record | None = None
    pending_force: bool = False
    timer: asyncio.TimerHandle | None = None
    tail: "asyncio.Task[None] | None" = None
    applying: bool = False
    applied_count: int = 0
    failed_count: int = 0
    queued: int = 0


class ReconciliationScheduler:
    """
    Debounces and serializes reconciliations per entity key.

    Args:
        handler: Coroutine applying one record snapshot, called as
            ``handler(record, force=...)``
        debounce_seconds: Quiet period before a pending snapshot is queued
    """

    def __init__(
        self,
        handler: Callable[..., Awaitable[Any]],
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.handler = handler
        self.debounce_seconds = debounce_seconds
        self._states: dict[str, ReconciliationState] = {}
        self._closed = False

    def state(self, key: str) -> TaskState:
        entry = self._states.get(key)
        return entry.state if entry else TaskState.IDLE

    def __len__(self) -> int:
        return len(self._states)

    def schedule(self, key: str, record: Record, *, force: bool = False) -> None:
        """
        Schedule a record snapshot for an entity key.

        A call within the debounce window of a pending one replaces the
        pending snapshot and restarts the window. ``force`` sticks to the
        pending snapshot until it is applied.
        """
        if self._closed:
            logger.debug("Scheduler closed; dropping update for %s", key)
            return

        loop = asyncio.get_running_loop()
        entry = self._states.get(key)
        if entry is None:
            entry = self._states[key] = ReconciliationState(key=key)

        if entry.timer is not None:
            entry.timer.cancel()
        entry.pending = record
        entry.pending_force = entry.pending_force or force
        entry.timer = loop.call_later(self.debounce_seconds, self._fire, key)
        entry.state = TaskState.PENDING_DEBOUNCE

    def _fire(self, key: str) -> None:
        entry = self._states.get(key)
        if entry is None or entry.pending is None:
            return
        record = entry.pending
        force = entry.pending_force
        entry.pending = None
        entry.pending_force = False
        entry.timer = None
        entry.queued += 1
        entry.state = TaskState.APPLYING if entry.applying else TaskState.QUEUED
        entry.tail = asyncio.ensure_future(self._run_after(entry, entry.tail, record, force))

    async def _run_after(
        self,
        entry: ReconciliationState,
        previous: "asyncio.Task[None] | None",
        record: Record,
        force: bool,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        entry.queued -= 1
        entry.applying = True
        entry.state = TaskState.APPLYING
        try:
            await self.handler(record, force=force)
            entry.applied_count += 1
            entry.state = TaskState.IDLE
        except Exception:
            logger.exception("Reconciliation failed for %s", entry.key)
            entry.failed_count += 1
            entry.state = TaskState.FAILED
        finally:
            entry.applying = False

        if entry.pending is not None:
            entry.state = TaskState.PENDING_DEBOUNCE
        elif entry.queued:
            entry.state = TaskState.QUEUED
        elif entry.timer is None and self._states.get(entry.key) is entry:
            del self._states[entry.key]

    def flush(self) -> None:
        """Queue every pending snapshot now instead of waiting out its window."""
        for key, entry in list(self._states.items()):
            if entry.timer is not None:
                entry.timer.cancel()
                self._fire(key)

    async def drain(self) -> None:
        """Wait until no snapshot is pending and no application is running."""
        while self._states:
            if any(e.timer is not None for e in self._states.values()):
                await asyncio.sleep(min(max(self.debounce_seconds / 2, 0.01), 0.1))
                continue
            tails = {e.tail for e in self._states.values() if e.tail and not e.tail.done()}
            if not tails:
                break
            await asyncio.wait(tails)

    async def close(self) -> None:
        """Stop accepting work, apply what is pending, and wait for it."""
        self._closed = True
        self.flush()
        await self.drain()
