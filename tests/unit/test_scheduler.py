"""Tests for per-entity debounce and serialization."""

import asyncio

import pytest

from rolesync.scheduler import ReconciliationScheduler, TaskState
from tests.fixtures.fakes import record

DEBOUNCE = 0.05


class RecordingHandler:
    """Handler that records calls and tracks overlap per key."""

    def __init__(self, delay: float = 0.0, fail_on: set[str] | None = None) -> None:
        self.delay = delay
        self.fail_on = fail_on or set()
        self.calls: list[tuple[str, object, bool]] = []
        self.active: dict[str, int] = {}
        self.max_active: dict[str, int] = {}

    async def __call__(self, rec, *, force=False):
        key = rec.external_id
        self.active[key] = self.active.get(key, 0) + 1
        self.max_active[key] = max(self.max_active.get(key, 0), self.active[key])
        try:
            self.calls.append((key, rec.get("tier"), force))
            if self.delay:
                await asyncio.sleep(self.delay)
            if rec.get("tier") in self.fail_on:
                raise RuntimeError("boom")
        finally:
            self.active[key] -= 1


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def scheduler(handler):
    return ReconciliationScheduler(handler, debounce_seconds=DEBOUNCE)


class TestDebounce:
    """Tests for debounce behaviour."""

    async def test_latest_snapshot_wins(self, handler, scheduler):
        """Two events inside the window apply only the second snapshot."""
        scheduler.schedule("42", record("p1", "42", tier="1"))
        await asyncio.sleep(DEBOUNCE / 5)
        scheduler.schedule("42", record("p1", "42", tier="2"))

        assert scheduler.state("42") is TaskState.PENDING_DEBOUNCE
        await scheduler.drain()

        assert handler.calls == [("42", "2", False)]

    async def test_separate_windows_both_apply(self, handler, scheduler):
        scheduler.schedule("42", record("p1", "42", tier="1"))
        await scheduler.drain()
        scheduler.schedule("42", record("p1", "42", tier="2"))
        await scheduler.drain()

        assert [c[1] for c in handler.calls] == ["1", "2"]

    async def test_force_sticks_to_pending(self, handler, scheduler):
        """A forced snapshot stays forced when a newer one replaces it."""
        scheduler.schedule("42", record("p1", "42", tier="1"), force=True)
        scheduler.schedule("42", record("p1", "42", tier="2"))
        await scheduler.drain()

        assert handler.calls == [("42", "2", True)]

    async def test_flush_skips_window(self, handler):
        scheduler = ReconciliationScheduler(handler, debounce_seconds=60)
        scheduler.schedule("42", record("p1", "42", tier="1"))
        scheduler.flush()
        await scheduler.drain()
        assert handler.calls == [("42", "1", False)]


class TestSerialization:
    """Tests for per-key ordering."""

    async def test_same_key_never_overlaps(self):
        handler = RecordingHandler(delay=DEBOUNCE * 2)
        scheduler = ReconciliationScheduler(handler, debounce_seconds=DEBOUNCE)

        scheduler.schedule("42", record("p1", "42", tier="1"))
        await asyncio.sleep(DEBOUNCE * 1.5)  # first is now applying
        assert scheduler.state("42") is TaskState.APPLYING
        scheduler.schedule("42", record("p1", "42", tier="2"))
        await scheduler.drain()

        assert [c[1] for c in handler.calls] == ["1", "2"]
        assert handler.max_active["42"] == 1

    async def test_different_keys_run_concurrently(self):
        handler = RecordingHandler(delay=DEBOUNCE * 2)
        scheduler = ReconciliationScheduler(handler, debounce_seconds=DEBOUNCE)

        scheduler.schedule("1", record("a", "1", tier="1"))
        scheduler.schedule("2", record("b", "2", tier="1"))
        await asyncio.sleep(DEBOUNCE * 1.5)

        assert scheduler.state("1") is TaskState.APPLYING
        assert scheduler.state("2") is TaskState.APPLYING
        await scheduler.drain()

    async def test_failure_does_not_block_chain(self, caplog):
        handler = RecordingHandler(fail_on={"1"})
        scheduler = ReconciliationScheduler(handler, debounce_seconds=DEBOUNCE)

        scheduler.schedule("42", record("p1", "42", tier="1"))
        await scheduler.drain()
        scheduler.schedule("42", record("p1", "42", tier="2"))
        await scheduler.drain()

        assert [c[1] for c in handler.calls] == ["1", "2"]
        assert "Reconciliation failed for 42" in caplog.text


class TestLifecycle:
    """Tests for state bookkeeping."""

    async def test_state_dropped_when_settled(self, scheduler):
        assert scheduler.state("42") is TaskState.IDLE
        scheduler.schedule("42", record("p1", "42", tier="1"))
        assert len(scheduler) == 1

        await scheduler.drain()

        assert len(scheduler) == 0
        assert scheduler.state("42") is TaskState.IDLE

    async def test_close_applies_pending_and_rejects_new(self, handler):
        scheduler = ReconciliationScheduler(handler, debounce_seconds=60)
        scheduler.schedule("42", record("p1", "42", tier="1"))

        await scheduler.close()
        scheduler.schedule("42", record("p1", "42", tier="2"))
        await scheduler.drain()

        assert handler.calls == [("42", "1", False)]
        assert len(scheduler) == 0
