"""Service wiring: change feed, sweeps, and the audit timer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable

from .audit import DEFAULT_AUDIT_INTERVAL, AuditReporter
from .cache import LastAppliedCache
from .catalog import ManagedCatalog
from .directory_protocol import DirectoryProtocol
from .exceptions import TransientAPIError
from .linker import IdentityLinker, SweepResult
from .models import ChangeEvent, ExternalEntity, Record
from .reconciler import Reconciler, relevant_record
from .scheduler import DEFAULT_DEBOUNCE_SECONDS, ReconciliationScheduler
from .store_protocol import RecordStoreProtocol

logger = logging.getLogger(__name__)


class SyncService:
    """
    Keeps guild roles in line with the records table.

    All record-driven work for a member goes through one per-member
    scheduler, so change events, joins and links never race each other.
    """

    def __init__(
        self,
        store: RecordStoreProtocol,
        directory: DirectoryProtocol,
        catalog: ManagedCatalog,
        *,
        audit: AuditReporter | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        audit_interval_seconds: float = DEFAULT_AUDIT_INTERVAL,
    ) -> None:
        self.store = store
        self.directory = directory
        self.catalog = catalog
        self.cache = LastAppliedCache()
        self.reconciler = Reconciler(directory, catalog, self.cache)
        self.scheduler = ReconciliationScheduler(self.reconciler.reconcile, debounce_seconds)
        self.linker = IdentityLinker(store, directory, submit=self.submit)
        self.audit = audit if audit is not None else AuditReporter(store)
        self.audit_interval_seconds = audit_interval_seconds

    def submit(self, record: Record, *, force: bool = False) -> None:
        """Queue a linked record for reconciliation under its member's key."""
        if record.external_id is None:
            return
        self.scheduler.schedule(record.external_id, record, force=force)

    async def handle_event(self, event: ChangeEvent) -> None:
        record = relevant_record(event, self.catalog)
        if record is None:
            return
        self.submit(record)

    async def consume(self, events: AsyncIterable[ChangeEvent]) -> None:
        """Dispatch loop: feed every change event through the relevance filter."""
        async for event in events:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Failed to dispatch %s event", event.kind.value)

    async def on_entity_join(self, entity: ExternalEntity) -> None:
        """Sync a member that just joined: reconcile if linked, else try to link."""
        try:
            record = await self.store.get_record_by_external_id(entity.id)
        except TransientAPIError as e:
            logger.warning("Cannot look up joining member %s: %s", entity.id, e)
            return
        if record is not None:
            # Leaving clears roles, so any cached signature is stale.
            self.submit(record, force=True)
            return
        await self.linker.try_link(entity)

    async def startup_sweep(self) -> int:
        """
        Queue every linked record once, ignoring the last-applied cache.

        Returns:
            Number of records queued
        """
        try:
            records = await self.store.list_linked()
        except TransientAPIError as e:
            logger.error("Startup fetch failed: %s", e)
            return 0

        for record in records:
            self.submit(record, force=True)
        logger.info("Startup sweep: %d linked records queued", len(records))
        return len(records)

    async def link_sweep(self) -> SweepResult:
        return await self.linker.sweep()

    async def run(self, events: AsyncIterable[ChangeEvent]) -> None:
        """
        Run until cancelled.

        The feed is consumed from the start, concurrently with the link sweep
        and the startup sweep; the audit runs on its own timer.
        """
        feed_task = asyncio.create_task(self.consume(events))
        audit_task = asyncio.create_task(self.audit.run(self.audit_interval_seconds))
        try:
            await self.link_sweep()
            await self.startup_sweep()
            await feed_task
        finally:
            for task in (feed_task, audit_task):
                task.cancel()
            await asyncio.gather(feed_task, audit_task, return_exceptions=True)
            await self.scheduler.close()

    async def close(self) -> None:
        await self.scheduler.close()
