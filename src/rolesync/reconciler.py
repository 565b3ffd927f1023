"""Reconciliation path: record -> desired state -> diff -> apply."""

from __future__ import annotations

import logging

from .applier import ApplyResult, apply_changes
from .cache import LastAppliedCache
from .catalog import ManagedCatalog
from .desired import compute_desired, desired_signature
from .differ import TagDiff, compute_diff
from .directory_protocol import DirectoryProtocol
from .exceptions import TransientAPIError
from .models import ChangeEvent, ChangeKind, Record

logger = logging.getLogger(__name__)


def _as_text(value: object) -> str:
    return "" if value is None else str(value)


def relevant_record(event: ChangeEvent, catalog: ManagedCatalog) -> Record | None:
    """
    Filter change-feed events down to records that need reconciling.

    - INSERT: relevant when the new row is linked.
    - UPDATE: relevant when the new row is linked and its identifier or any
      tracked field changed.
    - DELETE: never relevant; roles are not stripped on delete.
    """
    if event.kind is ChangeKind.DELETE:
        return None

    after = event.after
    if after is None or not after.is_linked:
        return None

    if event.kind is ChangeKind.INSERT:
        return after

    before = event.before
    if before is None:
        return after
    if _as_text(before.external_id) != _as_text(after.external_id):
        return after
    for name in catalog.tracked_fields:
        if _as_text(before.get(name)) != _as_text(after.get(name)):
            return after
    return None


class Reconciler:
    """
    Brings one member's managed roles in line with one record.

    Every call re-reads the member before writing. Errors are logged and
    swallowed per call so one member's failure never affects another.
    """

    def __init__(
        self,
        directory: DirectoryProtocol,
        catalog: ManagedCatalog,
        cache: LastAppliedCache | None = None,
    ) -> None:
        self.directory = directory
        self.catalog = catalog
        self.cache = cache if cache is not None else LastAppliedCache()

    async def plan(self, record: Record) -> TagDiff | None:
        """
        Compute the diff for a record without applying it.

        Returns:
            The diff, or None if the record is unlinked or its member is missing
        """
        if record.external_id is None:
            return None
        entity = await self.directory.fetch_entity(record.external_id)
        if entity is None:
            return None
        return compute_diff(compute_desired(record, self.catalog), entity.tag_ids, self.catalog)

    async def reconcile(self, record: Record, *, force: bool = False) -> ApplyResult | None:
        """
        Reconcile one record.

        Args:
            record: Record snapshot to apply
            force: Ignore the last-applied cache (sweeps)

        Returns:
            ApplyResult, or None when nothing was attempted
        """
        entity_id = record.external_id
        if entity_id is None:
            return None

        desired = compute_desired(record, self.catalog)
        signature = desired_signature(desired)
        if not force and self.cache.matches(entity_id, signature):
            logger.debug("Record %s unchanged since last apply; skipping", record.key)
            return None

        try:
            entity = await self.directory.fetch_entity(entity_id)
            if entity is None:
                logger.info("Member %s (record %s) not in guild; skipping", entity_id, record.key)
                self.cache.invalidate(entity_id)
                return None

            diff = compute_diff(desired, entity.tag_ids, self.catalog)
            return await apply_changes(
                self.directory, entity, diff, cache=self.cache, signature=signature
            )
        except TransientAPIError as e:
            logger.warning("Abandoning sync of record %s: %s", record.key, e)
            self.cache.invalidate(entity_id)
            return None
