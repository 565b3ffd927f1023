"""Applies role changes to the directory.

Removals are always submitted before additions so a member never holds
two roles of an exclusive category at once. Each step is best-effort and
independent of the other; nothing is retried here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .cache import LastAppliedCache
from .differ import TagDiff
from .directory_protocol import DirectoryProtocol
from .exceptions import (
    EntityNotFoundError,
    PartialMutationError,
    TagPermissionError,
    TransientAPIError,
)
from .models import ExternalEntity

logger = logging.getLogger(__name__)

REMOVE_REASON = "rolesync: remove stale role(s)"
ADD_REASON = "rolesync: add desired role(s)"


@dataclass
class ApplyResult:
    """Result of applying one diff to one member."""

    entity_id: str
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    denied: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)

    @property
    def failed(self) -> bool:
        """True when every submitted step failed."""
        return bool(self.errors) and not self.changed


async def _filter_mutable(
    directory: DirectoryProtocol,
    entity_id: str,
    tag_ids: frozenset[str],
    result: ApplyResult,
) -> list[str]:
    allowed: list[str] = []
    for tag_id in sorted(tag_ids):
        if await directory.can_mutate(tag_id):
            allowed.append(tag_id)
        else:
            logger.warning("Cannot manage role %s for %s; skipping it", tag_id, entity_id)
            result.denied.append(tag_id)
    return allowed


async def apply_changes(
    directory: DirectoryProtocol,
    entity: ExternalEntity,
    diff: TagDiff,
    *,
    cache: LastAppliedCache | None = None,
    signature: str | None = None,
) -> ApplyResult:
    """Apply a diff to a member.

    Args:
        directory: Directory to mutate.
        entity: Member as freshly observed.
        diff: Roles to add and remove.
        cache: Last-applied cache to update (optional).
        signature: Desired-state signature recorded in the cache on success.

    Returns:
        ApplyResult with the roles actually changed, denied, and any errors.

    Raises:
        DirectoryUnavailable: If the role hierarchy cannot be read.
    """
    result = ApplyResult(entity_id=entity.id)

    if diff.is_empty:
        if cache is not None and signature is not None:
            cache.record(entity.id, signature)
        return result

    to_remove = await _filter_mutable(directory, entity.id, diff.to_remove, result)
    to_add = await _filter_mutable(directory, entity.id, diff.to_add, result)

    if to_remove:
        try:
            await directory.remove_tags(entity.id, to_remove, REMOVE_REASON)
            result.removed.extend(to_remove)
        except PartialMutationError as e:
            logger.warning("Partly removed %s from %s: %s", to_remove, entity.id, e)
            result.removed.extend(e.applied)
            result.errors.append(f"remove {','.join(to_remove)}: {e}")
        except (EntityNotFoundError, TagPermissionError, TransientAPIError) as e:
            logger.warning("Failed to remove %s from %s: %s", to_remove, entity.id, e)
            result.errors.append(f"remove {','.join(to_remove)}: {e}")

    if to_add:
        try:
            await directory.add_tags(entity.id, to_add, ADD_REASON)
            result.added.extend(to_add)
        except PartialMutationError as e:
            logger.warning("Partly added %s to %s: %s", to_add, entity.id, e)
            result.added.extend(e.applied)
            result.errors.append(f"add {','.join(to_add)}: {e}")
        except (EntityNotFoundError, TagPermissionError, TransientAPIError) as e:
            logger.warning("Failed to add %s to %s: %s", to_add, entity.id, e)
            result.errors.append(f"add {','.join(to_add)}: {e}")

    if cache is not None:
        if result.failed:
            cache.invalidate(entity.id)
        elif signature is not None:
            cache.record(entity.id, signature)

    if result.changed:
        logger.info(
            "Synced roles for %s: +%s -%s", entity.id, result.added or "[]", result.removed or "[]"
        )

    return result
