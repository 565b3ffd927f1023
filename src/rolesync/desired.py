"""Desired-state computation.

Maps one record to the set of managed roles it should hold. The
computation is pure and total: malformed fields are logged and skipped,
never raised.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any

from .catalog import Category, ManagedCatalog
from .exceptions import MalformedRecordError
from .models import Record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolved:
    """The category resolved to a role."""

    tag_id: str


@dataclass(frozen=True)
class Absent:
    """Every field of the category is missing or empty."""


@dataclass(frozen=True)
class Invalid:
    """The deciding field holds a value the category does not know."""

    field: str
    value: Any
    reason: str


Resolution = Resolved | Absent | Invalid


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def resolve_category(record: Record, category: Category) -> Resolution:
    """
    Resolve one category for a record.

    The first non-empty field in precedence order decides; an unknown
    value there does not fall through to lower-precedence fields.
    """
    for name in category.fields:
        raw = record.get(name)
        if _is_empty(raw):
            continue
        try:
            tag_id = category.tag_for(raw)
        except TypeError as e:
            return Invalid(field=name, value=raw, reason=str(e))
        if tag_id is None:
            return Invalid(field=name, value=raw, reason=f"is not a known {category.name}")
        return Resolved(tag_id)
    return Absent()


def validate_flag(record: Record, name: str) -> bool:
    """
    Return the boolean value of a flag field (absent means False).

    Raises:
        MalformedRecordError: If the field holds a non-boolean value
    """
    raw = record.get(name)
    if raw is None:
        return False
    if not isinstance(raw, bool):
        raise MalformedRecordError(record.key, name, raw, "is not a boolean")
    return raw


def compute_desired(record: Record, catalog: ManagedCatalog) -> frozenset[str]:
    """
    Compute the managed roles a record should hold.

    Args:
        record: The record to evaluate
        catalog: Catalog of managed roles

    Returns:
        Frozen set of role ids, always a subset of ``catalog.all_managed_ids``
    """
    desired: set[str] = set(catalog.baseline)

    for category in catalog.categories:
        resolution = resolve_category(record, category)
        if isinstance(resolution, Resolved):
            desired.add(resolution.tag_id)
        elif isinstance(resolution, Invalid):
            logger.warning(
                "Record %s: ignoring %s=%r (%s)",
                record.key,
                resolution.field,
                resolution.value,
                resolution.reason,
            )

    for name, tag_id in catalog.flags.items():
        try:
            if validate_flag(record, name):
                desired.add(tag_id)
        except MalformedRecordError as e:
            logger.warning("Ignoring malformed flag: %s", e)

    return frozenset(desired)


def desired_signature(desired: frozenset[str]) -> str:
    """Stable signature of a desired role set."""
    joined = ",".join(sorted(desired))
    return "sha256:" + hashlib.sha256(joined.encode()).hexdigest()[:16]
