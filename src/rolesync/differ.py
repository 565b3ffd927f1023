"""Diff engine for managed roles.

Compares a desired role set against a member's observed roles to produce
the minimal change. Only catalog roles take part; every other role is
invisible to the diff and therefore never touched.
"""

from __future__ import annotations

from dataclasses import dataclass

from .catalog import ManagedCatalog


@dataclass(frozen=True)
class TagDiff:
    """Roles to add and remove for one member."""

    to_add: frozenset[str] = frozenset()
    to_remove: frozenset[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    def to_dict(self) -> dict[str, list[str]]:
        return {"add": sorted(self.to_add), "remove": sorted(self.to_remove)}


def compute_diff(
    desired: frozenset[str],
    observed: frozenset[str],
    catalog: ManagedCatalog,
) -> TagDiff:
    """Compute the changes that turn ``observed`` into ``desired``.

    Args:
        desired: Roles the record should produce.
        observed: Full role set of the member, including unmanaged roles.
        catalog: Catalog bounding which roles may change.

    Returns:
        TagDiff with ``to_remove = managed(observed) - desired`` and
        ``to_add = desired - managed(observed)``.
    """
    managed_observed = catalog.managed(observed)
    managed_desired = catalog.managed(desired)
    return TagDiff(
        to_add=managed_desired - managed_observed,
        to_remove=managed_observed - managed_desired,
    )
