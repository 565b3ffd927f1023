"""Managed-attribute catalog.

Maps record fields to the Discord roles rolesync is allowed to manage.
Roles outside the catalog are never added or removed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

# Tier roles used when no catalog file is configured.
DEFAULT_TIER_ROLE_IDS = {
    "1": "1409930511744368700",
    "2": "1409930635929456640",
    "3": "1409930709816184882",
    "4": "1409930791844315186",
}


def normalize_value(value: Any) -> str:
    """
    Return the lookup form of a raw field value.

    Strings are trimmed and upper-cased; integral numbers (including the
    ``Decimal`` values DynamoDB returns) become their decimal string.

    Raises:
        TypeError: If the value is not a string or a number
    """
    if isinstance(value, bool):
        raise TypeError(f"expected a string or number, got {type(value).__name__}")
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return str(int(value))
        return str(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        return value.strip().upper()
    raise TypeError(f"expected a string or number, got {type(value).__name__}")


@dataclass(frozen=True)
class Category:
    """
    One exclusive category: at most one of its roles applies to a record.

    ``fields`` is in precedence order; the first non-empty field decides.
    ``values`` and ``aliases`` are keyed by normalized value.
    """

    name: str
    fields: tuple[str, ...]
    values: Mapping[str, str]
    aliases: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, d: dict[str, Any]) -> Category:
        fields = d.get("fields")
        if fields is None:
            fields = [d.get("field", name)]
        if isinstance(fields, str):
            fields = [fields]
        if not fields:
            raise ValueError(f"category {name!r} needs at least one field")

        values = {normalize_value(k): str(v) for k, v in (d.get("values") or {}).items()}
        if not values:
            raise ValueError(f"category {name!r} has no values")

        aliases: dict[str, str] = {}
        for raw, canonical in (d.get("aliases") or {}).items():
            target = normalize_value(canonical)
            if target not in values:
                raise ValueError(
                    f"category {name!r}: alias {raw!r} points at unknown value {canonical!r}"
                )
            aliases[normalize_value(raw)] = target

        return cls(name=name, fields=tuple(str(f) for f in fields), values=values, aliases=aliases)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"fields": list(self.fields), "values": dict(self.values)}
        if self.aliases:
            result["aliases"] = dict(self.aliases)
        return result

    def canonical(self, raw: Any) -> str:
        """Fold a raw value onto its canonical value (may still be unknown)."""
        normalized = normalize_value(raw)
        return self.aliases.get(normalized, normalized)

    def tag_for(self, raw: Any) -> str | None:
        """Return the role for a raw value, or None if the value is unknown."""
        return self.values.get(self.canonical(raw))


@dataclass(frozen=True)
class ManagedCatalog:
    """Immutable catalog of every role rolesync may add or remove."""

    categories: tuple[Category, ...] = ()
    baseline: frozenset[str] = frozenset()
    flags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        seen: dict[str, str] = {}
        owners: list[tuple[str, str]] = [(tag, "baseline") for tag in self.baseline]
        owners += [(tag, f"flag {name}") for name, tag in self.flags.items()]
        for category in self.categories:
            owners += [(tag, f"category {category.name}") for tag in set(category.values.values())]
        for tag, owner in owners:
            if tag in seen and seen[tag] != owner:
                raise ValueError(f"tag {tag} is declared by both {seen[tag]} and {owner}")
            seen[tag] = owner

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ManagedCatalog:
        categories = tuple(
            Category.from_dict(name, val or {}) for name, val in (d.get("categories") or {}).items()
        )
        baseline = frozenset(str(tag) for tag in (d.get("baseline") or []))
        flags = {str(name): str(tag) for name, tag in (d.get("flags") or {}).items()}
        catalog = cls(categories=categories, baseline=baseline, flags=flags)
        if not catalog.all_managed_ids:
            raise ValueError("catalog manages no roles")
        return catalog

    @classmethod
    def from_yaml(cls, yaml_str: str) -> ManagedCatalog:
        import yaml

        data = yaml.safe_load(yaml_str)
        if not isinstance(data, dict):
            raise ValueError("catalog document must be a mapping")
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> ManagedCatalog:
        """Tier-only catalog: ``tier`` 1-4 (or ``T1``-``T4``)."""
        return cls.from_dict(
            {
                "categories": {
                    "tier": {
                        "fields": ["tier"],
                        "values": DEFAULT_TIER_ROLE_IDS,
                        "aliases": {f"T{n}": n for n in DEFAULT_TIER_ROLE_IDS},
                    }
                }
            }
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "categories": {c.name: c.to_dict() for c in self.categories},
        }
        if self.baseline:
            result["baseline"] = sorted(self.baseline)
        if self.flags:
            result["flags"] = dict(self.flags)
        return result

    @property
    def all_managed_ids(self) -> frozenset[str]:
        ids: set[str] = set(self.baseline)
        ids.update(self.flags.values())
        for category in self.categories:
            ids.update(category.values.values())
        return frozenset(ids)

    @property
    def tracked_fields(self) -> frozenset[str]:
        """Record fields whose changes can alter the desired state."""
        names: set[str] = set(self.flags)
        for category in self.categories:
            names.update(category.fields)
        return frozenset(names)

    def managed(self, tag_ids: frozenset[str] | set[str]) -> frozenset[str]:
        """Restrict a role set to the roles this catalog manages."""
        return frozenset(tag_ids) & self.all_managed_ids
