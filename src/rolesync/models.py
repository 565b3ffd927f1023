"""Core models for rolesync."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def _blank_to_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Record:
    """
    One row of the players table.

    ``attributes`` holds every other column as read from the store; the
    catalog decides which of them are meaningful. Values may be missing,
    empty, or malformed.

    Attributes:
        key: Stable primary key of the row
        external_id: Discord user id, or None while unlinked
        label: Human-readable handle used for linking and audit reports
        attributes: Remaining columns, keyed by column name
    """

    key: str
    external_id: str | None = None
    label: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_linked(self) -> bool:
        return self.external_id is not None

    def get(self, name: str) -> Any:
        """Return a column value, or None when absent."""
        return self.attributes.get(name)

    def with_external_id(self, external_id: str) -> "Record":
        """Return a copy linked to ``external_id``."""
        return Record(
            key=self.key,
            external_id=external_id,
            label=self.label,
            attributes=self.attributes,
        )

    @classmethod
    def from_item(
        cls,
        item: Mapping[str, Any],
        *,
        key_attr: str,
        external_id_attr: str,
        label_attr: str,
    ) -> "Record":
        """
        Build a record from a deserialized DynamoDB item.

        Blank identifiers are treated as unset.
        """
        attributes = {
            name: value
            for name, value in item.items()
            if name not in (key_attr, external_id_attr, label_attr)
        }
        return cls(
            key=str(item[key_attr]),
            external_id=_blank_to_none(item.get(external_id_attr)),
            label=_blank_to_none(item.get(label_attr)),
            attributes=attributes,
        )


@dataclass(frozen=True)
class ExternalEntity:
    """
    A guild member as seen by the directory.

    ``tag_ids`` is the full role set, including roles rolesync never manages.
    """

    id: str
    username: str = ""
    discriminator: str | None = None
    display_name: str | None = None
    nickname: str | None = None
    tag_ids: frozenset[str] = frozenset()
    bot: bool = False


class ChangeKind(Enum):
    """Kind of change-feed event."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """
    One change-feed event for the records table.

    Insert events carry only ``after``, delete events only ``before``.
    """

    kind: ChangeKind
    before: Record | None = None
    after: Record | None = None

    @classmethod
    def insert(cls, after: Record) -> "ChangeEvent":
        return cls(kind=ChangeKind.INSERT, after=after)

    @classmethod
    def update(cls, before: Record | None, after: Record) -> "ChangeEvent":
        return cls(kind=ChangeKind.UPDATE, before=before, after=after)

    @classmethod
    def delete(cls, before: Record | None) -> "ChangeEvent":
        return cls(kind=ChangeKind.DELETE, before=before)
