"""Record store protocol.

Defines the operations rolesync needs from the authoritative data store.
``RecordStore`` (DynamoDB) is the production implementation.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import Record


@runtime_checkable
class RecordStoreProtocol(Protocol):
    """
    Protocol for the records backend.

    All methods raise ``StoreUnavailable`` when the store cannot be reached.
    """

    async def get_record(self, key: str) -> "Record | None":
        """Point lookup by primary key."""
        ...

    async def get_record_by_external_id(self, external_id: str) -> "Record | None":
        """Point lookup by linked identifier."""
        ...

    async def list_unlinked(self) -> "list[Record]":
        """Return every record whose identifier is unset."""
        ...

    async def list_linked(self) -> "list[Record]":
        """Return every record whose identifier is set."""
        ...

    async def link_external_id(self, key: str, external_id: str) -> "Record | None":
        """
        Set a record's identifier if, and only if, it is currently unset.

        Returns:
            The updated record, or None if the record does not exist or was
            already linked (for example by a concurrent linker)
        """
        ...

    async def close(self) -> None:
        """Release connections. Safe to call multiple times."""
        ...
