"""Directory protocol for member/role backends.

The reconciliation engine only talks to the directory through this
protocol. ``DiscordDirectory`` is the production implementation; tests use
in-memory fakes.
"""

from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import ExternalEntity


@runtime_checkable
class DirectoryProtocol(Protocol):
    """
    Protocol for the external directory whose role assignments are managed.

    Errors:
        - ``DirectoryUnavailable`` when the directory cannot be reached
        - ``EntityNotFoundError`` when a mutation targets a missing member
        - ``TagPermissionError`` when a mutation is refused for a role
        - ``PartialMutationError`` when a mutation fails after some roles were
          applied
    """

    async def fetch_entity(self, entity_id: str) -> "ExternalEntity | None":
        """
        Fetch one member with its current role set, bypassing any cache.

        Returns:
            The member, or None if it is not in the directory
        """
        ...

    async def list_entities(self) -> "list[ExternalEntity]":
        """Return a snapshot of every member."""
        ...

    async def can_mutate(self, tag_id: str) -> bool:
        """
        Check whether the acting identity may add or remove a role.

        The answer reflects the current role hierarchy; implementations may
        cache it briefly but not indefinitely.
        """
        ...

    async def add_tags(self, entity_id: str, tag_ids: Iterable[str], reason: str) -> None:
        """
        Add roles to a member.

        Raises:
            PartialMutationError: If some roles were added before a failure
        """
        ...

    async def remove_tags(self, entity_id: str, tag_ids: Iterable[str], reason: str) -> None:
        """
        Remove roles from a member.

        Raises:
            PartialMutationError: If some roles were removed before a failure
        """
        ...

    async def close(self) -> None:
        """Release connections. Safe to call multiple times."""
        ...
