"""Discord REST directory.

Reads guild members and roles and mutates member roles over the Discord
HTTP API. Gateway connections are out of scope: member-join notifications
are delivered to ``SyncService.on_entity_join`` by whatever owns the
gateway session.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import httpx
from httpx_retries import Retry, RetryTransport

from .cache import TtlCache
from .exceptions import (
    DirectoryUnavailable,
    EntityNotFoundError,
    PartialMutationError,
    TagPermissionError,
)
from .models import ExternalEntity

logger = logging.getLogger(__name__)

DISCORD_API_URL = "https://discord.com/api/v10"
MEMBER_PAGE_SIZE = 1000
DEFAULT_HIERARCHY_TTL = 60.0
_DEFAULT_TIMEOUT_SECONDS = 10.0

# Permission bits
ADMINISTRATOR = 1 << 3
MANAGE_ROLES = 1 << 28


@dataclass(frozen=True)
class RoleInfo:
    """Position and ownership of one guild role."""

    id: str
    position: int
    managed: bool = False
    permissions: int = 0


@dataclass(frozen=True)
class RoleHierarchy:
    """Guild roles plus the acting bot's standing in the hierarchy."""

    roles: dict[str, RoleInfo]
    top_position: int
    can_manage_roles: bool

    def can_mutate(self, tag_id: str) -> tuple[bool, str]:
        role = self.roles.get(tag_id)
        if role is None:
            return False, "role does not exist"
        if role.managed:
            return False, "role is managed by an integration"
        if not self.can_manage_roles:
            return False, "bot lacks Manage Roles"
        if role.position >= self.top_position:
            return False, "role is not below the bot's highest role"
        return True, ""


def parse_member(payload: dict[str, Any]) -> ExternalEntity:
    """Convert a Discord guild member payload into an ExternalEntity."""
    user = payload.get("user") or {}
    discriminator = user.get("discriminator")
    return ExternalEntity(
        id=str(user["id"]),
        username=user.get("username") or "",
        discriminator=discriminator if discriminator not in (None, "", "0") else None,
        display_name=user.get("global_name"),
        nickname=payload.get("nick"),
        tag_ids=frozenset(str(r) for r in payload.get("roles", [])),
        bot=bool(user.get("bot", False)),
    )


def _default_transport() -> httpx.AsyncBaseTransport:
    retry = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=[429, 502, 503, 504],
        respect_retry_after_header=True,
    )
    return RetryTransport(retry=retry)


class DiscordDirectory:
    """
    Discord guild as a role directory.

    Rate limiting (429) is handled by the HTTP transport, which honours
    ``Retry-After``; the reconciliation engine itself never retries.
    """

    def __init__(
        self,
        token: str,
        guild_id: str,
        *,
        base_url: str = DISCORD_API_URL,
        hierarchy_ttl: float = DEFAULT_HIERARCHY_TTL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.guild_id = guild_id
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bot {token}",
                "User-Agent": "rolesync (https://github.com/rolesync/rolesync, 0.1)",
            },
            timeout=_DEFAULT_TIMEOUT_SECONDS,
            transport=transport or _default_transport(),
        )
        self._hierarchy: TtlCache[RoleHierarchy] = TtlCache(ttl_seconds=hierarchy_ttl)
        self._bot_id: str | None = None

    async def __aenter__(self) -> DiscordDirectory:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        entity_id: str | None = None,
        tag_id: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise DirectoryUnavailable(f"{method} {path} failed: {e}", e) from e

        if response.status_code == 404 and entity_id is not None:
            raise EntityNotFoundError(entity_id)
        if response.status_code == 403 and tag_id is not None:
            raise TagPermissionError(tag_id, "forbidden by Discord")
        if response.is_error:
            raise DirectoryUnavailable(f"{method} {path} returned {response.status_code}")
        return response

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    async def fetch_entity(self, entity_id: str) -> ExternalEntity | None:
        try:
            response = await self._request(
                "GET", f"/guilds/{self.guild_id}/members/{entity_id}", entity_id=entity_id
            )
        except EntityNotFoundError:
            return None
        return parse_member(response.json())

    async def list_entities(self) -> list[ExternalEntity]:
        members: list[ExternalEntity] = []
        after = "0"
        while True:
            response = await self._request(
                "GET",
                f"/guilds/{self.guild_id}/members",
                params={"limit": MEMBER_PAGE_SIZE, "after": after},
            )
            page = [parse_member(p) for p in response.json()]
            members.extend(page)
            if len(page) < MEMBER_PAGE_SIZE:
                return members
            after = max(page, key=lambda m: int(m.id)).id

    # -------------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------------

    async def _load_hierarchy(self) -> RoleHierarchy:
        if self._bot_id is None:
            me = await self._request("GET", "/users/@me")
            self._bot_id = str(me.json()["id"])

        roles_response = await self._request("GET", f"/guilds/{self.guild_id}/roles")
        roles = {
            str(r["id"]): RoleInfo(
                id=str(r["id"]),
                position=int(r.get("position", 0)),
                managed=bool(r.get("managed", False)),
                permissions=int(r.get("permissions", "0")),
            )
            for r in roles_response.json()
        }

        bot_member = await self.fetch_entity(self._bot_id)
        bot_roles = [roles[r] for r in (bot_member.tag_ids if bot_member else ()) if r in roles]
        everyone = roles.get(self.guild_id)

        permissions = everyone.permissions if everyone else 0
        for role in bot_roles:
            permissions |= role.permissions

        return RoleHierarchy(
            roles=roles,
            top_position=max((r.position for r in bot_roles), default=0),
            can_manage_roles=bool(permissions & (ADMINISTRATOR | MANAGE_ROLES)),
        )

    async def can_mutate(self, tag_id: str) -> bool:
        hierarchy = await self._hierarchy.get(self._load_hierarchy)
        allowed, reason = hierarchy.can_mutate(tag_id)
        if not allowed:
            logger.debug("Role %s is not mutable: %s", tag_id, reason)
        return allowed

    async def _mutate(
        self, method: str, entity_id: str, tag_ids: Iterable[str], reason: str
    ) -> None:
        applied: list[str] = []
        for tag_id in tag_ids:
            try:
                await self._request(
                    method,
                    f"/guilds/{self.guild_id}/members/{entity_id}/roles/{tag_id}",
                    entity_id=entity_id,
                    tag_id=tag_id,
                    headers={"X-Audit-Log-Reason": reason},
                )
            except (DirectoryUnavailable, EntityNotFoundError, TagPermissionError) as e:
                if isinstance(e, TagPermissionError):
                    # The hierarchy changed under us.
                    self._hierarchy.invalidate()
                if applied:
                    raise PartialMutationError(entity_id, applied, e) from e
                raise
            applied.append(tag_id)

    async def add_tags(self, entity_id: str, tag_ids: Iterable[str], reason: str) -> None:
        await self._mutate("PUT", entity_id, tag_ids, reason)

    async def remove_tags(self, entity_id: str, tag_ids: Iterable[str], reason: str) -> None:
        await self._mutate("DELETE", entity_id, tag_ids, reason)
