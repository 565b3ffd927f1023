"""In-memory directory and store fakes for unit tests."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import replace

from rolesync.exceptions import DirectoryUnavailable, EntityNotFoundError, StoreUnavailable
from rolesync.models import ExternalEntity, Record

TIER_1 = "1409930511744368700"
TIER_2 = "1409930635929456640"
TIER_3 = "1409930709816184882"
TIER_4 = "1409930791844315186"
UNMANAGED = "999"


class FakeDirectory:
    """
    Directory holding members in memory.

    Every call is appended to ``calls`` as ``(method, *args)`` so tests can
    assert on ordering. ``delay`` makes each call yield to the event loop.
    """

    def __init__(
        self,
        members: Iterable[ExternalEntity] = (),
        *,
        immutable: Iterable[str] = (),
        delay: float = 0.0,
    ) -> None:
        self.members: dict[str, ExternalEntity] = {m.id: m for m in members}
        self.immutable = set(immutable)
        self.delay = delay
        self.calls: list[tuple[str, ...]] = []
        self.unavailable = False
        self.fail_remove = False
        self.fail_add = False

    async def _enter(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.unavailable:
            raise DirectoryUnavailable("directory down")

    def tags(self, entity_id: str) -> frozenset[str]:
        return self.members[entity_id].tag_ids

    @property
    def mutations(self) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] in ("add_tags", "remove_tags")]

    async def fetch_entity(self, entity_id: str) -> ExternalEntity | None:
        self.calls.append(("fetch_entity", entity_id))
        await self._enter()
        return self.members.get(entity_id)

    async def list_entities(self) -> list[ExternalEntity]:
        self.calls.append(("list_entities",))
        await self._enter()
        return list(self.members.values())

    async def can_mutate(self, tag_id: str) -> bool:
        self.calls.append(("can_mutate", tag_id))
        return tag_id not in self.immutable

    async def _mutate(self, method: str, entity_id: str, tag_ids: list[str], fail: bool) -> None:
        self.calls.append((method, entity_id, *tag_ids))
        await self._enter()
        if fail:
            raise DirectoryUnavailable(f"{method} failed")
        if entity_id not in self.members:
            raise EntityNotFoundError(entity_id)
        member = self.members[entity_id]
        if method == "add_tags":
            tags = member.tag_ids | set(tag_ids)
        else:
            tags = member.tag_ids - set(tag_ids)
        self.members[entity_id] = replace(member, tag_ids=frozenset(tags))

    async def add_tags(self, entity_id: str, tag_ids: Iterable[str], reason: str) -> None:
        await self._mutate("add_tags", entity_id, list(tag_ids), self.fail_add)

    async def remove_tags(self, entity_id: str, tag_ids: Iterable[str], reason: str) -> None:
        await self._mutate("remove_tags", entity_id, list(tag_ids), self.fail_remove)

    async def close(self) -> None:
        pass


class FakeStore:
    """Record store holding records in memory."""

    def __init__(self, records: Iterable[Record] = ()) -> None:
        self.records: dict[str, Record] = {r.key: r for r in records}
        self.unavailable = False
        self.link_calls: list[tuple[str, str]] = []

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailable("store down")

    async def get_record(self, key: str) -> Record | None:
        self._check()
        return self.records.get(key)

    async def get_record_by_external_id(self, external_id: str) -> Record | None:
        self._check()
        for record in self.records.values():
            if record.external_id == external_id:
                return record
        return None

    async def list_unlinked(self) -> list[Record]:
        self._check()
        return [r for r in self.records.values() if not r.is_linked]

    async def list_linked(self) -> list[Record]:
        self._check()
        return [r for r in self.records.values() if r.is_linked]

    async def link_external_id(self, key: str, external_id: str) -> Record | None:
        self._check()
        self.link_calls.append((key, external_id))
        record = self.records.get(key)
        if record is None or record.is_linked:
            return None
        linked = record.with_external_id(external_id)
        self.records[key] = linked
        return linked

    async def close(self) -> None:
        pass


def member(entity_id: str, *tags: str, **kwargs: object) -> ExternalEntity:
    """Shorthand for an ExternalEntity with roles."""
    return ExternalEntity(id=entity_id, tag_ids=frozenset(tags), **kwargs)  # type: ignore[arg-type]


def record(key: str, external_id: str | None = None, label: str | None = None, **attrs: object) -> Record:
    """Shorthand for a Record with attributes."""
    return Record(key=key, external_id=external_id, label=label, attributes=attrs)
