"""Identity linking.

Resolves records without a Discord id by matching member names against
the record's handle. Matching is an ordered list of strategies, each pure
and total; the first strategy that yields a result wins. Exact matching
runs before case-insensitive matching, so a case-exact handle beats a
looser one. Ambiguous matches are never guessed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .directory_protocol import DirectoryProtocol
from .exceptions import TransientAPIError
from .models import ExternalEntity, Record
from .store_protocol import RecordStoreProtocol

logger = logging.getLogger(__name__)


def candidate_names(entity: ExternalEntity) -> list[str]:
    """
    Name-like strings for a member, in matching priority order.

    Username, ``username#discriminator`` (legacy tags only), global display
    name, then guild nickname; trimmed, blanks dropped, duplicates removed.
    """
    raw: list[str | None] = [entity.username]
    if entity.username and entity.discriminator:
        raw.append(f"{entity.username}#{entity.discriminator}")
    raw.extend([entity.display_name, entity.nickname])

    names: list[str] = []
    for name in raw:
        text = (name or "").strip()
        if text and text not in names:
            names.append(text)
    return names


class Ambiguous(Exception):  # noqa: N818
    """A candidate name matched more than one record."""

    def __init__(self, name: str, keys: list[str]) -> None:
        self.name = name
        self.keys = keys
        super().__init__(f"{name!r} matches records {', '.join(keys)}")


class MatchStrategy(Protocol):
    name: str

    def __call__(self, candidates: Sequence[str], records: Sequence[Record]) -> Record | None: ...


@dataclass(frozen=True)
class KeyedMatch:
    """
    Match candidates against record labels under a normalisation.

    Candidates are tried in order; the first one that matches exactly one
    record wins. A candidate matching several records raises ``Ambiguous``.
    """

    name: str
    normalize: Callable[[str], str]

    def __call__(self, candidates: Sequence[str], records: Sequence[Record]) -> Record | None:
        index: dict[str, list[Record]] = {}
        for record in records:
            if record.label:
                index.setdefault(self.normalize(record.label.strip()), []).append(record)

        for candidate in candidates:
            matches = index.get(self.normalize(candidate), [])
            if len(matches) > 1:
                raise Ambiguous(candidate, sorted(r.key for r in matches))
            if matches:
                return matches[0]
        return None


ExactMatch = KeyedMatch("exact", lambda s: s)
CaseInsensitiveMatch = KeyedMatch("case-insensitive", str.casefold)

DEFAULT_STRATEGIES: tuple[MatchStrategy, ...] = (ExactMatch, CaseInsensitiveMatch)


def match_entity(
    entity: ExternalEntity,
    records: Sequence[Record],
    strategies: Iterable[MatchStrategy] = DEFAULT_STRATEGIES,
) -> Record | None:
    """
    Find the unlinked record for a member.

    Only records without an identifier are considered.

    Raises:
        Ambiguous: If the deciding strategy matched more than one record
    """
    candidates = candidate_names(entity)
    pool = [r for r in records if not r.is_linked]
    if not candidates or not pool:
        return None
    for strategy in strategies:
        record = strategy(candidates, pool)
        if record is not None:
            logger.debug("Matched %s to record %s (%s)", entity.id, record.key, strategy.name)
            return record
    return None


@dataclass
class SweepResult:
    """Result of a bulk link sweep."""

    linked: list[str] = field(default_factory=list)
    ambiguous: list[str] = field(default_factory=list)
    unmatched: int = 0
    errors: list[str] = field(default_factory=list)


class IdentityLinker:
    """
    Links unlinked records to directory members.

    Args:
        store: Record store (identifier write-back)
        directory: Directory (membership snapshot for sweeps)
        submit: Receives each newly linked record for reconciliation
        strategies: Matching strategies in priority order
    """

    def __init__(
        self,
        store: RecordStoreProtocol,
        directory: DirectoryProtocol,
        submit: Callable[[Record], None],
        strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.store = store
        self.directory = directory
        self.submit = submit
        self.strategies = strategies

    async def _link(self, entity: ExternalEntity, record: Record) -> Record | None:
        linked = await self.store.link_external_id(record.key, entity.id)
        if linked is None:
            logger.info("Record %s was linked concurrently; leaving it", record.key)
            return None
        logger.info("Linked record %s (%s) to member %s", record.key, record.label, entity.id)
        self.submit(linked)
        return linked

    async def try_link(
        self,
        entity: ExternalEntity,
        unlinked: Sequence[Record] | None = None,
    ) -> Record | None:
        """
        Link one member to its record, if exactly one record matches.

        Args:
            entity: The member (typically one that just joined)
            unlinked: Pre-fetched unlinked records (fetched when omitted)

        Returns:
            The newly linked record, or None
        """
        if entity.bot:
            return None
        try:
            if await self.store.get_record_by_external_id(entity.id) is not None:
                return None
            pool = unlinked if unlinked is not None else await self.store.list_unlinked()
            try:
                record = match_entity(entity, pool, self.strategies)
            except Ambiguous as e:
                logger.warning("Not linking member %s: %s", entity.id, e)
                return None
            if record is None:
                return None
            return await self._link(entity, record)
        except TransientAPIError as e:
            logger.warning("Linking member %s abandoned: %s", entity.id, e)
            return None

    async def sweep(self) -> SweepResult:
        """
        Link every unlinked record that exactly one member matches.

        A record claimed by several members, or a member matching several
        records, is left unlinked.
        """
        result = SweepResult()
        try:
            unlinked = await self.store.list_unlinked()
            if not unlinked:
                return result
            linked_ids = {r.external_id for r in await self.store.list_linked()}
            members = await self.directory.list_entities()
        except TransientAPIError as e:
            logger.warning("Link sweep abandoned: %s", e)
            result.errors.append(str(e))
            return result

        claims: dict[str, list[ExternalEntity]] = {}
        records_by_key = {r.key: r for r in unlinked}
        for member in members:
            if member.bot or member.id in linked_ids:
                continue
            try:
                record = match_entity(member, unlinked, self.strategies)
            except Ambiguous as e:
                logger.info("Member %s is ambiguous: %s", member.id, e)
                result.ambiguous.extend(k for k in e.keys if k not in result.ambiguous)
                continue
            if record is not None:
                claims.setdefault(record.key, []).append(member)

        for key, claimants in claims.items():
            if len(claimants) > 1:
                logger.info(
                    "Record %s is claimed by members %s; not linking",
                    key,
                    ", ".join(m.id for m in claimants),
                )
                if key not in result.ambiguous:
                    result.ambiguous.append(key)
                continue
            if key in result.ambiguous:
                continue
            try:
                if await self._link(claimants[0], records_by_key[key]) is not None:
                    result.linked.append(key)
            except TransientAPIError as e:
                logger.warning("Failed to link record %s: %s", key, e)
                result.errors.append(f"{key}: {e}")

        result.unmatched = len(unlinked) - len(result.linked) - len(result.ambiguous)
        logger.info(
            "Link sweep: %d linked, %d ambiguous, %d unmatched",
            len(result.linked),
            len(result.ambiguous),
            result.unmatched,
        )
        return result
