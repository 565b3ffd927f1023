"""Periodic report of records that are still unlinked.

A report is emitted only when the set of unlinked records changes, so an
operator sees each new situation once instead of every interval.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import TransientAPIError
from .models import Record
from .store_protocol import RecordStoreProtocol

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_INTERVAL = 300.0
DEFAULT_SAMPLE_SIZE = 20


@dataclass(frozen=True)
class AuditReport:
    """A bounded listing of unlinked records."""

    total: int
    sample: list[str] = field(default_factory=list)
    signature: str = ""

    @property
    def subject(self) -> str:
        if not self.total:
            return "rolesync: all records linked"
        return f"rolesync: {self.total} unlinked record(s)"

    def to_text(self) -> str:
        if not self.total:
            return "All records are linked to a Discord member."
        lines = [f"{self.total} record(s) have no Discord member linked:"]
        lines.extend(f"- {label}" for label in self.sample)
        remaining = self.total - len(self.sample)
        if remaining > 0:
            lines.append(f"... and {remaining} more")
        return "\n".join(lines)

    def as_dict(self) -> dict[str, Any]:
        return {"total": self.total, "sample": list(self.sample)}


def unlinked_signature(records: list[Record]) -> str:
    """Stable signature of a set of records: sorted keys, comma-joined."""
    return ",".join(sorted(r.key for r in records))


def _describe(record: Record) -> str:
    return f"{record.label} ({record.key})" if record.label else record.key


class AuditSink(Protocol):
    async def publish(self, report: AuditReport) -> None: ...


class SnsAuditSink:
    """Publishes reports to an SNS topic."""

    def __init__(
        self,
        topic_arn: str,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.topic_arn = topic_arn
        self.region = region
        self.endpoint_url = endpoint_url

    async def publish(self, report: AuditReport) -> None:
        session = aioboto3.Session()
        try:
            async with session.client(
                "sns", region_name=self.region, endpoint_url=self.endpoint_url
            ) as client:
                await client.publish(
                    TopicArn=self.topic_arn,
                    Subject=report.subject[:100],
                    Message=report.to_text(),
                )
        except (ClientError, BotoCoreError) as e:
            raise TransientAPIError(f"Cannot publish to {self.topic_arn}", e) from e


class AuditReporter:
    """
    Reports unlinked records when their set changes.

    Args:
        store: Record store to read
        sink: Report destination; reports are logged when None or failing
        sample_size: Maximum records listed in one report
    """

    def __init__(
        self,
        store: RecordStoreProtocol,
        sink: AuditSink | None = None,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
    ) -> None:
        self.store = store
        self.sink = sink
        self.sample_size = sample_size
        self._last_signature: str | None = None

    @property
    def last_signature(self) -> str | None:
        return self._last_signature

    async def snapshot(self) -> AuditReport:
        """
        Report every unlinked record now, without suppression.

        Raises:
            StoreUnavailable: If the store cannot be scanned
        """
        unlinked = await self.store.list_unlinked()
        ordered = sorted(unlinked, key=lambda r: ((r.label or "").casefold(), r.key))
        return AuditReport(
            total=len(unlinked),
            sample=[_describe(r) for r in ordered[: self.sample_size]],
            signature=unlinked_signature(unlinked),
        )

    async def audit_once(self) -> AuditReport | None:
        """
        Run one audit.

        Returns:
            The report that was emitted, or None if nothing changed or the
            store could not be read
        """
        try:
            report = await self.snapshot()
        except TransientAPIError as e:
            logger.warning("Audit skipped: %s", e)
            return None

        previous = self._last_signature
        self._last_signature = report.signature
        if report.signature == previous:
            return None
        if previous is None and not report.total:
            return None

        await self._publish(report)
        return report

    async def _publish(self, report: AuditReport) -> None:
        if self.sink is not None:
            try:
                await self.sink.publish(report)
                return
            except TransientAPIError as e:
                logger.warning("Audit sink unavailable (%s); logging report instead", e)
            except Exception:
                logger.exception("Audit sink failed; logging report instead")
        logger.warning("%s", report.to_text())

    async def run(self, interval_seconds: float = DEFAULT_AUDIT_INTERVAL) -> None:
        """Audit now, then every ``interval_seconds`` until cancelled."""
        while True:
            try:
                await self.audit_once()
            except Exception:
                logger.exception("Audit failed")
            await asyncio.sleep(interval_seconds)
