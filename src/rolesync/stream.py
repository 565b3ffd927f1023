"""DynamoDB Streams change feed.

Turns stream records for the players table into typed ``ChangeEvent``s
and polls the table's stream shards for new records.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from . import schema
from .exceptions import StoreUnavailable
from .models import ChangeEvent, Record

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0

_EVENT_NAMES = {"INSERT", "MODIFY", "REMOVE"}


def _image_to_record(image: dict[str, Any] | None) -> Record | None:
    if not image or schema.KEY_ATTR not in image:
        return None
    return Record.from_item(
        schema.deserialize_item(image),
        key_attr=schema.KEY_ATTR,
        external_id_attr=schema.EXTERNAL_ID_ATTR,
        label_attr=schema.LABEL_ATTR,
    )


def parse_stream_record(record: dict[str, Any]) -> ChangeEvent | None:
    """
    Parse a DynamoDB stream record into a ChangeEvent.

    Args:
        record: Stream record with ``eventName`` and ``dynamodb`` images

    Returns:
        ChangeEvent, or None if the record is not a usable table change
    """
    event_name = record.get("eventName")
    if event_name not in _EVENT_NAMES:
        return None

    dynamodb_data = record.get("dynamodb", {})
    before = _image_to_record(dynamodb_data.get("OldImage"))
    after = _image_to_record(dynamodb_data.get("NewImage"))

    if event_name == "INSERT":
        return ChangeEvent.insert(after) if after else None
    if event_name == "MODIFY":
        return ChangeEvent.update(before, after) if after else None
    return ChangeEvent.delete(before)


class StreamReader:
    """
    Polls every open shard of a DynamoDB stream and yields ChangeEvents.

    Reading starts at ``LATEST``: events written while the process was down
    are not replayed (the startup sweep covers them). Closed shards are
    followed into their children from ``TRIM_HORIZON``.
    """

    def __init__(
        self,
        stream_arn: str,
        region: str | None = None,
        endpoint_url: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.stream_arn = stream_arn
        self.region = region
        self.endpoint_url = endpoint_url
        self.poll_interval = poll_interval
        self._session: aioboto3.Session | None = None
        self._client: Any = None
        self._iterators: dict[str, str] = {}
        self._seen_shards: set[str] = set()

    async def _get_client(self) -> Any:
        if self._client is None:
            self._session = aioboto3.Session()
            self._client = await self._session.client(
                "dynamodbstreams",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
            ).__aenter__()
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    async def _list_shards(self) -> list[dict[str, Any]]:
        client = await self._get_client()
        shards: list[dict[str, Any]] = []
        start: str | None = None
        while True:
            kwargs: dict[str, Any] = {"StreamArn": self.stream_arn}
            if start:
                kwargs["ExclusiveStartShardId"] = start
            response = await client.describe_stream(**kwargs)
            description = response["StreamDescription"]
            shards.extend(description.get("Shards", []))
            start = description.get("LastEvaluatedShardId")
            if not start:
                return shards

    async def _refresh_shards(self, first: bool) -> None:
        """Open iterators for shards not yet followed."""
        client = await self._get_client()
        for shard in await self._list_shards():
            shard_id = shard["ShardId"]
            if shard_id in self._seen_shards:
                continue
            is_open = "EndingSequenceNumber" not in shard.get("SequenceNumberRange", {})
            if first and not is_open:
                # Closed before we started; its records predate this process.
                self._seen_shards.add(shard_id)
                continue
            response = await client.get_shard_iterator(
                StreamArn=self.stream_arn,
                ShardId=shard_id,
                ShardIteratorType="LATEST" if first else "TRIM_HORIZON",
            )
            self._seen_shards.add(shard_id)
            self._iterators[shard_id] = response["ShardIterator"]

    async def events(self) -> AsyncIterator[ChangeEvent]:
        """Yield change events forever (until cancelled)."""
        try:
            await self._refresh_shards(first=True)
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"Cannot open stream {self.stream_arn}", e) from e

        client = await self._get_client()
        while True:
            closed = False
            for shard_id, iterator in list(self._iterators.items()):
                try:
                    response = await client.get_records(ShardIterator=iterator)
                except ClientError as e:
                    logger.warning("Failed to read shard %s: %s", shard_id, e)
                    if e.response["Error"]["Code"] == "ExpiredIteratorException":
                        # Reopened by the next refresh.
                        del self._iterators[shard_id]
                        self._seen_shards.discard(shard_id)
                        closed = True
                    continue
                except BotoCoreError as e:
                    logger.warning("Failed to read shard %s: %s", shard_id, e)
                    continue

                for raw in response.get("Records", []):
                    event = parse_stream_record(raw)
                    if event is not None:
                        yield event

                next_iterator = response.get("NextShardIterator")
                if next_iterator:
                    self._iterators[shard_id] = next_iterator
                else:
                    del self._iterators[shard_id]
                    closed = True

            if closed or not self._iterators:
                try:
                    await self._refresh_shards(first=False)
                except (ClientError, BotoCoreError) as e:
                    logger.warning("Failed to refresh stream shards: %s", e)

            await asyncio.sleep(self.poll_interval)
