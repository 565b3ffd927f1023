"""DynamoDB record store."""

from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from . import schema
from .exceptions import StoreUnavailable
from .models import Record


class RecordStore:
    """
    Async DynamoDB repository for player records.

    Unlinked rows must omit the identifier attribute entirely: it is the
    key of the ``external_id_index`` GSI, so it cannot be stored as null or
    an empty string.
    """

    def __init__(
        self,
        table_name: str = schema.DEFAULT_TABLE_NAME,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.table_name = table_name
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = None

    async def __aenter__(self) -> "RecordStore":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def _get_client(self) -> Any:
        """Get or create the DynamoDB client."""
        if self._client is None:
            self._session = aioboto3.Session()
            self._client = await self._session.client(
                "dynamodb",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
            ).__aenter__()
        return self._client

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    def _to_record(self, item: dict[str, Any]) -> Record:
        return Record.from_item(
            schema.deserialize_item(item),
            key_attr=schema.KEY_ATTR,
            external_id_attr=schema.EXTERNAL_ID_ATTR,
            label_attr=schema.LABEL_ATTR,
        )

    # -------------------------------------------------------------------------
    # Table operations
    # -------------------------------------------------------------------------

    async def create_table(self) -> None:
        """Create the players table if it doesn't exist."""
        client = await self._get_client()
        try:
            await client.create_table(**schema.get_table_definition(self.table_name))
            waiter = client.get_waiter("table_exists")
            await waiter.wait(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise

    async def get_stream_arn(self) -> str | None:
        """Return the table's latest stream ARN, if streams are enabled."""
        client = await self._get_client()
        try:
            response = await client.describe_table(TableName=self.table_name)
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"Cannot describe table {self.table_name}", e) from e
        arn: str | None = response["Table"].get("LatestStreamArn")
        return arn

    async def put_item(self, item: dict[str, Any]) -> None:
        """Write a raw item (tests and local seeding)."""
        client = await self._get_client()
        await client.put_item(TableName=self.table_name, Item=schema.serialize_item(item))

    # -------------------------------------------------------------------------
    # Record operations
    # -------------------------------------------------------------------------

    async def get_record(self, key: str) -> Record | None:
        client = await self._get_client()
        try:
            response = await client.get_item(
                TableName=self.table_name,
                Key={schema.KEY_ATTR: {"S": key}},
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"Cannot read record {key}", e) from e
        item = response.get("Item")
        return self._to_record(item) if item else None

    async def get_record_by_external_id(self, external_id: str) -> Record | None:
        client = await self._get_client()
        try:
            response = await client.query(
                TableName=self.table_name,
                IndexName=schema.EXTERNAL_ID_INDEX,
                KeyConditionExpression="#eid = :eid",
                ExpressionAttributeNames={"#eid": schema.EXTERNAL_ID_ATTR},
                ExpressionAttributeValues={":eid": {"S": external_id}},
                Limit=1,
            )
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"Cannot look up identifier {external_id}", e) from e
        items = response.get("Items", [])
        return self._to_record(items[0]) if items else None

    async def _scan(self, params: dict[str, Any]) -> list[Record]:
        client = await self._get_client()
        records: list[Record] = []
        start_key: dict[str, Any] | None = None
        try:
            while True:
                kwargs: dict[str, Any] = {"TableName": self.table_name, **params}
                if start_key:
                    kwargs["ExclusiveStartKey"] = start_key
                response = await client.scan(**kwargs)
                records.extend(self._to_record(item) for item in response.get("Items", []))
                start_key = response.get("LastEvaluatedKey")
                if not start_key:
                    break
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"Cannot scan {self.table_name}", e) from e
        return records

    async def list_unlinked(self) -> list[Record]:
        records = await self._scan(schema.unlinked_filter())
        return [r for r in records if not r.is_linked]

    async def list_linked(self) -> list[Record]:
        records = await self._scan(schema.linked_filter())
        return [r for r in records if r.is_linked]

    async def link_external_id(self, key: str, external_id: str) -> Record | None:
        client = await self._get_client()
        try:
            response = await client.update_item(
                TableName=self.table_name,
                Key={schema.KEY_ATTR: {"S": key}},
                UpdateExpression="SET #eid = :eid",
                ConditionExpression=(
                    "attribute_exists(#pk) AND (attribute_not_exists(#eid) "
                    "OR attribute_type(#eid, :null) OR #eid = :blank)"
                ),
                ExpressionAttributeNames={
                    "#pk": schema.KEY_ATTR,
                    "#eid": schema.EXTERNAL_ID_ATTR,
                },
                ExpressionAttributeValues={
                    ":eid": {"S": external_id},
                    ":null": {"S": "NULL"},
                    ":blank": {"S": ""},
                },
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return None
            raise StoreUnavailable(f"Cannot link record {key}", e) from e
        except BotoCoreError as e:
            raise StoreUnavailable(f"Cannot link record {key}", e) from e
        return self._to_record(response["Attributes"])
