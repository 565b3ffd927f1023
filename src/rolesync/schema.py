"""DynamoDB schema definitions for the players table."""

from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

DEFAULT_TABLE_NAME = "players"

# Attribute names
KEY_ATTR = "player_id"
EXTERNAL_ID_ATTR = "discord_id"
LABEL_ATTR = "discord_handle"

# Index names
EXTERNAL_ID_INDEX = "external_id_index"

_deserializer = TypeDeserializer()
_serializer = TypeSerializer()


def deserialize_item(item: dict[str, Any]) -> dict[str, Any]:
    """Convert a DynamoDB attribute-value map into plain Python values."""
    return {name: _deserializer.deserialize(value) for name, value in item.items()}


def serialize_item(item: dict[str, Any]) -> dict[str, Any]:
    """Convert plain Python values into a DynamoDB attribute-value map."""
    return {name: _serializer.serialize(value) for name, value in item.items()}


def unlinked_filter() -> dict[str, Any]:
    """Scan parameters selecting rows whose identifier is missing, null, or blank."""
    return {
        "FilterExpression": (
            "attribute_not_exists(#eid) OR attribute_type(#eid, :null) OR #eid = :blank"
        ),
        "ExpressionAttributeNames": {"#eid": EXTERNAL_ID_ATTR},
        "ExpressionAttributeValues": {":null": {"S": "NULL"}, ":blank": {"S": ""}},
    }


def linked_filter() -> dict[str, Any]:
    """Scan parameters selecting rows with a string identifier."""
    return {
        "FilterExpression": "attribute_type(#eid, :string) AND #eid <> :blank",
        "ExpressionAttributeNames": {"#eid": EXTERNAL_ID_ATTR},
        "ExpressionAttributeValues": {":string": {"S": "S"}, ":blank": {"S": ""}},
    }


def get_table_definition(table_name: str) -> dict[str, Any]:
    """Get the CreateTable definition for the players table."""
    return {
        "TableName": table_name,
        "BillingMode": "PAY_PER_REQUEST",
        "AttributeDefinitions": [
            {"AttributeName": KEY_ATTR, "AttributeType": "S"},
            {"AttributeName": EXTERNAL_ID_ATTR, "AttributeType": "S"},
        ],
        "KeySchema": [
            {"AttributeName": KEY_ATTR, "KeyType": "HASH"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": EXTERNAL_ID_INDEX,
                "KeySchema": [
                    {"AttributeName": EXTERNAL_ID_ATTR, "KeyType": "HASH"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "StreamSpecification": {
            "StreamEnabled": True,
            "StreamViewType": "NEW_AND_OLD_IMAGES",
        },
    }
