"""Pytest fixtures for rolesync tests."""

import asyncio
from collections.abc import Awaitable
from unittest.mock import patch

import pytest
from moto import mock_aws

from rolesync.catalog import ManagedCatalog
from rolesync.store import RecordStore
from tests.fixtures.fakes import TIER_1, TIER_2, TIER_3, TIER_4


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    # moto only intercepts requests without an endpoint override
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """Mock DynamoDB and SNS for tests."""
    with mock_aws(), _patch_aiobotocore_response():
        yield


def _patch_aiobotocore_response():
    """
    Patch aiobotocore to work with moto's sync responses.

    Moto returns botocore.awsrequest.AWSResponse which has sync content,
    but aiobotocore expects async content.

    See: https://github.com/aio-libs/aiobotocore/discussions/1300
    """
    from aiobotocore import endpoint

    original_convert = endpoint.convert_to_response_dict

    async def patched_convert(http_response, operation_model):
        if hasattr(http_response, "_content") and not isinstance(http_response._content, Awaitable):
            fut: asyncio.Future[bytes] = asyncio.Future()
            fut.set_result(http_response.content)
            http_response._content = fut
        return await original_convert(http_response, operation_model)

    return patch.object(endpoint, "convert_to_response_dict", patched_convert)


@pytest.fixture
async def store(mock_dynamodb):
    """RecordStore over a fresh moto table."""
    store = RecordStore(table_name="test_players", region="us-east-1")
    await store.create_table()
    async with store:
        yield store


@pytest.fixture
def tier_catalog():
    """The built-in tier catalog."""
    return ManagedCatalog.default()


@pytest.fixture
def rich_catalog():
    """Catalog with an overridable category, a baseline role and a flag."""
    return ManagedCatalog.from_dict(
        {
            "categories": {
                "tier": {
                    "fields": ["tier_override", "tier"],
                    "values": {"1": TIER_1, "2": TIER_2, "3": TIER_3, "4": TIER_4},
                    "aliases": {"T1": "1", "T2": "2", "T3": "3", "T4": "4"},
                },
                "region": {
                    "values": {"NA": "5001", "EU": "5002"},
                },
            },
            "baseline": ["4000"],
            "flags": {"captain": "6000"},
        }
    )
