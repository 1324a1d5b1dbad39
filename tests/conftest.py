"""Pytest fixtures for limiter-registry tests."""

import asyncio
from collections.abc import Awaitable
from unittest.mock import patch

import fakeredis
import pytest
from moto import mock_aws

from limiter_registry import LimiterRegistry, MirrorStore, Repository

TEST_TABLE = "test-rate-limiters"
TEST_PREFIX = "rate_limiter:"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    # Unset AWS_ENDPOINT_URL to ensure moto intercepts requests
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """Mock DynamoDB for tests."""
    with mock_aws():
        yield


def _patch_aiobotocore_response():
    """
    Patch aiobotocore to work with moto's sync responses.

    Moto returns botocore.awsrequest.AWSResponse which has sync content,
    but aiobotocore expects async content. This patch wraps the response
    handling to convert sync content to async.

    See: https://github.com/aio-libs/aiobotocore/discussions/1300
    """
    from aiobotocore import endpoint

    original_convert = endpoint.convert_to_response_dict

    async def patched_convert(http_response, operation_model):
        # If content is not awaitable (moto's sync response), wrap it
        if hasattr(http_response, "_content") and not isinstance(http_response._content, Awaitable):
            fut: asyncio.Future[bytes] = asyncio.Future()
            fut.set_result(http_response.content)
            http_response._content = fut
        return await original_convert(http_response, operation_model)

    return patch.object(endpoint, "convert_to_response_dict", patched_convert)


@pytest.fixture
async def repo(mock_dynamodb):
    """Repository backed by a moto table."""
    with _patch_aiobotocore_response():
        repository = Repository(table_name=TEST_TABLE, region="us-east-1")
        await repository.create_table()
        yield repository
        await repository.close()


@pytest.fixture
async def redis_client():
    """Isolated in-memory Redis with Lua scripting."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def mirror(redis_client):
    """MirrorStore on the fake Redis client."""
    return MirrorStore(key_prefix=TEST_PREFIX, client=redis_client)


@pytest.fixture
async def registry(repo, mirror):
    """LimiterRegistry wired to moto DynamoDB and fake Redis."""
    registry = LimiterRegistry(store=repo, mirror=mirror)
    yield registry
    await registry.close()
