"""
Unit tests for the DynamoDB store client.

The aiobotocore session is replaced by a fake so no endpoint is needed.

Tests cover:
- Client construction from configuration
- Connection checks
- Error normalization
- Response cleanup
"""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from dbaas.dynadoc.config import DynamoDbConfig
from dbaas.dynadoc.store import dynamodb
from dbaas.dynadoc.store.base import (
    RESOURCE_NOT_FOUND,
    StoreConnectionError,
    StoreError,
    StoreTimeoutError,
)
from dbaas.dynadoc.store.dynamodb import DynamoDbStore


def client_error(code, operation="GetItem"):
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


class FakeClient:
    """Records calls; raises the queued error for an operation if any."""

    def __init__(self):
        self.calls = []
        self.errors = {}
        self.exited = False

    def __getattr__(self, operation):
        async def call(**request):
            self.calls.append((operation, request))
            if operation in self.errors:
                raise self.errors[operation]
            return {"ResponseMetadata": {"HTTPStatusCode": 200}, "TableNames": []}

        return call


class FakeClientContext:
    def __init__(self, client):
        self.client = client

    async def __aenter__(self):
        return self.client

    async def __aexit__(self, *exc_info):
        self.client.exited = True


class FakeSession:
    def __init__(self, client):
        self.client = client
        self.created = []

    def create_client(self, service, **kwargs):
        self.created.append((service, kwargs))
        return FakeClientContext(self.client)


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def session(client, monkeypatch):
    fake = FakeSession(client)
    monkeypatch.setattr(dynamodb, "get_session", lambda: fake)
    return fake


class TestDynamoDbStore:
    """Tests for DynamoDbStore."""

    @pytest.mark.asyncio
    async def test_connect_builds_client(self, session, client):
        config = DynamoDbConfig(
            region="eu-west-1",
            endpoint_url="http://localhost:8000",
            access_key_id="local",
            secret_access_key="local",
            read_timeout=3.0,
            max_attempts=2,
        )
        store = DynamoDbStore(config)

        await store.connect()

        assert store.is_connected
        ((service, kwargs),) = session.created
        assert service == "dynamodb"
        assert kwargs["region_name"] == "eu-west-1"
        assert kwargs["endpoint_url"] == "http://localhost:8000"
        assert kwargs["aws_access_key_id"] == "local"
        assert kwargs["config"].read_timeout == 3.0
        assert client.calls == [("list_tables", {"Limit": 1})]

    @pytest.mark.asyncio
    async def test_connect_without_endpoint(self, session):
        store = DynamoDbStore(DynamoDbConfig())
        await store.connect()

        ((_, kwargs),) = session.created
        assert "endpoint_url" not in kwargs
        assert "aws_access_key_id" not in kwargs

    @pytest.mark.asyncio
    async def test_connect_unreachable(self, session, client):
        client.errors["list_tables"] = EndpointConnectionError(endpoint_url="http://nowhere")
        store = DynamoDbStore(DynamoDbConfig())

        with pytest.raises(StoreConnectionError):
            await store.connect()

        assert not store.is_connected
        assert client.exited

    @pytest.mark.asyncio
    async def test_not_connected(self):
        store = DynamoDbStore(DynamoDbConfig())

        with pytest.raises(StoreConnectionError):
            await store.get_item(TableName="orgs", Key={"_id": {"S": "a"}})

    @pytest.mark.asyncio
    async def test_request_passthrough(self, session, client):
        store = DynamoDbStore(DynamoDbConfig())
        await store.connect()

        response = await store.scan(TableName="orgs", Limit=5)

        assert client.calls[-1] == ("scan", {"TableName": "orgs", "Limit": 5})
        assert "ResponseMetadata" not in response

    @pytest.mark.asyncio
    async def test_client_error_keeps_code(self, session, client):
        client.errors["describe_table"] = client_error(RESOURCE_NOT_FOUND, "DescribeTable")
        store = DynamoDbStore(DynamoDbConfig())
        await store.connect()

        with pytest.raises(StoreError) as exc_info:
            await store.describe_table(TableName="missing")

        assert exc_info.value.code == RESOURCE_NOT_FOUND
        assert exc_info.value.operation == "describe_table"

    @pytest.mark.asyncio
    async def test_throttling_is_timeout(self, session, client):
        client.errors["batch_write_item"] = client_error(
            "ProvisionedThroughputExceededException", "BatchWriteItem"
        )
        store = DynamoDbStore(DynamoDbConfig())
        await store.connect()

        with pytest.raises(StoreTimeoutError):
            await store.batch_write_item(RequestItems={})

    @pytest.mark.asyncio
    async def test_read_timeout(self, session, client):
        client.errors["get_item"] = ReadTimeoutError(endpoint_url="http://localhost:8000")
        store = DynamoDbStore(DynamoDbConfig())
        await store.connect()

        with pytest.raises(StoreTimeoutError):
            await store.get_item(TableName="orgs", Key={"_id": {"S": "a"}})

    @pytest.mark.asyncio
    async def test_close(self, session, client):
        store = DynamoDbStore(DynamoDbConfig())
        await store.connect()
        await store.close()

        assert client.exited
        assert not store.is_connected
        assert not await store.health_check()

    @pytest.mark.asyncio
    async def test_health_check(self, session, client):
        store = DynamoDbStore(DynamoDbConfig())
        await store.connect()

        assert await store.health_check()
        client.errors["list_tables"] = client_error("InternalServerError", "ListTables")
        assert not await store.health_check()
