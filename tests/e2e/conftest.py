"""
E2E test fixtures for dynadoc.

These tests require DynamoDB Local (or LocalStack) to be reachable, e.g.:

    docker run -p 8000:8000 amazon/dynamodb-local
"""

import os
import socket
import time
import uuid
from urllib.parse import urlparse

import pytest
import pytest_asyncio

from dbaas.dynadoc.config import AdapterConfig, DynamoDbConfig
from dbaas.dynadoc.database import clear, connect, disconnect

ENDPOINT = os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000")


def wait_for_service(host: str, port: int, timeout: int = 30) -> bool:
    """Wait for a service to become available."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            time.sleep(1)
    return False


@pytest.fixture(scope="session")
def dynamodb_endpoint() -> str:
    """Endpoint of the local DynamoDB, once it accepts connections."""
    url = urlparse(ENDPOINT)
    assert wait_for_service(url.hostname, url.port or 80), f"DynamoDB not reachable at {ENDPOINT}"
    return ENDPOINT


@pytest.fixture
def table_prefix() -> str:
    """Unique table prefix so runs never see each other's tables."""
    return f"e2e_{uuid.uuid4().hex[:8]}_"


@pytest_asyncio.fixture
async def store(dynamodb_endpoint, table_prefix):
    config = AdapterConfig(
        table_prefix=table_prefix,
        dynamodb=DynamoDbConfig(
            endpoint_url=dynamodb_endpoint,
            access_key_id="local",
            secret_access_key="local",
        ),
    )
    store = await connect(config)
    try:
        yield store
    finally:
        await clear(store, prefix=table_prefix)
        await disconnect(store)
