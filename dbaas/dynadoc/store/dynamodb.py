"""
AWS DynamoDB store client.

This module provides the production StoreClient backed by DynamoDB.
It uses aiobotocore for async operations.

Invariants:
    - One client per DynamoDbStore, created on connect()
    - botocore exceptions never escape; they become StoreError subclasses
    - Timeouts and botocore-level attempts come from DynamoDbConfig

How to change safely:
    - Test with DynamoDB Local before deploying to AWS
    - Keep error codes intact when wrapping; models branch on them
"""

from __future__ import annotations

import logging
from typing import Any

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .base import Response, StoreConnectionError, StoreError, StoreTimeoutError

logger = logging.getLogger(__name__)

_THROTTLING_CODES = (
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
)


class DynamoDbStore:
    """DynamoDB implementation of the StoreClient protocol.

    Attributes:
        config: DynamoDB configuration
        client: DynamoDB client (created on connect)

    Example:
        >>> config = DynamoDbConfig(endpoint_url="http://localhost:8000")
        >>> store = DynamoDbStore(config)
        >>> await store.connect()
        >>> await store.list_tables()
    """

    def __init__(self, config: Any) -> None:
        """Initialize the DynamoDB store.

        Args:
            config: DynamoDbConfig instance
        """
        self.config = config
        self._session = None
        self._client_ctx = None
        self._client = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether connected to DynamoDB."""
        return self._connected

    async def connect(self) -> None:
        """Connect to DynamoDB.

        Creates the session and client and checks the endpoint answers.

        Raises:
            StoreConnectionError: If connection fails
        """
        if self._connected:
            return

        self._session = get_session()

        client_kwargs: dict[str, Any] = {
            "region_name": self.config.region,
            "config": AioConfig(
                connect_timeout=self.config.connect_timeout,
                read_timeout=self.config.read_timeout,
                retries={"max_attempts": self.config.max_attempts, "mode": "standard"},
            ),
        }
        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url
        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        self._client_ctx = self._session.create_client("dynamodb", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()

        try:
            await self._client.list_tables(Limit=1)
        except (EndpointConnectionError, ConnectTimeoutError) as e:
            await self.close()
            raise StoreConnectionError(f"Failed to connect to DynamoDB endpoint: {e}") from e
        except ClientError as e:
            await self.close()
            error_code = e.response.get("Error", {}).get("Code", "")
            raise StoreConnectionError(f"DynamoDB error: {e}", code=error_code) from e

        self._connected = True
        logger.info(
            "Connected to DynamoDB",
            extra={
                "region": self.config.region,
                "endpoint": self.config.endpoint_url or "AWS",
            },
        )

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client_ctx is not None:
            try:
                await self._client_ctx.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(f"Error closing DynamoDB client: {e}")

        self._client_ctx = None
        self._client = None
        self._session = None
        self._connected = False
        logger.info("DynamoDB connection closed")

    async def _call(self, operation: str, request: dict[str, Any]) -> Response:
        """Issue one wire request and normalize failures.

        Raises:
            StoreConnectionError: If not connected or the endpoint is unreachable
            StoreTimeoutError: If the request timed out or was throttled
            StoreError: For other DynamoDB errors
        """
        if not self._client:
            raise StoreConnectionError("Not connected to DynamoDB", operation=operation)

        try:
            response = await getattr(self._client, operation)(**request)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            message = e.response.get("Error", {}).get("Message", str(e))
            if error_code in _THROTTLING_CODES:
                raise StoreTimeoutError(
                    f"DynamoDB {operation} throttled: {message}",
                    code=error_code,
                    operation=operation,
                ) from e
            raise StoreError(
                f"DynamoDB {operation} failed: {message}",
                code=error_code,
                operation=operation,
            ) from e
        except (EndpointConnectionError, ConnectTimeoutError) as e:
            raise StoreConnectionError(
                f"DynamoDB endpoint unreachable: {e}", operation=operation
            ) from e
        except ReadTimeoutError as e:
            raise StoreTimeoutError(f"DynamoDB {operation} timed out", operation=operation) from e
        except BotoCoreError as e:
            raise StoreError(f"DynamoDB {operation} failed: {e}", operation=operation) from e

        response.pop("ResponseMetadata", None)
        logger.debug(
            "DynamoDB request completed",
            extra={"operation": operation, "table": request.get("TableName")},
        )
        return response

    async def create_table(self, **request: Any) -> Response:
        return await self._call("create_table", request)

    async def list_tables(self, **request: Any) -> Response:
        return await self._call("list_tables", request)

    async def describe_table(self, **request: Any) -> Response:
        return await self._call("describe_table", request)

    async def update_table(self, **request: Any) -> Response:
        return await self._call("update_table", request)

    async def delete_table(self, **request: Any) -> Response:
        return await self._call("delete_table", request)

    async def get_item(self, **request: Any) -> Response:
        return await self._call("get_item", request)

    async def put_item(self, **request: Any) -> Response:
        return await self._call("put_item", request)

    async def delete_item(self, **request: Any) -> Response:
        return await self._call("delete_item", request)

    async def update_item(self, **request: Any) -> Response:
        return await self._call("update_item", request)

    async def batch_get_item(self, **request: Any) -> Response:
        return await self._call("batch_get_item", request)

    async def batch_write_item(self, **request: Any) -> Response:
        return await self._call("batch_write_item", request)

    async def scan(self, **request: Any) -> Response:
        return await self._call("scan", request)

    async def health_check(self) -> bool:
        """Check if the DynamoDB connection is healthy."""
        if not self._client:
            return False

        try:
            await self._client.list_tables(Limit=1)
            return True
        except (ClientError, BotoCoreError):
            return False
