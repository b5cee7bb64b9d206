"""
Base protocol and errors for store clients.

This module defines the StoreClient protocol that all backends implement.
Requests and responses are the plain DynamoDB wire bodies (TableName, Key,
ExpressionAttributeNames, ...), passed as keyword arguments, so that the
query builder's output can be sent to any backend unchanged.

Invariants:
    - Backends raise StoreError subclasses only, carrying the store's code
    - Batched requests are limited to 25 write items / 100 get keys
    - Scans are paginated with LastEvaluatedKey / ExclusiveStartKey

How to change safely:
    - Protocol changes require updating all implementations
    - Error codes must stay the DynamoDB ones; models branch on them
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import AdapterConfig

# Error codes models branch on
RESOURCE_IN_USE = "ResourceInUseException"
RESOURCE_NOT_FOUND = "ResourceNotFoundException"
CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"
VALIDATION_ERROR = "ValidationException"

Response = Dict[str, Any]


class StoreError(Exception):
    """Base exception for store operations.

    Attributes:
        code: Error code reported by the store (e.g. ResourceInUseException)
        operation: Wire operation that failed
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.operation = operation


class StoreConnectionError(StoreError):
    """Connection to the store failed."""
    pass


class StoreTimeoutError(StoreError):
    """Store operation timed out or was throttled."""
    pass


@runtime_checkable
class StoreClient(Protocol):
    """Protocol for key-value store backends.

    Every operation takes the DynamoDB request body as keyword arguments
    and returns the DynamoDB response body.

    Example:
        >>> store = DynamoDbStore(config.dynamodb)
        >>> await store.connect()
        >>> resp = await store.get_item(TableName="orgs", Key={"_id": {"S": "a"}})
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the store.

        Raises:
            StoreConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected."""
        ...

    @abstractmethod
    async def create_table(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def list_tables(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def describe_table(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def update_table(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def delete_table(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def get_item(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def put_item(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def delete_item(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def update_item(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def batch_get_item(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def batch_write_item(self, **request: Any) -> Response:
        ...

    @abstractmethod
    async def scan(self, **request: Any) -> Response:
        """Scan a table or index.

        Returns:
            {"Items": [...], "Count": n, "ScannedCount": n,
             "LastEvaluatedKey": {...}} (the key only when more pages exist)
        """
        ...


def create_store_client(config: "AdapterConfig") -> StoreClient:
    """Factory function to create a store client from configuration.

    Args:
        config: Adapter configuration

    Returns:
        Appropriate StoreClient implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .dynamodb import DynamoDbStore
    from .memory import InMemoryStore

    if config.store_backend == StoreBackend.DYNAMODB:
        return DynamoDbStore(config.dynamodb)
    elif config.store_backend == StoreBackend.MEMORY:
        return InMemoryStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
