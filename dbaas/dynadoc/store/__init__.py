"""
Store client abstraction for dynadoc.

This module provides the pluggable key-value backend models talk to:
- AWS DynamoDB (production, and DynamoDB Local for development)
- In-memory (for testing)

Clients speak the DynamoDB wire format directly; the query builder's
request bodies are sent unchanged.

Invariants:
    - Backend errors surface as StoreError subclasses with the store's code
    - Clients never retry on their own beyond the configured botocore attempts

How to change safely:
    - New backends must implement the StoreClient protocol
    - Run the model integration tests against every backend
"""

from .base import (
    CONDITIONAL_CHECK_FAILED,
    RESOURCE_IN_USE,
    RESOURCE_NOT_FOUND,
    VALIDATION_ERROR,
    StoreClient,
    StoreConnectionError,
    StoreError,
    StoreTimeoutError,
    create_store_client,
)
from .dynamodb import DynamoDbStore
from .memory import InMemoryStore

__all__ = [
    # Protocol and errors
    "StoreClient",
    "StoreError",
    "StoreConnectionError",
    "StoreTimeoutError",
    # Error codes
    "RESOURCE_IN_USE",
    "RESOURCE_NOT_FOUND",
    "CONDITIONAL_CHECK_FAILED",
    "VALIDATION_ERROR",
    # Factory
    "create_store_client",
    # Implementations
    "DynamoDbStore",
    "InMemoryStore",
]
