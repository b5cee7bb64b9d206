"""
Connection lifecycle and input helpers.

Applications call connect() once at startup and share the returned
StoreClient between all of their models:

    >>> config = AdapterConfig.from_env()
    >>> setup_logging(config)
    >>> store = await connect(config)
    >>> Org = Model("Organization", OrgSchema, store, registry,
    ...             table_prefix=config.table_prefix)
    >>> ...
    >>> await disconnect(store)
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from .config import AdapterConfig
from .errors import DatabaseError
from .store.base import StoreClient, StoreError, create_store_client

logger = logging.getLogger(__name__)


async def connect(config: Optional[AdapterConfig] = None) -> StoreClient:
    """Create and connect the configured store client.

    Args:
        config: Adapter configuration (loaded from the environment if omitted)

    Raises:
        DatabaseError: If the store cannot be reached
    """
    if config is None:
        config = AdapterConfig.from_env()

    store = create_store_client(config)
    try:
        await store.connect()
    except StoreError as e:
        raise DatabaseError(
            f"Failed to connect to {config.store_backend.value} store: {e}",
            operation="connect",
            store_code=e.code,
        ) from e

    logger.info("Store connected", extra={"backend": config.store_backend.value})
    return store


async def disconnect(store: StoreClient) -> None:
    """Close a store client."""
    await store.close()
    logger.info("Store disconnected")


async def clear(store: StoreClient, prefix: str = "") -> List[str]:
    """Delete every table, or only those whose name starts with prefix.

    Wipes data irrecoverably. Meant for test setup and teardown.

    Returns:
        Names of the deleted tables
    """
    try:
        names: List[str] = []
        request: dict = {}
        while True:
            response = await store.list_tables(**request)
            names.extend(response.get("TableNames", []))
            last = response.get("LastEvaluatedTableName")
            if not last:
                break
            request = {"ExclusiveStartTableName": last}

        deleted = [name for name in names if name.startswith(prefix)]
        for name in deleted:
            await store.delete_table(TableName=name)
    except StoreError as e:
        raise DatabaseError(f"Failed to clear tables: {e}", operation=e.operation, store_code=e.code) from e

    logger.warning("Tables deleted", extra={"tables": deleted})
    return deleted


def sanitize(data: Any) -> Any:
    """Remove "$"-prefixed keys from user input, recursively.

    Keeps user-supplied filters from smuggling in query operators.

    Example:
        >>> sanitize({"name": "a", "$where": "1", "meta": {"$gt": 1, "x": 2}})
        {'name': 'a', 'meta': {'x': 2}}
    """
    if isinstance(data, list):
        return [sanitize(value) for value in data]
    if isinstance(data, dict):
        return {
            key: sanitize(value)
            for key, value in data.items()
            if not (isinstance(key, str) and key.startswith("$"))
        }
    return data
