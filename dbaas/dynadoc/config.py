"""
Configuration management for dynadoc.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep from_env() and the dataclass defaults in sync
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported store backends."""

    DYNAMODB = "dynamodb"
    MEMORY = "memory"


@dataclass(frozen=True)
class DynamoDbConfig:
    """DynamoDB connection configuration.

    Attributes:
        region: AWS region
        endpoint_url: Custom endpoint URL (for DynamoDB Local or LocalStack)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
        connect_timeout: Connection timeout in seconds
        read_timeout: Read timeout in seconds
        max_attempts: Attempts per request made by botocore itself
    """

    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    max_attempts: int = 1

    @classmethod
    def from_env(cls) -> DynamoDbConfig:
        """Load configuration from environment variables."""
        return cls(
            region=os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")),
            endpoint_url=os.getenv("DYNAMODB_ENDPOINT"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            connect_timeout=float(os.getenv("DYNAMODB_CONNECT_TIMEOUT", "5")),
            read_timeout=float(os.getenv("DYNAMODB_READ_TIMEOUT", "30")),
            max_attempts=int(os.getenv("DYNAMODB_MAX_ATTEMPTS", "1")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class AdapterConfig:
    """Complete adapter configuration.

    Attributes:
        store_backend: Which store backend to use
        table_prefix: Prefix prepended to every model's table name
        dynamodb: DynamoDB configuration (if store_backend is DYNAMODB)
        observability: Logging configuration
    """

    store_backend: StoreBackend = StoreBackend.DYNAMODB
    table_prefix: str = ""
    dynamodb: DynamoDbConfig = field(default_factory=DynamoDbConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> AdapterConfig:
        """Load complete configuration from environment variables.

        Returns:
            AdapterConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("DOCSTORE_BACKEND", "dynamodb").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid DOCSTORE_BACKEND '{backend_str}'. Must be one of: dynamodb, memory"
            )

        config = cls(
            store_backend=store_backend,
            table_prefix=os.getenv("DOCSTORE_TABLE_PREFIX", ""),
            dynamodb=DynamoDbConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.store_backend == StoreBackend.DYNAMODB:
            if not self.dynamodb.region:
                raise ValueError("AWS_REGION is required when DOCSTORE_BACKEND=dynamodb")
            if self.dynamodb.max_attempts < 1:
                raise ValueError("DYNAMODB_MAX_ATTEMPTS must be at least 1")
            if bool(self.dynamodb.access_key_id) != bool(self.dynamodb.secret_access_key):
                raise ValueError(
                    "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set together"
                )

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Adapter configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "table_prefix": self.table_prefix,
                "dynamodb_region": self.dynamodb.region
                if self.store_backend == StoreBackend.DYNAMODB
                else None,
                "dynamodb_endpoint": (self.dynamodb.endpoint_url or "AWS")
                if self.store_backend == StoreBackend.DYNAMODB
                else None,
                "credentials": "explicit" if self.dynamodb.access_key_id else "default chain",
                "log_level": self.observability.log_level,
            },
        )
