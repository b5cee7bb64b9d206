"""
Error types for dynadoc.

This module defines the application-level errors raised by models:
- DocStoreError: Base exception
- DataFormatError: Value fails a schema check or cannot be encoded
- PermissionError: A document with the same _id already exists
- NotImplementedError: Filter asks for a capability the adapter lacks
- DatabaseError: Any failure reported by the underlying store

Invariants:
    - All errors inherit from DocStoreError
    - Store-specific exceptions are always wrapped in DatabaseError
    - Errors include context for debugging
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DocStoreError(Exception):
    """Base exception for all dynadoc errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCSTORE_ERROR"
        self.details = details or {}


class DataFormatError(DocStoreError):
    """A value does not fit the schema or the wire format.

    Raised when:
    - A field value has the wrong type
    - A validator or enum check fails
    - A required field is missing
    - A native value has no wire representation
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        value: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="DATA_FORMAT_ERROR",
            details={"field": field_name},
        )
        self.field_name = field_name
        self.value = value


class PermissionError(DocStoreError):
    """A write conflicts with existing documents.

    Raised by insert_many when one or more _ids already exist.
    """

    def __init__(
        self,
        message: str,
        document_ids: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="PERMISSION_ERROR",
            details={"document_ids": document_ids or []},
        )
        self.document_ids = document_ids or []


class NotImplementedError(DocStoreError):
    """The filter requests a capability this adapter does not provide.

    Raised when:
    - A $text (free-text search) filter is given
    - An unknown filter operator is given
    """

    def __init__(
        self,
        message: str,
        capability: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_IMPLEMENTED",
            details={"capability": capability},
        )
        self.capability = capability


class DatabaseError(DocStoreError):
    """The underlying store rejected or failed a request.

    Attributes:
        operation: Wire operation that failed (e.g. "scan")
        store_code: Error code reported by the store, if any
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        store_code: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="DATABASE_ERROR",
            details={"operation": operation, "store_code": store_code},
        )
        self.operation = operation
        self.store_code = store_code
