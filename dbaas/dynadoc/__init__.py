"""
dynadoc - Mongo-style document models on top of DynamoDB.

This package emulates a flexible document-database interface (typed schemas,
filter objects, projections, population of references, pagination, bulk
mutation) on top of DynamoDB's key/scan wire protocol:
- Schema: declarative field types, defaults, validators, indexes, references
- Query: translates filter/update objects into wire requests
- Model: the data-access facade bound to one schema and one table
- Codec: native values <-> typed wire attribute values

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────┐
    │ Controller  │────▶│    Model    │────▶│    Query    │
    │  (caller)   │     │  (facade)   │     │  (builder)  │
    └─────────────┘     └──────┬──────┘     └──────┬──────┘
                               │                   │ wire requests
                               ▼                   ▼
                        ┌─────────────┐     ┌─────────────┐
                        │    Codec    │     │ StoreClient │
                        │  (decode)   │     │ (DynamoDB)  │
                        └─────────────┘     └─────────────┘

Invariants:
    - Every table is keyed by a single String hash key named _id
    - Batched requests never carry more than 25 items
    - The string "null" is reserved on the wire for null values
    - Store errors never leave a Model unwrapped

How to change safely:
    - New filter operators belong in Query, with a matching evaluator in
      the in-memory store so tests can exercise them
    - Keep the codec symmetric: every encode branch needs a decode branch
"""

from ._version import __version__
from .errors import (
    DatabaseError,
    DataFormatError,
    DocStoreError,
    NotImplementedError,
    PermissionError,
)
from .model import Model
from .registry import ModelRegistry
from .schema import Schema

__all__ = [
    "__version__",
    "Schema",
    "Model",
    "ModelRegistry",
    "DocStoreError",
    "DataFormatError",
    "PermissionError",
    "NotImplementedError",
    "DatabaseError",
]
