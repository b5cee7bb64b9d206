"""
dynadoc Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (models over the in-memory store)
- e2e/: End-to-end tests (DynamoDB Local)
"""
