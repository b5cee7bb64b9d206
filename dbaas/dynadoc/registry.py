"""
Model registry for dynadoc.

This module provides the registry population uses to resolve references
across models:
- Registering models when they are initialized
- Model lookup by declared name or by table name

The registry is passed to every Model at construction and frozen once
all models are initialized, so lookups never race with registration.

Example:
    >>> registry = ModelRegistry()
    >>> Org = Model("Org", OrgSchema, store, registry)
    >>> User = Model("User", UserSchema, store, registry)
    >>> await asyncio.gather(Org.init(), User.init())
    >>> registry.freeze()
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .model import Model


class RegistryFrozenError(Exception):
    """Registry is frozen and cannot be modified."""

    pass


class DuplicateRegistrationError(Exception):
    """A different model is already registered under this name."""

    pass


class ModelRegistry:
    """Lookup table from model name (and table name) to Model.

    Example:
        >>> registry = ModelRegistry()
        >>> registry.register(Org)
        >>> registry.get("Org") is Org
        True
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._models: dict[str, Model] = {}
        self._models_by_table: dict[str, Model] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether registry is frozen."""
        return self._frozen

    def register(self, model: Model) -> None:
        """Register a model under its name and its table name.

        Registering the same model twice is a no-op, so Model.init()
        stays idempotent.

        Args:
            model: Model to register

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If another model has the same name
        """
        with self._lock:
            existing = self._models.get(model.name)
            if existing is model:
                return

            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register '{model.name}': registry is frozen"
                )

            if existing is not None:
                raise DuplicateRegistrationError(
                    f"Model '{model.name}' already registered for table '{existing.table_name}'"
                )

            self._models[model.name] = model
            self._models_by_table[model.table_name] = model

    def get(self, name_or_table: str) -> Model | None:
        """Get a model by declared name or by table name."""
        return self._models.get(name_or_table) or self._models_by_table.get(name_or_table)

    def __contains__(self, name_or_table: str) -> bool:
        return self.get(name_or_table) is not None

    def models(self) -> Iterator[Model]:
        """Iterate over registered models."""
        yield from self._models.values()

    def freeze(self) -> None:
        """Freeze the registry.

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")
            self._frozen = True
