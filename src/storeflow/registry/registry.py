"""
Primitive Registry - Central registry of named primitives.

Built-ins are registered at process start from a static table; custom
primitives are added and removed through the admin API. One registry is
shared by concurrent runs: writes take a lock, reads work on snapshots.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterator, List, Optional

from storeflow.errors import DuplicatePrimitiveError, RegistrationError
from storeflow.observability import get_logger
from storeflow.registry.models import PrimitiveDefinition

logger = get_logger(__name__)


class PrimitiveRegistry:
    """
    Registry mapping primitive names to definitions.

    Usage:
        registry = PrimitiveRegistry()
        registry.register(definition)
        primitive = registry.get("shipping.getRates")
    """

    def __init__(self):
        self._primitives: Dict[str, PrimitiveDefinition] = {}
        self._lock = threading.RLock()

    def register(self, definition: PrimitiveDefinition, replace: bool = False) -> PrimitiveDefinition:
        """
        Register a primitive.

        Args:
            definition: Primitive to add
            replace: Overwrite an existing custom primitive of the same name

        Raises:
            DuplicatePrimitiveError: Name taken (or taken by a built-in)
            InvalidSchemaError: Malformed input schema or expression
        """
        definition.compile()

        with self._lock:
            existing = self._primitives.get(definition.name)
            if existing is not None and (not replace or existing.builtin):
                raise DuplicatePrimitiveError(definition.name)
            self._primitives = {**self._primitives, definition.name: definition}

        logger.debug(
            f"Registered primitive: {definition.name}",
            extra={"primitive": definition.name},
        )
        return definition

    def unregister(self, name: str) -> PrimitiveDefinition:
        """
        Remove a custom primitive.

        Raises:
            KeyError: Unknown name
            RegistrationError: Built-ins cannot be removed
        """
        with self._lock:
            existing = self._primitives.get(name)
            if existing is None:
                raise KeyError(name)
            if existing.builtin:
                raise RegistrationError(f"Built-in primitive cannot be removed: {name}")
            self._primitives = {k: v for k, v in self._primitives.items() if k != name}

        logger.info(f"Unregistered primitive: {name}", extra={"primitive": name})
        return existing

    def get(self, name: str) -> Optional[PrimitiveDefinition]:
        """Exact lookup by name."""
        return self._primitives.get(name)

    def list(
        self,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> List[PrimitiveDefinition]:
        """List primitives for the palette, sorted by category then name."""
        snapshot = self._primitives
        wanted = set(tags or [])
        result = [
            definition
            for definition in snapshot.values()
            if (category is None or definition.category == category)
            and (not wanted or wanted.intersection(definition.tags))
        ]
        return sorted(result, key=lambda d: (d.category, d.name))

    def categories(self) -> List[str]:
        return sorted({definition.category for definition in self._primitives.values()})

    def __len__(self) -> int:
        return len(self._primitives)

    def __iter__(self) -> Iterator[PrimitiveDefinition]:
        return iter(list(self._primitives.values()))

    def __contains__(self, name: str) -> bool:
        return name in self._primitives


# Global registry instance
_global_registry: Optional[PrimitiveRegistry] = None
_global_lock = threading.Lock()


def get_global_registry() -> PrimitiveRegistry:
    """Get the global registry (lazy initialized with built-ins)."""
    global _global_registry
    if _global_registry is None:
        with _global_lock:
            if _global_registry is None:
                from storeflow.primitives import register_builtin_primitives

                registry = PrimitiveRegistry()
                register_builtin_primitives(registry)
                _global_registry = registry
    return _global_registry


def reset_global_registry() -> None:
    """Drop the global registry (for testing)."""
    global _global_registry
    _global_registry = None


__all__ = [
    "PrimitiveRegistry",
    "get_global_registry",
    "reset_global_registry",
]
