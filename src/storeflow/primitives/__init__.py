"""
Built-in primitives registered at process start.
"""

from __future__ import annotations

from typing import List

from storeflow.registry.models import PrimitiveDefinition
from storeflow.registry.registry import PrimitiveRegistry

from . import data, http, payments, shipping, text, utility

BUILTIN_PRIMITIVES: List[PrimitiveDefinition] = [
    *data.PRIMITIVES,
    *text.PRIMITIVES,
    *utility.PRIMITIVES,
    *http.PRIMITIVES,
    *shipping.PRIMITIVES,
    *payments.PRIMITIVES,
]


def register_builtin_primitives(registry: PrimitiveRegistry) -> int:
    """Register every built-in into ``registry``; returns the count."""
    for definition in BUILTIN_PRIMITIVES:
        registry.register(definition)
    return len(BUILTIN_PRIMITIVES)


__all__ = ["BUILTIN_PRIMITIVES", "register_builtin_primitives"]
