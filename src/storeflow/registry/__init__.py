"""
Primitive Registry - Named operations available to workflow nodes.

This package provides:
- InputSchema: Compiled primitive input schema (jsonschema backed)
- PrimitiveDefinition: Metadata and invocation for a primitive
- PrimitiveRegistry: Thread-safe name -> definition registry
"""

from .models import InvocationContext, PrimitiveDefinition
from .registry import PrimitiveRegistry, get_global_registry, reset_global_registry
from .schema import InputSchema

__all__ = [
    "InputSchema",
    "InvocationContext",
    "PrimitiveDefinition",
    "PrimitiveRegistry",
    "get_global_registry",
    "reset_global_registry",
]
