"""
Primitive Registry Models - Metadata and invocation for primitives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from storeflow.errors import (
    ExpressionError,
    InvalidSchemaError,
    NodeError,
    PrimitiveExecutionError,
)
from storeflow.registry.schema import InputSchema
from storeflow.workflows.expressions import compile_expression, evaluate

# (args, context) -> output
PrimitiveHandler = Callable[[Dict[str, Any], "InvocationContext"], Any]

NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9_-]*(\.[A-Za-z][A-Za-z0-9_-]*)*$"


@dataclass
class InvocationContext:
    """Run information handed to a primitive handler."""

    workflow_id: Optional[str] = None
    execution_id: Optional[str] = None
    node_id: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    logger: logging.Logger | logging.LoggerAdapter = field(
        default_factory=lambda: logging.getLogger("storeflow.primitives")
    )


class PrimitiveDefinition(BaseModel):
    """
    A named operation a workflow node can invoke.

    Built-ins carry a Python ``handler``; custom primitives created from the
    admin API carry a restricted ``expression`` evaluated with the validated
    arguments in scope (both as ``args`` and as top-level names).
    """
    model_config = ConfigDict(extra="forbid", populate_by_name=True, arbitrary_types_allowed=True)

    # Identity
    name: str = Field(..., pattern=NAME_PATTERN, description="Dotted primitive name")

    # Display
    display_name: str = Field("", alias="displayName")
    description: str = Field("")
    category: str = Field("custom")
    tags: List[str] = Field(default_factory=list)
    icon: Optional[str] = None

    # Technical
    input_schema: Dict[str, Any] = Field(default_factory=dict, alias="inputSchema")
    timeout_ms: Optional[int] = Field(None, alias="timeoutMs", gt=0)
    builtin: bool = False
    handler: Optional[Callable[..., Any]] = Field(None, exclude=True)
    expression: Optional[str] = None

    _schema: Optional[InputSchema] = PrivateAttr(None)

    def compile(self) -> InputSchema:
        """
        Check the definition is runnable.

        Raises:
            InvalidSchemaError: Malformed schema, bad expression, or nothing to run.
        """
        if self._schema is not None:
            return self._schema

        if self.handler is None and not self.expression:
            raise InvalidSchemaError(f"Primitive {self.name} needs a handler or an expression")
        if self.handler is not None and self.expression:
            raise InvalidSchemaError(f"Primitive {self.name} cannot have both a handler and an expression")
        if self.expression:
            try:
                compile_expression(self.expression)
            except ExpressionError as e:
                raise InvalidSchemaError(f"Invalid expression: {e}") from e

        self._schema = InputSchema.compile(self.input_schema)
        return self._schema

    @property
    def compiled_schema(self) -> InputSchema:
        return self.compile()

    def invoke(self, args: Optional[Dict[str, Any]], context: Optional[InvocationContext] = None) -> Any:
        """
        Validate arguments and run the primitive.

        Raises:
            PrimitiveValidationError: Arguments do not match the input schema.
            PrimitiveExecutionError: The handler or expression failed.
        """
        values = self.compiled_schema.validate(args)
        context = context or InvocationContext()

        try:
            if self.handler is not None:
                return self.handler(values, context)
            return evaluate(self.expression, {**values, "args": values})  # type: ignore[arg-type]
        except NodeError:
            raise
        except Exception as e:
            details: Dict[str, Any] = {"primitive": self.name, "type": type(e).__name__}
            status_code = getattr(e, "status_code", None)
            if status_code is not None:
                details["status_code"] = status_code
            raise PrimitiveExecutionError(str(e) or type(e).__name__, details) from e

    def to_palette(self) -> Dict[str, Any]:
        """Editor palette entry."""
        return {
            "id": self.name,
            "name": self.display_name or self.name,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
            "inputSchema": self.compiled_schema.to_dict(),
            "tags": list(self.tags),
            "builtin": self.builtin,
        }


__all__ = [
    "InvocationContext",
    "PrimitiveDefinition",
    "PrimitiveHandler",
]
