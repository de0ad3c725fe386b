"""
Error taxonomy for the workflow engine.

Every error carries a stable ``code`` that is what ends up in node traces,
execution results and API responses.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from storeflow.workflows.validator import GraphIssue


class StoreflowError(Exception):
    """Base exception for engine errors."""

    code = "StoreflowError"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


# --- Registration -----------------------------------------------------------


class RegistrationError(StoreflowError):
    """Raised when a primitive cannot be registered."""

    code = "RegistrationError"


class DuplicatePrimitiveError(RegistrationError):
    """Raised when a primitive name is already registered."""

    code = "DuplicateName"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Primitive already registered: {name}")


class InvalidSchemaError(RegistrationError):
    """Raised when a primitive input schema (or custom expression) is malformed."""

    code = "InvalidSchema"

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or [message]
        super().__init__(message)


# --- Per-node errors --------------------------------------------------------


class NodeError(StoreflowError):
    """Error recorded against a single node; halts only that branch."""

    code = "NodeError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.details:
            data["details"] = self.details
        return data


class UnresolvedReferenceError(NodeError):
    """Raised when a {{reference}} cannot be resolved."""

    code = "UnresolvedReference"

    def __init__(self, ref: str, reason: str = "not found"):
        self.ref = ref
        super().__init__(f"Unresolved reference '{{{{{ref}}}}}': {reason}", {"ref": ref})


class ExpressionError(NodeError):
    """Raised when a condition or custom expression is unsafe or fails."""

    code = "ExpressionError"


class PrimitiveError(NodeError):
    """Base class for primitive invocation failures."""

    code = "PrimitiveError"


class PrimitiveValidationError(PrimitiveError):
    """Raised when primitive arguments do not match the input schema."""

    code = "ValidationError"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid argument '{field}': {reason}", {"field": field, "reason": reason})


class UnknownPrimitiveError(PrimitiveError):
    """Raised when a node names a primitive that is not registered."""

    code = "UnknownPrimitive"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown primitive: {name}", {"name": name})


class PrimitiveTimeoutError(PrimitiveError):
    """Raised when a primitive exceeds its execution budget."""

    code = "TimeoutError"

    def __init__(self, name: str, timeout_ms: int):
        self.name = name
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Primitive {name} timed out after {timeout_ms}ms",
            {"name": name, "timeout_ms": timeout_ms},
        )


class PrimitiveExecutionError(PrimitiveError):
    """Wraps whatever the underlying operation reported."""

    code = "PrimitiveExecutionError"


class OutputHandlerError(NodeError):
    """Raised when an output node side effect fails."""

    code = "OutputError"


# --- Definition errors ------------------------------------------------------


class GraphValidationError(StoreflowError):
    """Raised when a workflow definition is not executable."""

    code = "InvalidWorkflow"

    def __init__(self, issues: List["GraphIssue"]):
        self.issues = issues
        errors = [issue for issue in issues if issue.severity == "error"]
        summary = ", ".join(issue.code for issue in errors) or "no errors"
        super().__init__(f"Workflow is not executable: {summary}")

    @property
    def errors(self) -> List["GraphIssue"]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> List["GraphIssue"]:
        return [issue for issue in self.issues if issue.severity == "warning"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": str(self),
            "errors": [issue.model_dump(exclude_none=True) for issue in self.errors],
            "warnings": [issue.model_dump(exclude_none=True) for issue in self.warnings],
        }


# --- Service / store --------------------------------------------------------


class WorkflowNotFoundError(StoreflowError):
    """Raised when a workflow id or slug does not exist."""

    code = "WorkflowNotFound"


class WorkflowDisabledError(StoreflowError):
    """Raised when a disabled workflow is asked to run."""

    code = "WorkflowDisabled"


class TriggerMismatchError(StoreflowError):
    """Raised when a workflow is fired by a trigger it is not configured for."""

    code = "TriggerMismatch"


class InstallError(StoreflowError):
    """Base class for template installation failures."""

    code = "InstallError"


class TemplateNotFoundError(InstallError):
    """Raised when a template id or slug does not exist."""

    code = "TemplateNotFound"


class NameConflictError(InstallError):
    """Raised when the owner already has a workflow with the requested name."""

    code = "NameConflict"


__all__ = [
    "StoreflowError",
    "RegistrationError",
    "DuplicatePrimitiveError",
    "InvalidSchemaError",
    "NodeError",
    "UnresolvedReferenceError",
    "ExpressionError",
    "PrimitiveError",
    "PrimitiveValidationError",
    "UnknownPrimitiveError",
    "PrimitiveTimeoutError",
    "PrimitiveExecutionError",
    "OutputHandlerError",
    "GraphValidationError",
    "WorkflowNotFoundError",
    "WorkflowDisabledError",
    "TriggerMismatchError",
    "InstallError",
    "TemplateNotFoundError",
    "NameConflictError",
]
