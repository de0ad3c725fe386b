"""
Output handlers for output nodes.

``return`` is handled by the interpreter itself; the handlers here perform
the side effects of ``log``, ``notify`` and ``store`` synchronously.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from storeflow.errors import OutputHandlerError
from storeflow.http import HttpApiError, HttpClient, HttpTimeoutError
from storeflow.observability import get_logger, with_trace_context
from storeflow.workflows.models import OutputNode, OutputType

logger = get_logger(__name__)


@dataclass
class OutputContext:
    workflow_id: Optional[str]
    execution_id: str
    stored: Dict[str, Any] = field(default_factory=dict)
    http_client: Optional[HttpClient] = None


def handle_log(node: OutputNode, value: Any, ctx: OutputContext) -> Any:
    logger.info(
        f"Workflow output from {node.id}",
        extra=with_trace_context(
            workflow_id=ctx.workflow_id,
            execution_id=ctx.execution_id,
            node_id=node.id,
            output=value,
        ),
    )
    return value


def handle_notify(node: OutputNode, value: Any, ctx: OutputContext) -> Any:
    destination = node.destination or ""
    if not destination.startswith(("http://", "https://")):
        raise OutputHandlerError(
            f"Notify output '{node.id}' needs an http(s) destination",
            {"destination": destination},
        )

    client = ctx.http_client or HttpClient()
    payload = {
        "workflowId": ctx.workflow_id,
        "executionId": ctx.execution_id,
        "nodeId": node.id,
        "value": value,
    }
    try:
        response = client.post(destination, json=payload)
        response.raise_for_status()
    except HttpTimeoutError as e:
        raise OutputHandlerError(str(e), {"destination": destination, "timeout": e.timeout}) from e
    except HttpApiError as e:
        raise OutputHandlerError(str(e), {"destination": destination, "status_code": e.status_code}) from e
    return {"delivered": True, "status": response.status_code}


def handle_store(node: OutputNode, value: Any, ctx: OutputContext) -> Any:
    key = node.destination or node.id
    ctx.stored[key] = value
    return value


OUTPUT_HANDLERS: Dict[OutputType, Callable[[OutputNode, Any, OutputContext], Any]] = {
    OutputType.LOG: handle_log,
    OutputType.NOTIFY: handle_notify,
    OutputType.STORE: handle_store,
}


def run_output_handler(node: OutputNode, value: Any, ctx: OutputContext) -> Any:
    """Run the side effect for a non-return output node."""
    handler = OUTPUT_HANDLERS.get(node.output_type)
    if handler is None:
        raise OutputHandlerError(f"No handler for output type {node.output_type}")
    return handler(node, value, ctx)


__all__ = ["OUTPUT_HANDLERS", "OutputContext", "run_output_handler"]
