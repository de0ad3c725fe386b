"""Webhook and event trigger routes."""
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from storeflow.api.dependencies import get_owner, get_service
from storeflow.observability import get_logger
from storeflow.workflows.service import WorkflowService

logger = get_logger(__name__)
router = APIRouter()


class EventRequest(BaseModel):
    """Storefront event, e.g. ``{"type": "order.paid", "data": {...}}``."""

    type: str = Field(..., description="Event type")
    data: dict[str, Any] = Field(default_factory=dict, description="Event data")


@router.post("/v1/webhooks/{slug}")
def fire_webhook(
    slug: str,
    payload: Any = Body(default=None),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    """Run the WEBHOOK workflow with this slug, the request body as payload."""
    result = service.trigger_webhook(slug, payload)
    return {"executionId": result.execution_id, **result.to_response()}


@router.post("/v1/events")
def publish_event(
    event: EventRequest,
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    """
    Dispatch an event to every subscribed EVENT workflow.

    Returns:
        ``{type, executions: [{workflowId, executionId, success, error?}]}``
    """
    results = service.dispatch_event(event.type, event.data, owner=owner)
    logger.info(f"Event {event.type} received", extra={"executions": len(results)})
    return {
        "type": event.type,
        "executions": [
            {
                key: value
                for key, value in {
                    "workflowId": result.workflow_id,
                    "executionId": result.execution_id,
                    "success": result.success,
                    "error": result.error,
                }.items()
                if value is not None
            }
            for result in results
        ],
    }
