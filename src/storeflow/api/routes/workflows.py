"""Workflow management routes."""
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from storeflow.api.dependencies import get_owner, get_service
from storeflow.observability import get_logger
from storeflow.workflows.models import TriggerType, WorkflowDefinition
from storeflow.workflows.service import WorkflowService

logger = get_logger(__name__)
router = APIRouter()


class ExecuteRequest(BaseModel):
    """Request model for a manual run."""

    payload: Any = Field(default=None, description="Trigger payload")


def serialize(workflow: WorkflowDefinition) -> dict[str, Any]:
    return workflow.model_dump(mode="json", by_alias=True)


@router.get("/v1/workflows")
def list_workflows(
    trigger_type: TriggerType | None = Query(default=None, alias="triggerType"),
    enabled: bool | None = Query(default=None),
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> list[dict[str, Any]]:
    return [serialize(workflow) for workflow in service.list(owner=owner, trigger_type=trigger_type, enabled=enabled)]


@router.post("/v1/workflows", status_code=201)
def create_workflow(
    body: dict[str, Any],
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    """
    Create a workflow from editor JSON.

    Returns:
        The stored workflow (disabled unless ``enabled`` was sent)
    """
    workflow = service.create(body, owner=owner)
    logger.info("Workflow created via API", extra={"workflow_id": workflow.id})
    return serialize(workflow)


@router.get("/v1/workflows/{workflow_id}")
def get_workflow(
    workflow_id: str,
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    return serialize(service.get(workflow_id, owner))


@router.put("/v1/workflows/{workflow_id}")
def update_workflow(
    workflow_id: str,
    body: dict[str, Any],
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    return serialize(service.update(workflow_id, body, owner))


@router.delete("/v1/workflows/{workflow_id}", status_code=204)
def delete_workflow(
    workflow_id: str,
    hard: bool = Query(default=False, description="Drop the workflow and its history"),
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> None:
    service.delete(workflow_id, owner=owner, hard=hard)


@router.post("/v1/workflows/{workflow_id}/validate")
def validate_workflow(
    workflow_id: str,
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    """
    Returns:
        ``{valid, errors, warnings}``
    """
    return service.validate(workflow_id, owner)


@router.post("/v1/workflows/{workflow_id}/execute")
def execute_workflow(
    workflow_id: str,
    request: ExecuteRequest | None = None,
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    """
    Run a workflow synchronously.

    Returns:
        ``{executionId, success, duration, result, trace, error?, details?}``
    """
    payload = request.payload if request is not None else None
    result = service.execute(workflow_id, payload, owner=owner)
    return {"executionId": result.execution_id, **result.to_response()}


@router.post("/v1/workflows/{workflow_id}/enable")
def enable_workflow(
    workflow_id: str,
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    return serialize(service.enable(workflow_id, owner))


@router.post("/v1/workflows/{workflow_id}/disable")
def disable_workflow(
    workflow_id: str,
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    return serialize(service.disable(workflow_id, owner))


@router.get("/v1/workflows/{workflow_id}/executions")
def list_executions(
    workflow_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> list[dict[str, Any]]:
    return service.list_executions(workflow_id, owner=owner, limit=limit)
