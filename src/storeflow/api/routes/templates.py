"""Template gallery routes."""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from storeflow.api.dependencies import get_owner, get_service
from storeflow.api.routes.workflows import serialize
from storeflow.observability import get_logger
from storeflow.workflows.models import TemplateCategory
from storeflow.workflows.service import WorkflowService

logger = get_logger(__name__)
router = APIRouter()


class InstallTemplateRequest(BaseModel):
    """Request model for installing a template."""

    model_config = ConfigDict(populate_by_name=True)

    template_id: str = Field(..., alias="templateId", description="Template id or slug")
    name: str | None = Field(default=None, description="Name for the new workflow")


class SaveTemplateRequest(BaseModel):
    """Request model for saving a workflow as a template."""

    model_config = ConfigDict(populate_by_name=True)

    workflow_id: str = Field(..., alias="workflowId")
    name: str | None = None
    description: str | None = None
    category: TemplateCategory = TemplateCategory.CUSTOM
    tags: list[str] = Field(default_factory=list)


@router.get("/v1/templates")
def list_templates(service: WorkflowService = Depends(get_service)) -> dict[str, list[dict[str, Any]]]:
    """Templates grouped by category."""
    return {
        category: [template.model_dump(mode="json", by_alias=True) for template in templates]
        for category, templates in service.list_templates().items()
    }


@router.get("/v1/templates/{template_id}")
def get_template(template_id: str, service: WorkflowService = Depends(get_service)) -> dict[str, Any]:
    template = service.catalog.get(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return template.model_dump(mode="json", by_alias=True)


@router.post("/v1/templates/install", status_code=201)
def install_template(
    request: InstallTemplateRequest,
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    """
    Install a template as a new, disabled workflow.

    Returns:
        The created workflow
    """
    workflow = service.install_template(request.template_id, request.name, owner=owner)
    logger.info(
        "Template installed via API",
        extra={"workflow_id": workflow.id, "template_id": request.template_id},
    )
    return serialize(workflow)


@router.post("/v1/templates", status_code=201)
def save_template(
    request: SaveTemplateRequest,
    owner: str | None = Depends(get_owner),
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    """Save an existing workflow as a custom template."""
    template = service.save_as_template(
        request.workflow_id,
        owner=owner,
        name=request.name,
        description=request.description,
        category=request.category,
        tags=request.tags,
    )
    return template.model_dump(mode="json", by_alias=True)
