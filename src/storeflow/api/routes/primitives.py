"""Primitive palette routes."""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from storeflow.api.dependencies import get_service
from storeflow.observability import get_logger
from storeflow.workflows.service import WorkflowService

logger = get_logger(__name__)
router = APIRouter()


@router.get("/v1/primitives")
def list_primitives(
    category: str | None = Query(default=None, description="Only this category"),
    tag: list[str] | None = Query(default=None, description="Match any of these tags"),
    service: WorkflowService = Depends(get_service),
) -> list[dict[str, Any]]:
    """
    Palette entries for the visual editor.

    Returns:
        ``[{id, name, description, category, icon, inputSchema, tags}]``
    """
    return [primitive.to_palette() for primitive in service.registry.list(category=category, tags=tag)]


@router.get("/v1/primitives/{name}")
def get_primitive(name: str, service: WorkflowService = Depends(get_service)) -> dict[str, Any]:
    primitive = service.registry.get(name)
    if primitive is None:
        raise HTTPException(status_code=404, detail="Primitive not found")
    return primitive.to_palette()


@router.post("/v1/primitives", status_code=201)
def create_primitive(
    body: dict[str, Any],
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    """
    Register a custom expression primitive.

    Example body:
        {"name": "custom.discountedTotal", "expression": "total * (1 - rate)",
         "inputSchema": {"properties": {"total": {"type": "number"}, "rate": {"type": "number"}}}}
    """
    primitive = service.create_primitive(body)
    logger.info("Custom primitive created via API", extra={"primitive": primitive.name})
    return primitive.to_palette()


@router.put("/v1/primitives/{name}")
def update_primitive(
    name: str,
    body: dict[str, Any],
    service: WorkflowService = Depends(get_service),
) -> dict[str, Any]:
    """Replace a custom primitive's definition; the path name wins over any body name."""
    try:
        primitive = service.update_primitive(name, body)
    except KeyError:
        raise HTTPException(status_code=404, detail="Primitive not found")
    logger.info("Custom primitive updated via API", extra={"primitive": primitive.name})
    return primitive.to_palette()


@router.delete("/v1/primitives/{name}", status_code=204)
def delete_primitive(name: str, service: WorkflowService = Depends(get_service)) -> None:
    try:
        service.delete_primitive(name)
    except KeyError:
        raise HTTPException(status_code=404, detail="Primitive not found")
