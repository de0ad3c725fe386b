"""Health check routes."""
from fastapi import APIRouter, Depends

from storeflow.api.dependencies import get_service
from storeflow.workflows.service import WorkflowService

router = APIRouter()


@router.get("/health")
def health_check(service: WorkflowService = Depends(get_service)) -> dict:
    """
    Health check endpoint.

    Returns:
        Status dict
    """
    return {
        "status": "healthy",
        "service": "storeflow",
        "primitives": len(service.registry),
    }
