"""Shared route dependencies."""
from fastapi import Header

from storeflow.workflows.service import WorkflowService, get_workflow_service


def get_service() -> WorkflowService:
    """Workflow service (overridden in tests)."""
    return get_workflow_service()


def get_owner(x_owner_id: str | None = Header(default=None, alias="X-Owner-Id")) -> str | None:
    """Tenant id set by the authenticating gateway."""
    return x_owner_id
