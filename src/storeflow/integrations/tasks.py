"""Celery tasks for workflow execution."""
from datetime import datetime

from storeflow.errors import StoreflowError
from storeflow.integrations.celery_app import celery_app
from storeflow.observability import get_logger, setup_logging
from storeflow.workflows.service import WorkflowService, get_workflow_service

# Setup logging
setup_logging()
logger = get_logger(__name__)


def _worker_service() -> WorkflowService:
    """Process service with custom primitives refreshed from the store."""
    service = get_workflow_service()
    service.sync_custom_primitives()
    return service


@celery_app.task(name="execute_workflow", bind=True)
def execute_workflow(self, workflow_id: str, payload: dict | None = None, execution_id: str | None = None) -> dict:
    """
    Execute a workflow by ID.

    Args:
        workflow_id: Workflow to run
        payload: Trigger payload
        execution_id: Optional id chosen by the caller

    Returns:
        Execution response dict
    """
    service = _worker_service()

    logger.info(
        "Starting workflow execution task",
        extra={"workflow_id": workflow_id, "execution_id": execution_id},
    )

    try:
        result = service.execute(workflow_id, payload, execution_id=execution_id)
    except StoreflowError as e:
        # Not found, disabled or invalid: retrying cannot help
        logger.warning(
            "Workflow execution refused",
            extra={"workflow_id": workflow_id, "error": e.code},
        )
        return {"success": False, **e.to_dict()}

    logger.info(
        "Workflow execution task finished",
        extra={
            "workflow_id": workflow_id,
            "execution_id": result.execution_id,
            "success": result.success,
        },
    )
    return {"executionId": result.execution_id, **result.to_response()}


@celery_app.task(name="dispatch_event", bind=True)
def dispatch_event(self, event_type: str, data: dict | None = None, owner: str | None = None) -> list:
    """Run every workflow subscribed to an event; returns execution summaries."""
    service = _worker_service()
    results = service.dispatch_event(event_type, data or {}, owner=owner)
    return [result.to_summary() for result in results]


@celery_app.task(name="run_scheduled_workflows")
def run_scheduled_workflows(now: str | None = None) -> list:
    """
    Run every SCHEDULE workflow due this minute (fired by beat).

    Args:
        now: ISO timestamp to match instead of the current time

    Returns:
        Execution summaries
    """
    service = _worker_service()
    when = datetime.fromisoformat(now) if now else None
    results = service.run_due_schedules(when)
    logger.info(f"Scheduled run finished: {len(results)} workflow(s) executed")
    return [result.to_summary() for result in results]
