"""Workflow persistence."""
from storeflow.config import get_settings
from storeflow.storage.base import WorkflowStore
from storeflow.storage.memory import InMemoryWorkflowStore
from storeflow.storage.redis_store import RedisWorkflowStore

_store: WorkflowStore | None = None


def get_workflow_store() -> WorkflowStore:
    """Get or create the process workflow store (backend from settings)."""
    global _store
    if _store is None:
        if get_settings().store_backend == "redis":
            _store = RedisWorkflowStore()
        else:
            _store = InMemoryWorkflowStore()
    return _store


def reset_workflow_store() -> None:
    """Drop the process store (for testing)."""
    global _store
    _store = None


__all__ = [
    "InMemoryWorkflowStore",
    "RedisWorkflowStore",
    "WorkflowStore",
    "get_workflow_store",
    "reset_workflow_store",
]
