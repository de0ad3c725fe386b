"""In-process workflow store."""
from __future__ import annotations

import copy
import threading
from collections import defaultdict
from typing import Any

from storeflow.storage.base import MAX_EXECUTION_HISTORY, WorkflowStore
from storeflow.workflows.models import TriggerType, WorkflowDefinition


class InMemoryWorkflowStore(WorkflowStore):
    """Lock-guarded dictionaries; used in development and tests."""

    def __init__(self):
        self._lock = threading.RLock()
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._slugs: dict[str, str] = {}
        self._executions: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self._outputs: dict[tuple[str, str], dict[str, Any]] = {}
        self._primitives: dict[str, dict[str, Any]] = {}

    def get(self, workflow_id: str, include_deleted: bool = False) -> WorkflowDefinition | None:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None or (workflow.deleted_at is not None and not include_deleted):
                return None
            return workflow.model_copy(deep=True)

    def get_by_slug(self, slug: str) -> WorkflowDefinition | None:
        with self._lock:
            workflow_id = self._slugs.get(slug)
            return self.get(workflow_id) if workflow_id else None

    def _write(self, workflow: WorkflowDefinition, previous: WorkflowDefinition | None) -> None:
        with self._lock:
            if previous is not None and previous.slug and previous.slug != workflow.slug:
                self._slugs.pop(previous.slug, None)
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
            if workflow.slug:
                self._slugs[workflow.slug] = workflow.id

    def _remove(self, workflow: WorkflowDefinition) -> None:
        with self._lock:
            self._workflows.pop(workflow.id, None)
            if workflow.slug:
                self._slugs.pop(workflow.slug, None)
            self._executions.pop(workflow.id, None)
            for key in [key for key in self._outputs if key[0] == workflow.id]:
                del self._outputs[key]

    def list(
        self,
        owner: str | None = None,
        trigger_type: TriggerType | None = None,
        enabled: bool | None = None,
        include_deleted: bool = False,
    ) -> list[WorkflowDefinition]:
        with self._lock:
            found = [
                workflow.model_copy(deep=True)
                for workflow in self._workflows.values()
                if self._matches(workflow, owner, trigger_type, enabled, include_deleted)
            ]
        return sorted(found, key=lambda w: w.updated_at, reverse=True)

    def slug_exists(self, slug: str) -> bool:
        with self._lock:
            return slug in self._slugs

    def record_execution(self, workflow_id: str, summary: dict[str, Any]) -> None:
        with self._lock:
            history = self._executions[workflow_id]
            history.insert(0, dict(summary))
            del history[MAX_EXECUTION_HISTORY:]

    def list_executions(self, workflow_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(item) for item in self._executions.get(workflow_id, [])[:limit]]

    def save_outputs(self, workflow_id: str, execution_id: str, stored: dict[str, Any]) -> None:
        with self._lock:
            self._outputs[(workflow_id, execution_id)] = dict(stored)

    def get_outputs(self, workflow_id: str, execution_id: str) -> dict[str, Any] | None:
        with self._lock:
            stored = self._outputs.get((workflow_id, execution_id))
            return dict(stored) if stored is not None else None

    def save_primitive(self, data: dict[str, Any]) -> None:
        with self._lock:
            self._primitives[data["name"]] = copy.deepcopy(data)

    def delete_primitive(self, name: str) -> bool:
        with self._lock:
            return self._primitives.pop(name, None) is not None

    def list_primitives(self) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(self._primitives[name]) for name in sorted(self._primitives)]
