"""Workflow store interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from storeflow.workflows.models import TriggerType, WorkflowDefinition, slugify, utcnow

# Execution summaries kept per workflow
MAX_EXECUTION_HISTORY = 100


class WorkflowStore(ABC):
    """
    Persistence for workflow definitions, execution history, stored outputs
    and custom primitive definitions.

    ``save`` assigns a unique slug to new workflows and bumps ``version`` and
    ``updated_at`` when an existing workflow is saved again.
    """

    @abstractmethod
    def get(self, workflow_id: str, include_deleted: bool = False) -> WorkflowDefinition | None:
        """Get workflow by id."""

    @abstractmethod
    def get_by_slug(self, slug: str) -> WorkflowDefinition | None:
        """Get a live workflow by slug."""

    @abstractmethod
    def _write(self, workflow: WorkflowDefinition, previous: WorkflowDefinition | None) -> None:
        """Persist a prepared workflow."""

    @abstractmethod
    def _remove(self, workflow: WorkflowDefinition) -> None:
        """Drop a workflow and everything stored for it."""

    @abstractmethod
    def list(
        self,
        owner: str | None = None,
        trigger_type: TriggerType | None = None,
        enabled: bool | None = None,
        include_deleted: bool = False,
    ) -> list[WorkflowDefinition]:
        """List workflows, newest first."""

    @abstractmethod
    def slug_exists(self, slug: str) -> bool:
        """Whether any workflow (deleted included) holds ``slug``."""

    @abstractmethod
    def record_execution(self, workflow_id: str, summary: dict[str, Any]) -> None:
        """Append an execution summary to the workflow's history."""

    @abstractmethod
    def list_executions(self, workflow_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Execution summaries, newest first."""

    @abstractmethod
    def save_outputs(self, workflow_id: str, execution_id: str, stored: dict[str, Any]) -> None:
        """Persist values written by ``store`` output nodes."""

    @abstractmethod
    def get_outputs(self, workflow_id: str, execution_id: str) -> dict[str, Any] | None:
        """Stored outputs of one execution."""

    @abstractmethod
    def save_primitive(self, data: dict[str, Any]) -> None:
        """Persist a custom primitive definition, keyed by its ``name``."""

    @abstractmethod
    def delete_primitive(self, name: str) -> bool:
        """Drop a stored custom primitive; False when none was stored."""

    @abstractmethod
    def list_primitives(self) -> list[dict[str, Any]]:
        """Stored custom primitive definitions, sorted by name."""

    def save(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """
        Create or update a workflow.

        Returns:
            The stored copy (with slug, version and timestamps set)
        """
        previous = self.get(workflow.id, include_deleted=True)
        stored = workflow.model_copy(deep=True)
        now = utcnow()

        if previous is None:
            stored.version = max(stored.version, 1)
            stored.created_at = stored.created_at or now
            stored.updated_at = now
        else:
            stored.version = previous.version + 1
            stored.created_at = previous.created_at
            stored.updated_at = now

        if not stored.slug or (stored.slug != getattr(previous, "slug", None) and self.slug_exists(stored.slug)):
            stored.slug = self.unique_slug(stored.slug or stored.name)

        self._write(stored, previous)
        return stored.model_copy(deep=True)

    def delete(self, workflow_id: str, soft: bool = True) -> bool:
        """
        Delete a workflow.

        Soft deletes set ``deleted_at`` and disable the workflow; hard deletes
        drop it along with its history.
        """
        workflow = self.get(workflow_id, include_deleted=True)
        if workflow is None:
            return False
        if soft:
            if workflow.deleted_at is None:
                workflow.deleted_at = utcnow()
                workflow.enabled = False
                self.save(workflow)
        else:
            self._remove(workflow)
        return True

    def mark_run(self, workflow_id: str, at: datetime | None = None) -> None:
        """Record when a workflow last ran (without bumping its version)."""
        workflow = self.get(workflow_id)
        if workflow is None:
            return
        workflow.last_run_at = at or utcnow()
        self._write(workflow, workflow)

    def unique_slug(self, base: str) -> str:
        """``base``, else ``base-copy``, else ``base-copy-2``, ..."""
        slug = slugify(base)
        if not self.slug_exists(slug):
            return slug
        candidate = f"{slug}-copy"
        counter = 2
        while self.slug_exists(candidate):
            candidate = f"{slug}-copy-{counter}"
            counter += 1
        return candidate

    def name_exists(self, owner: str | None, name: str) -> bool:
        """Whether ``owner`` already has a live workflow called ``name``."""
        return any(workflow.name == name for workflow in self.list(owner=owner))

    @staticmethod
    def _matches(
        workflow: WorkflowDefinition,
        owner: str | None,
        trigger_type: TriggerType | None,
        enabled: bool | None,
        include_deleted: bool,
    ) -> bool:
        if workflow.deleted_at is not None and not include_deleted:
            return False
        if owner is not None and workflow.owner != owner:
            return False
        if trigger_type is not None and workflow.trigger_type != trigger_type:
            return False
        if enabled is not None and workflow.enabled != enabled:
            return False
        return True
