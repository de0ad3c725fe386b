"""
Workflow service - store-backed facade used by the API, CLI and Celery tasks.

Ties the store, registry, validator, interpreter and template installer
together and applies the lifecycle rules (owner scoping, enabled flag,
trigger type checks).
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from croniter import croniter
from pydantic import ValidationError

from storeflow.config import get_settings
from storeflow.errors import (
    GraphValidationError,
    RegistrationError,
    TriggerMismatchError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
)
from storeflow.observability import get_logger
from storeflow.registry import PrimitiveDefinition, PrimitiveRegistry, get_global_registry
from storeflow.storage import WorkflowStore, get_workflow_store
from storeflow.workflows.conditions import matches_filter
from storeflow.workflows.interpreter import ExecutionResult, Interpreter
from storeflow.workflows.models import TriggerType, WorkflowDefinition, WorkflowTemplate
from storeflow.workflows.templates import TemplateCatalog, TemplateInstaller
from storeflow.workflows.validator import GraphIssue, ValidatedWorkflow, check, validate

logger = get_logger(__name__)

# Fields a client may not overwrite through create/update (by alias)
PROTECTED_FIELDS = ("id", "owner", "version", "createdAt", "updatedAt", "lastRunAt", "deletedAt")


def _editable(data: Dict[str, Any]) -> Dict[str, Any]:
    """Client fields keyed by alias, minus the protected ones."""
    fields = {}
    for key, value in data.items():
        info = WorkflowDefinition.model_fields.get(key)
        if info is not None and info.alias:
            key = info.alias
        if key not in PROTECTED_FIELDS:
            fields[key] = value
    return fields


class WorkflowService:
    """
    Usage:
        service = WorkflowService()
        workflow = service.create({"name": "Ship orders", "nodes": [...]}, owner="store-1")
        result = service.execute(workflow.id, {"orderId": "A1"}, owner="store-1")
    """

    def __init__(
        self,
        store: Optional[WorkflowStore] = None,
        registry: Optional[PrimitiveRegistry] = None,
        interpreter: Optional[Interpreter] = None,
        catalog: Optional[TemplateCatalog] = None,
    ):
        self.store = store or get_workflow_store()
        self.registry = registry if registry is not None else get_global_registry()
        self.interpreter = interpreter or Interpreter()
        self.catalog = catalog or TemplateCatalog()
        self.installer = TemplateInstaller(self.catalog, self.store)

        # (workflow id, version) -> compiled graph
        self._compiled: Dict[Tuple[str, int], ValidatedWorkflow] = {}
        self._compiled_lock = threading.Lock()

        # Custom primitive name -> definition last loaded from or written to the store
        self._stored_primitives: Dict[str, Dict[str, Any]] = {}
        self.sync_custom_primitives()

    # =========================================================================
    # CRUD
    # =========================================================================

    def create(self, data: Dict[str, Any], owner: Optional[str] = None) -> WorkflowDefinition:
        """Create a workflow from editor JSON. New workflows start disabled."""
        fields = _editable(data)
        fields.setdefault("enabled", False)
        workflow = WorkflowDefinition.model_validate({**fields, "owner": owner})
        saved = self.store.save(workflow)
        logger.info(f"Workflow created: {saved.slug}", extra={"workflow_id": saved.id})
        return saved

    def get(self, workflow_id: str, owner: Optional[str] = None) -> WorkflowDefinition:
        """
        Raises:
            WorkflowNotFoundError: Unknown id, deleted, or owned by someone else
        """
        workflow = self.store.get(workflow_id)
        if workflow is None or (owner is not None and workflow.owner != owner):
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        return workflow

    def list(
        self,
        owner: Optional[str] = None,
        trigger_type: Optional[TriggerType] = None,
        enabled: Optional[bool] = None,
    ) -> List[WorkflowDefinition]:
        return self.store.list(owner=owner, trigger_type=trigger_type, enabled=enabled)

    def update(self, workflow_id: str, data: Dict[str, Any], owner: Optional[str] = None) -> WorkflowDefinition:
        """
        Replace the editable parts of a workflow.

        Enabling through update goes through the same validation as ``enable``.
        """
        current = self.get(workflow_id, owner)
        merged = {**current.model_dump(by_alias=True), **_editable(data)}
        workflow = WorkflowDefinition.model_validate(merged)
        if workflow.enabled:
            self._validate_for_enable(workflow)
        saved = self.store.save(workflow)
        logger.info(f"Workflow updated: {saved.slug} v{saved.version}", extra={"workflow_id": saved.id})
        return saved

    def delete(self, workflow_id: str, owner: Optional[str] = None, hard: bool = False) -> None:
        workflow = self.get(workflow_id, owner)
        self.store.delete(workflow.id, soft=not hard)
        self._forget(workflow.id)
        logger.info(
            f"Workflow {'hard' if hard else 'soft'} deleted: {workflow.slug}",
            extra={"workflow_id": workflow.id},
        )

    # =========================================================================
    # VALIDATION / LIFECYCLE
    # =========================================================================

    def validate(self, workflow_id: str, owner: Optional[str] = None) -> Dict[str, Any]:
        return self.validation_report(self.get(workflow_id, owner))

    @staticmethod
    def validation_report(workflow: WorkflowDefinition) -> Dict[str, Any]:
        """``{valid, errors, warnings}`` for the editor's validate button."""
        issues = check(workflow, strict_branches=get_settings().strict_condition_branches)
        issues.extend(_schedule_issues(workflow))
        errors = [issue.model_dump(exclude_none=True) for issue in issues if issue.is_error]
        warnings = [issue.model_dump(exclude_none=True) for issue in issues if not issue.is_error]
        return {"valid": not errors, "errors": errors, "warnings": warnings}

    def enable(self, workflow_id: str, owner: Optional[str] = None) -> WorkflowDefinition:
        """
        Enable a workflow after validating it.

        Raises:
            GraphValidationError: The graph is not executable
        """
        workflow = self.get(workflow_id, owner)
        if workflow.enabled:
            return workflow
        self._validate_for_enable(workflow)
        workflow.enabled = True
        return self.store.save(workflow)

    def disable(self, workflow_id: str, owner: Optional[str] = None) -> WorkflowDefinition:
        workflow = self.get(workflow_id, owner)
        if not workflow.enabled:
            return workflow
        workflow.enabled = False
        return self.store.save(workflow)

    def _validate_for_enable(self, workflow: WorkflowDefinition) -> None:
        issues = check(workflow, strict_branches=get_settings().strict_condition_branches)
        issues.extend(_schedule_issues(workflow))
        if any(issue.is_error for issue in issues):
            raise GraphValidationError(issues)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def compiled(self, workflow: WorkflowDefinition) -> ValidatedWorkflow:
        """Validated graph for a workflow version (cached)."""
        key = (workflow.id, workflow.version)
        with self._compiled_lock:
            cached = self._compiled.get(key)
        if cached is not None:
            return cached

        validated = validate(workflow)
        with self._compiled_lock:
            for stale in [k for k in self._compiled if k[0] == workflow.id]:
                del self._compiled[stale]
            self._compiled[key] = validated
        return validated

    def _forget(self, workflow_id: str) -> None:
        with self._compiled_lock:
            for stale in [k for k in self._compiled if k[0] == workflow_id]:
                del self._compiled[stale]

    def execute(
        self,
        workflow_id: str,
        payload: Any = None,
        owner: Optional[str] = None,
        execution_id: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Run an enabled workflow and record the execution.

        Raises:
            WorkflowNotFoundError: Unknown workflow
            WorkflowDisabledError: Workflow is disabled
            GraphValidationError: Definition is not executable
        """
        return self._run(self.get(workflow_id, owner), payload, execution_id)

    def _run(
        self,
        workflow: WorkflowDefinition,
        payload: Any,
        execution_id: Optional[str] = None,
    ) -> ExecutionResult:
        if not workflow.enabled:
            raise WorkflowDisabledError(f"Workflow is disabled: {workflow.slug or workflow.id}")

        validated = self.compiled(workflow)
        result = self.interpreter.execute(
            validated,
            trigger_payload=payload,
            registry=self.registry,
            execution_id=execution_id,
        )

        self.store.mark_run(workflow.id, result.started_at)
        self.store.record_execution(workflow.id, result.to_summary())
        if result.stored:
            self.store.save_outputs(workflow.id, result.execution_id, result.stored)
        return result

    def list_executions(self, workflow_id: str, owner: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        workflow = self.get(workflow_id, owner)
        return self.store.list_executions(workflow.id, limit=limit)

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    def trigger_webhook(self, slug: str, payload: Any = None) -> ExecutionResult:
        """
        Fire a WEBHOOK workflow by slug.

        Raises:
            WorkflowNotFoundError: No live workflow with that slug
            TriggerMismatchError: The workflow is not webhook-triggered
        """
        workflow = self.store.get_by_slug(slug)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {slug}")
        if workflow.trigger_type != TriggerType.WEBHOOK:
            raise TriggerMismatchError(f"Workflow {slug} is not triggered by webhooks")
        return self._run(workflow, payload)

    def dispatch_event(self, event_type: str, data: Any = None, owner: Optional[str] = None) -> List[ExecutionResult]:
        """
        Run every enabled EVENT workflow subscribed to ``event_type``.

        ``triggerConfig.eventTypes`` lists the subscribed types and the optional
        ``triggerConfig.filter`` must match the event data.
        """
        results = []
        for workflow in self.store.list(owner=owner, trigger_type=TriggerType.EVENT, enabled=True):
            config = workflow.trigger_config
            if event_type not in (config.get("eventTypes") or []):
                continue
            if not matches_filter(data, config.get("filter")):
                continue
            result = self._run_safely(workflow, data)
            if result is not None:
                results.append(result)

        logger.info(f"Event {event_type} dispatched to {len(results)} workflow(s)")
        return results

    def run_due_schedules(self, now: Optional[datetime] = None) -> List[ExecutionResult]:
        """Run every enabled SCHEDULE workflow whose cron matches ``now`` (minute precision)."""
        now = now or datetime.now(timezone.utc)
        local_now = now.astimezone(ZoneInfo(get_settings().schedule_timezone))
        payload = {"scheduledAt": now.isoformat()}

        results = []
        for workflow in self.store.list(trigger_type=TriggerType.SCHEDULE, enabled=True):
            cron = workflow.trigger_config.get("cron")
            if not cron or not croniter.is_valid(cron):
                logger.warning(f"Skipping schedule with invalid cron: {cron!r}", extra={"workflow_id": workflow.id})
                continue
            if croniter.match(cron, local_now.replace(second=0, microsecond=0)):
                result = self._run_safely(workflow, payload)
                if result is not None:
                    results.append(result)
        return results

    def _run_safely(self, workflow: WorkflowDefinition, payload: Any) -> Optional[ExecutionResult]:
        try:
            return self._run(workflow, payload)
        except (GraphValidationError, WorkflowDisabledError) as e:
            logger.warning(f"Triggered workflow not run: {e}", extra={"workflow_id": workflow.id})
            return None

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    def list_templates(self) -> Dict[str, List[WorkflowTemplate]]:
        return self.catalog.grouped()

    def install_template(
        self,
        template_id: str,
        name: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> WorkflowDefinition:
        return self.installer.install(template_id, name, owner)

    def save_as_template(
        self,
        workflow_id: str,
        owner: Optional[str] = None,
        **options: Any,
    ) -> WorkflowTemplate:
        return self.catalog.create_from_workflow(self.get(workflow_id, owner), **options)

    # =========================================================================
    # CUSTOM PRIMITIVES
    # =========================================================================

    def create_primitive(self, data: Dict[str, Any]) -> PrimitiveDefinition:
        """
        Register an expression-backed custom primitive and persist it.

        Raises:
            DuplicatePrimitiveError: Name taken
            InvalidSchemaError: Bad schema or expression
        """
        definition = self.registry.register(_primitive_from(data))
        self._persist_primitive(definition)
        return definition

    def update_primitive(self, name: str, data: Dict[str, Any]) -> PrimitiveDefinition:
        """
        Replace the definition of a custom primitive.

        Raises:
            KeyError: Unknown primitive
            RegistrationError: Built-ins cannot be edited
            InvalidSchemaError: Bad schema or expression
        """
        existing = self.registry.get(name)
        if existing is None:
            raise KeyError(name)
        if existing.builtin:
            raise RegistrationError(f"Built-in primitive cannot be edited: {name}")
        definition = self.registry.register(_primitive_from({**data, "name": name}), replace=True)
        self._persist_primitive(definition)
        logger.info(f"Custom primitive updated: {name}", extra={"primitive": name})
        return definition

    def delete_primitive(self, name: str) -> PrimitiveDefinition:
        definition = self.registry.unregister(name)
        self.store.delete_primitive(name)
        self._stored_primitives.pop(name, None)
        return definition

    def sync_custom_primitives(self) -> int:
        """
        Bring the registry in line with the custom primitives in the store.

        New and changed stored definitions are registered; primitives loaded by
        an earlier sync and since removed from the store are unregistered.
        Workers call this before running so they see primitives created through
        another process.

        Returns:
            Number of custom primitives in the store
        """
        stored = {data["name"]: data for data in self.store.list_primitives()}

        for name in set(self._stored_primitives) - set(stored):
            if name in self.registry:
                self.registry.unregister(name)
            del self._stored_primitives[name]

        for name, data in stored.items():
            if self._stored_primitives.get(name) == data and name in self.registry:
                continue
            try:
                self.registry.register(_primitive_from(data), replace=True)
            except (RegistrationError, ValidationError) as e:
                logger.warning(f"Stored primitive not loaded: {e}", extra={"primitive": name})
                continue
            self._stored_primitives[name] = data

        return len(stored)

    def _persist_primitive(self, definition: PrimitiveDefinition) -> None:
        data = definition.model_dump(mode="json", by_alias=True, exclude={"builtin"})
        self.store.save_primitive(data)
        self._stored_primitives[definition.name] = data


def _primitive_from(data: Dict[str, Any]) -> PrimitiveDefinition:
    fields = {key: value for key, value in data.items() if key not in ("builtin", "handler")}
    return PrimitiveDefinition.model_validate(fields)


def _schedule_issues(workflow: WorkflowDefinition) -> List[GraphIssue]:
    if workflow.trigger_type != TriggerType.SCHEDULE:
        return []
    cron = workflow.trigger_config.get("cron")
    if cron and croniter.is_valid(cron):
        return []
    return [GraphIssue(code="InvalidSchedule", message=f"Schedule trigger needs a valid cron expression, got {cron!r}")]


# Global service instance
_service: Optional[WorkflowService] = None


def get_workflow_service() -> WorkflowService:
    """Get or create the process workflow service."""
    global _service
    if _service is None:
        _service = WorkflowService()
    return _service


def reset_workflow_service() -> None:
    """Drop the process service (for testing)."""
    global _service
    _service = None


__all__ = [
    "WorkflowService",
    "get_workflow_service",
    "reset_workflow_service",
]
