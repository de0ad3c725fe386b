"""Tests for the workflow service."""
from datetime import datetime, timezone

import pytest

from storeflow.errors import (
    DuplicatePrimitiveError,
    GraphValidationError,
    InvalidSchemaError,
    RegistrationError,
    TriggerMismatchError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
)
from storeflow.registry import PrimitiveDefinition, PrimitiveRegistry
from storeflow.workflows.models import TriggerType
from storeflow.workflows.service import WorkflowService

DOUBLE = {
    "name": "custom.double",
    "category": "math",
    "inputSchema": {"properties": {"n": {"type": "number", "required": True}}},
    "expression": "n * 2",
}


def enabled_workflow(service, data, owner=None, **fields):
    workflow = service.create({**data, **fields}, owner=owner)
    return service.enable(workflow.id, owner=owner)


class TestCrud:
    """Create, read, update and delete."""

    def test_create_defaults_to_disabled(self, service, echo_data):
        workflow = service.create(echo_data, owner="s1")

        assert workflow.enabled is False
        assert workflow.owner == "s1"
        assert workflow.slug == "echo"
        assert service.get(workflow.id, owner="s1") == workflow

    def test_create_ignores_protected_fields(self, service, echo_data):
        workflow = service.create({**echo_data, "id": "forced", "version": 9, "owner": "intruder"}, owner="s1")

        assert workflow.id != "forced"
        assert workflow.version == 1
        assert workflow.owner == "s1"

    def test_owner_scoping(self, service, echo_data):
        workflow = service.create(echo_data, owner="s1")

        with pytest.raises(WorkflowNotFoundError):
            service.get(workflow.id, owner="s2")
        assert service.list(owner="s2") == []
        assert [w.id for w in service.list(owner="s1")] == [workflow.id]

    def test_update(self, service, echo_data):
        workflow = service.create(echo_data, owner="s1")

        updated = service.update(
            workflow.id,
            {"name": "Renamed", "variables": {"limit": 3}, "triggerType": "WEBHOOK", "owner": "s2"},
            owner="s1",
        )

        assert updated.name == "Renamed"
        assert updated.variables == {"limit": 3}
        assert updated.trigger_type == TriggerType.WEBHOOK
        assert updated.owner == "s1"
        assert updated.version == 2
        assert [node.id for node in updated.nodes] == ["t", "p", "o"]

    def test_update_accepts_field_names(self, service, echo_data):
        workflow = service.create(echo_data)

        updated = service.update(workflow.id, {"trigger_config": {"eventTypes": ["order.paid"]}})

        assert updated.trigger_config == {"eventTypes": ["order.paid"]}

    def test_enabling_through_update_validates(self, service):
        workflow = service.create({"name": "Broken", "nodes": [{"id": "o", "kind": "output"}]})

        with pytest.raises(GraphValidationError):
            service.update(workflow.id, {"enabled": True})

    def test_soft_and_hard_delete(self, service, echo_data):
        soft = service.create(echo_data)
        hard = service.create(echo_data)

        service.delete(soft.id)
        service.delete(hard.id, hard=True)

        for workflow in (soft, hard):
            with pytest.raises(WorkflowNotFoundError):
                service.get(workflow.id)
        assert service.store.get(soft.id, include_deleted=True) is not None
        assert service.store.get(hard.id, include_deleted=True) is None


class TestLifecycle:
    """Validation, enable and disable."""

    def test_validate_report(self, service):
        workflow = service.create(
            {
                "name": "Warnings",
                "nodes": [{"id": "t", "kind": "trigger"}, {"id": "o", "kind": "output"}, {"id": "x", "kind": "output"}],
                "edges": [{"source": "t", "target": "o"}],
            }
        )

        report = service.validate(workflow.id)

        assert report["valid"] is True
        assert [issue["code"] for issue in report["warnings"]] == ["UnreachableNode"]

    def test_enable_rejects_invalid_graph(self, service):
        workflow = service.create({"name": "No trigger", "nodes": [{"id": "o", "kind": "output"}]})

        with pytest.raises(GraphValidationError) as exc_info:
            service.enable(workflow.id)

        assert [issue.code for issue in exc_info.value.errors] == ["MissingTrigger"]
        assert service.get(workflow.id).enabled is False

    def test_enable_rejects_bad_cron(self, service, echo_data):
        workflow = service.create({**echo_data, "triggerType": "SCHEDULE", "triggerConfig": {"cron": "every day"}})

        assert service.validate(workflow.id)["errors"][0]["code"] == "InvalidSchedule"
        with pytest.raises(GraphValidationError):
            service.enable(workflow.id)

    def test_enable_disable(self, service, echo_data):
        workflow = enabled_workflow(service, echo_data)
        assert workflow.enabled is True

        disabled = service.disable(workflow.id)

        assert disabled.enabled is False
        assert service.disable(workflow.id).version == disabled.version


class TestExecution:
    """Manual runs and history."""

    def test_execute(self, service, echo_data):
        workflow = enabled_workflow(service, echo_data, owner="s1")

        result = service.execute(workflow.id, {"x": 5}, owner="s1", execution_id="run-1")

        assert result.success is True
        assert result.final_output == {"x": 5}
        assert result.execution_id == "run-1"
        history = service.list_executions(workflow.id, owner="s1")
        assert history[0]["executionId"] == "run-1"
        assert history[0]["success"] is True
        assert service.get(workflow.id).last_run_at is not None

    def test_disabled_workflow_refuses(self, service, echo_data):
        workflow = service.create(echo_data)

        with pytest.raises(WorkflowDisabledError):
            service.execute(workflow.id, {"x": 1})

    def test_stored_outputs_persisted(self, service):
        workflow = enabled_workflow(
            service,
            {
                "name": "Store",
                "nodes": [
                    {"id": "t", "kind": "trigger"},
                    {"id": "s", "kind": "output", "outputType": "store", "destination": "customerId", "value": "{{input.id}}"},
                ],
                "edges": [{"source": "t", "target": "s"}],
            },
        )

        result = service.execute(workflow.id, {"id": "cus_9"})

        assert service.store.get_outputs(workflow.id, result.execution_id) == {"customerId": "cus_9"}

    def test_compiled_graph_cached_per_version(self, service, echo_data):
        workflow = enabled_workflow(service, echo_data)

        first = service.compiled(workflow)
        assert service.compiled(workflow) is first

        updated = service.update(workflow.id, {"description": "v2"})
        assert service.compiled(updated) is not first

    def test_failed_run_recorded(self, service):
        workflow = enabled_workflow(
            service,
            {
                "name": "Fails",
                "nodes": [
                    {"id": "t", "kind": "trigger"},
                    {"id": "p", "kind": "primitive", "primitive": "test.fail"},
                    {"id": "o", "kind": "output"},
                ],
                "edges": [{"source": "t", "target": "p"}, {"source": "p", "target": "o"}],
            },
        )

        result = service.execute(workflow.id, {})

        assert result.success is False
        assert service.list_executions(workflow.id)[0]["error"] == "PrimitiveExecutionError"


class TestTriggers:
    """Webhook, event and schedule dispatch."""

    def test_webhook(self, service, echo_data):
        workflow = enabled_workflow(service, echo_data, triggerType="WEBHOOK")

        result = service.trigger_webhook(workflow.slug, {"x": 2})

        assert result.final_output == {"x": 2}

    def test_webhook_wrong_trigger_type(self, service, echo_data):
        workflow = enabled_workflow(service, echo_data)

        with pytest.raises(TriggerMismatchError):
            service.trigger_webhook(workflow.slug, {})

    def test_webhook_unknown_slug(self, service):
        with pytest.raises(WorkflowNotFoundError):
            service.trigger_webhook("missing", {})

    def test_dispatch_event(self, service, echo_data):
        subscribed = enabled_workflow(
            service,
            echo_data,
            owner="s1",
            triggerType="EVENT",
            triggerConfig={"eventTypes": ["order.paid"], "filter": {"total": {"$gte": 100}}},
        )
        enabled_workflow(service, echo_data, owner="s1", triggerType="EVENT", triggerConfig={"eventTypes": ["order.created"]})
        service.create({**echo_data, "triggerType": "EVENT", "triggerConfig": {"eventTypes": ["order.paid"]}}, owner="s1")

        results = service.dispatch_event("order.paid", {"total": 150}, owner="s1")

        assert [result.workflow_id for result in results] == [subscribed.id]
        assert results[0].final_output == {"total": 150}
        assert service.dispatch_event("order.paid", {"total": 10}, owner="s1") == []
        assert service.dispatch_event("order.paid", {"total": 150}, owner="s2") == []

    def test_run_due_schedules(self, service, echo_data):
        daily = enabled_workflow(service, echo_data, triggerType="SCHEDULE", triggerConfig={"cron": "0 8 * * *"})
        enabled_workflow(service, echo_data, triggerType="SCHEDULE", triggerConfig={"cron": "30 9 * * *"})

        at_eight = datetime(2024, 5, 1, 8, 0, 42, tzinfo=timezone.utc)
        results = service.run_due_schedules(at_eight)

        assert [result.workflow_id for result in results] == [daily.id]
        assert results[0].final_output == {"scheduledAt": at_eight.isoformat()}
        assert service.run_due_schedules(datetime(2024, 5, 1, 8, 1, tzinfo=timezone.utc)) == []

    def test_schedule_timezone(self, service, echo_data, monkeypatch):
        from storeflow.config import reset_settings

        monkeypatch.setenv("STOREFLOW_SCHEDULE_TIMEZONE", "America/New_York")
        reset_settings()
        enabled_workflow(service, echo_data, triggerType="SCHEDULE", triggerConfig={"cron": "0 8 * * *"})

        # 12:00 UTC is 08:00 in New York during daylight saving time
        assert len(service.run_due_schedules(datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc))) == 1
        assert service.run_due_schedules(datetime(2024, 7, 1, 8, 0, tzinfo=timezone.utc)) == []


class TestTemplatesAndPrimitives:
    """Template and custom primitive operations."""

    def test_install_and_save_as_template(self, service):
        workflow = service.install_template("tpl_welcome_coupon", "My Coupon", owner="s1")

        assert workflow.enabled is False
        assert service.get(workflow.id, owner="s1").template_id == "tpl_welcome_coupon"

        template = service.save_as_template(workflow.id, owner="s1", name="Reusable", tags=["mine"])
        assert template.slug == "reusable"
        assert template in service.list_templates()["custom"]

    def test_create_custom_primitive(self, service):
        definition = service.create_primitive(
            {
                "name": "custom.double",
                "inputSchema": {"properties": {"n": {"type": "number", "required": True}}},
                "expression": "n * 2",
                "builtin": True,
            }
        )

        assert definition.builtin is False
        assert service.registry.get("custom.double").invoke({"n": 4}) == 8

    def test_custom_primitive_errors(self, service):
        with pytest.raises(DuplicatePrimitiveError):
            service.create_primitive({"name": "test.echo", "expression": "1"})
        with pytest.raises(InvalidSchemaError):
            service.create_primitive({"name": "custom.bad", "expression": "__import__('os')"})

    def test_delete_primitive(self, service):
        service.create_primitive({"name": "custom.one", "expression": "1"})

        service.delete_primitive("custom.one")

        assert service.registry.get("custom.one") is None
        assert service.store.list_primitives() == []

    def test_custom_primitive_persisted(self, service):
        service.create_primitive({**DOUBLE, "builtin": True})

        stored = service.store.list_primitives()
        assert [data["name"] for data in stored] == ["custom.double"]
        assert stored[0]["expression"] == "n * 2"
        assert "builtin" not in stored[0]

    def test_new_service_loads_stored_primitives(self, service, interpreter):
        service.create_primitive(DOUBLE)

        other = WorkflowService(store=service.store, registry=PrimitiveRegistry(), interpreter=interpreter)

        loaded = other.registry.get("custom.double")
        assert loaded.category == "math"
        assert loaded.builtin is False
        assert loaded.invoke({"n": 4}) == 8

    def test_sync_follows_another_service(self, service, interpreter):
        other = WorkflowService(store=service.store, registry=PrimitiveRegistry(), interpreter=interpreter)
        service.create_primitive(DOUBLE)
        assert other.registry.get("custom.double") is None

        assert other.sync_custom_primitives() == 1
        assert other.registry.get("custom.double").invoke({"n": 4}) == 8

        service.update_primitive("custom.double", {**DOUBLE, "expression": "n * 3"})
        other.sync_custom_primitives()
        assert other.registry.get("custom.double").invoke({"n": 4}) == 12

        service.delete_primitive("custom.double")
        assert other.sync_custom_primitives() == 0
        assert other.registry.get("custom.double") is None

    def test_sync_keeps_primitives_not_from_the_store(self, service):
        assert service.sync_custom_primitives() == 0
        assert service.registry.get("test.echo") is not None

    def test_stored_primitive_cannot_shadow_builtin(self, interpreter):
        from storeflow.storage import InMemoryWorkflowStore

        registry = PrimitiveRegistry()
        registry.register(PrimitiveDefinition(name="core.one", expression="1", builtin=True))
        store = InMemoryWorkflowStore()
        store.save_primitive({"name": "core.one", "expression": "2"})
        store.save_primitive({"name": "custom.three", "expression": "3"})

        WorkflowService(store=store, registry=registry, interpreter=interpreter)

        assert registry.get("core.one").invoke({}) == 1
        assert registry.get("custom.three").invoke({}) == 3

    def test_update_primitive(self, service):
        service.create_primitive(DOUBLE)

        updated = service.update_primitive("custom.double", {**DOUBLE, "name": "custom.other", "expression": "n * 3"})

        assert updated.name == "custom.double"
        assert service.registry.get("custom.double").invoke({"n": 4}) == 12
        assert service.registry.get("custom.other") is None
        assert [data["expression"] for data in service.store.list_primitives()] == ["n * 3"]

    def test_update_primitive_errors(self, service):
        service.registry.register(PrimitiveDefinition(name="core.one", expression="1", builtin=True))

        with pytest.raises(KeyError):
            service.update_primitive("custom.missing", {"expression": "1"})
        with pytest.raises(RegistrationError):
            service.update_primitive("core.one", {"expression": "2"})
        with pytest.raises(InvalidSchemaError):
            service.update_primitive("test.echo", {"expression": "__import__('os')"})
        assert service.store.list_primitives() == []
