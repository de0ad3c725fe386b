"""Tests for the execution interpreter."""
from unittest.mock import Mock

import pytest

from storeflow.registry import PrimitiveDefinition
from storeflow.workflows.interpreter import (
    CancellationToken,
    Interpreter,
    NodeStatus,
    RunError,
    run_with_timeout,
)
from storeflow.workflows.validator import validate


def trace_ids(result):
    return [trace.node_id for trace in result.traces]


class TestBasicExecution:
    """Straight-line and branching runs."""

    def test_echo_workflow(self, interpreter, registry, echo_workflow):
        result = interpreter.execute(validate(echo_workflow), {"x": 5}, registry)

        assert result.success is True
        assert result.final_output == {"x": 5}
        assert trace_ids(result) == ["t", "p", "o"]
        assert all(trace.status == NodeStatus.SUCCEEDED for trace in result.traces)
        assert result.error is None

    def test_condition_takes_true_branch_only(self, interpreter, registry, branching_workflow):
        result = interpreter.execute(validate(branching_workflow), {"x": 5}, registry)

        assert result.success is True
        assert result.final_output == {"size": "big"}
        assert trace_ids(result) == ["t", "c", "big"]
        assert "small" not in trace_ids(result)
        assert result.trace_for("c")[0].branch == "true"

    def test_condition_takes_false_branch(self, interpreter, registry, branching_workflow):
        result = interpreter.execute(validate(branching_workflow), {"x": 1}, registry)

        assert result.final_output == {"size": "small"}
        assert trace_ids(result) == ["t", "c", "small"]

    def test_condition_passes_input_through(self, interpreter, registry, branching_workflow):
        result = interpreter.execute(validate(branching_workflow), {"x": 5}, registry)

        assert result.trace_for("c")[0].output == {"x": 5}

    def test_structured_condition(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {
                    "id": "c",
                    "kind": "condition",
                    "condition": {"type": "simple", "field": "input.status", "operator": "in", "value": ["paid"]},
                },
                {"id": "o", "kind": "output", "value": "ok"},
            ],
            [("t", "c"), ("c", "o", "true")],
        )

        result = interpreter.execute(validate(workflow), {"status": "paid"}, registry)

        assert result.final_output == "ok"

    def test_config_references_resolved(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {
                    "id": "p",
                    "kind": "primitive",
                    "primitive": "test.echo",
                    "config": {
                        "order": "{{trigger.orderId}}",
                        "limit": "{{variables.limit}}",
                        "label": "Order {{input.orderId}}",
                    },
                },
                {"id": "o", "kind": "output", "value": {"echoed": "{{p.order}}", "whole": "{{input}}"}},
            ],
            [("t", "p"), ("p", "o")],
            variables={"limit": 3},
        )

        result = interpreter.execute(validate(workflow), {"orderId": "A1"}, registry)

        expected = {"order": "A1", "limit": 3, "label": "Order A1"}
        assert result.trace_for("p")[0].input == expected
        assert result.final_output == {"echoed": "A1", "whole": expected}

    def test_deterministic_trace_order(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "a", "kind": "primitive", "primitive": "test.echo"},
                {"id": "b", "kind": "primitive", "primitive": "test.echo"},
                {"id": "c", "kind": "primitive", "primitive": "test.echo"},
                {"id": "o", "kind": "output"},
            ],
            [("t", "a"), ("t", "b"), ("a", "c"), ("b", "o"), ("c", "o")],
        )
        validated = validate(workflow)

        runs = [trace_ids(interpreter.execute(validated, {"n": 1}, registry)) for _ in range(5)]

        assert runs[0] == ["t", "a", "b", "c", "o", "o"]
        assert all(run == runs[0] for run in runs)

    def test_last_return_wins(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "first", "kind": "output", "value": 1},
                {"id": "p", "kind": "primitive", "primitive": "test.echo"},
                {"id": "second", "kind": "output", "value": 2},
            ],
            [("t", "first"), ("t", "p"), ("p", "second")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.final_output == 2

    def test_input_captured_when_enqueued(self, interpreter, registry, make_workflow):
        # merge runs twice before out is first visited
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "a", "kind": "primitive", "primitive": "test.echo", "config": {"from": "a"}},
                {"id": "b", "kind": "primitive", "primitive": "test.echo", "config": {"from": "b"}},
                {"id": "merge", "kind": "primitive", "primitive": "test.echo"},
                {"id": "out", "kind": "output"},
            ],
            [("t", "a"), ("t", "b"), ("a", "merge"), ("b", "merge"), ("merge", "out")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert trace_ids(result) == ["t", "a", "b", "merge", "merge", "out", "out"]
        assert [trace.output for trace in result.trace_for("out")] == [{"from": "a"}, {"from": "b"}]
        assert result.final_output == {"from": "b"}

    def test_unreachable_nodes_absent_unless_requested(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "o", "kind": "output"}, {"id": "island", "kind": "output"}],
            [("t", "o")],
        )
        validated = validate(workflow)

        assert trace_ids(interpreter.execute(validated, {}, registry)) == ["t", "o"]

        result = interpreter.execute(validated, {}, registry, include_unreachable=True)
        assert result.trace_for("island")[0].status == NodeStatus.SKIPPED


class TestNodeFailures:
    """A failing node halts its branch and fails the run."""

    def test_throwing_primitive_fails_run_despite_other_branch(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "bad", "kind": "primitive", "primitive": "test.fail"},
                {"id": "after_bad", "kind": "output"},
                {"id": "good", "kind": "primitive", "primitive": "test.echo"},
                {"id": "after_good", "kind": "output"},
            ],
            [("t", "bad"), ("bad", "after_bad"), ("t", "good"), ("good", "after_good")],
        )

        result = interpreter.execute(validate(workflow), {"x": 1}, registry)

        assert result.success is False
        assert result.error == "PrimitiveExecutionError"
        assert result.details["nodeId"] == "bad"
        bad = result.trace_for("bad")[0]
        assert bad.status == NodeStatus.FAILED
        assert bad.error["message"] == "boom"
        assert "after_bad" not in trace_ids(result)
        assert result.trace_for("after_good")[0].status == NodeStatus.SUCCEEDED

    def test_unknown_primitive(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "p", "kind": "primitive", "primitive": "nope.missing"}, {"id": "o", "kind": "output"}],
            [("t", "p"), ("p", "o")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.error == "UnknownPrimitive"
        assert result.trace_for("p")[0].error["code"] == "UnknownPrimitive"

    def test_argument_validation_error(self, interpreter, registry, make_workflow):
        registry.register(
            PrimitiveDefinition(
                name="test.needsEmail",
                input_schema={"properties": {"email": {"type": "string"}}, "required": ["email"]},
                handler=lambda args, context: args,
            )
        )
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "p", "kind": "primitive", "primitive": "test.needsEmail", "config": {"name": "x"}}, {"id": "o", "kind": "output"}],
            [("t", "p"), ("p", "o")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.error == "ValidationError"
        assert result.trace_for("p")[0].error["details"] == {"field": "email", "reason": "missing required field"}

    def test_unresolved_reference(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "p", "kind": "primitive", "primitive": "test.echo", "config": {"v": "{{ghost.value}}"}},
                {"id": "o", "kind": "output"},
            ],
            [("t", "p"), ("p", "o")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.error == "UnresolvedReference"

    def test_primitive_timeout(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "p", "kind": "primitive", "primitive": "test.slow"}, {"id": "o", "kind": "output"}],
            [("t", "p"), ("p", "o")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.error == "TimeoutError"
        assert result.trace_for("p")[0].error["details"]["timeout_ms"] == 50

    def test_node_timeout_overrides_primitive(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "p", "kind": "primitive", "primitive": "test.slow", "timeoutMs": 2000, "config": {"seconds": 0.01}},
                {"id": "o", "kind": "output"},
            ],
            [("t", "p"), ("p", "o")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.success is True
        assert result.final_output == {"slept": True}

    def test_retry_policy(self, interpreter, registry, make_workflow):
        calls = []

        def flaky(args, context):
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("temporary")
            return {"ok": True}

        registry.register(PrimitiveDefinition(name="test.flaky", handler=flaky))
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "p", "kind": "primitive", "primitive": "test.flaky"}, {"id": "o", "kind": "output"}],
            [("t", "p"), ("p", "o")],
            config={"retry": {"maxAttempts": 3, "backoffMs": 10}},
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.success is True
        assert result.trace_for("p")[0].attempts == 3
        assert len(calls) == 3

    def test_retry_gives_up(self, registry, make_workflow):
        sleeps = []
        interpreter = Interpreter(default_timeout_ms=1000, default_max_steps=50, sleep=sleeps.append)
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "p", "kind": "primitive", "primitive": "test.fail"}, {"id": "o", "kind": "output"}],
            [("t", "p"), ("p", "o")],
            config={"retry": {"maxAttempts": 2, "backoffMs": 100}},
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.success is False
        assert result.trace_for("p")[0].error["details"]["attempts"] == 2
        assert sleeps == [0.1]

    def test_validation_errors_are_not_retried(self, interpreter, registry, make_workflow):
        calls = []
        registry.register(
            PrimitiveDefinition(
                name="test.typed",
                input_schema={"properties": {"n": {"type": "integer"}}, "required": ["n"]},
                handler=lambda args, context: calls.append(1),
            )
        )
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "p", "kind": "primitive", "primitive": "test.typed", "config": {"n": "x"}}, {"id": "o", "kind": "output"}],
            [("t", "p"), ("p", "o")],
            config={"retry": {"maxAttempts": 3}},
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.trace_for("p")[0].attempts == 1
        assert calls == []


class TestRunLimits:
    """Run-level aborts."""

    def test_cycle_hits_step_limit(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "a", "kind": "primitive", "primitive": "test.echo"},
                {"id": "b", "kind": "primitive", "primitive": "test.echo"},
            ],
            [("t", "a"), ("a", "b"), ("b", "a")],
            config={"maxSteps": 10},
        )

        result = interpreter.execute(validate(workflow), {"x": 1}, registry)

        assert result.success is False
        assert result.error == RunError.STEP_LIMIT_EXCEEDED.value
        assert result.details == {"maxSteps": 10}
        assert len(result.traces) == 10

    def test_default_step_limit(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "a", "kind": "primitive", "primitive": "test.echo"}],
            [("t", "a"), ("a", "a")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.error == "StepLimitExceeded"
        assert len(result.traces) == 50

    def test_execution_timeout(self, registry, make_workflow):
        interpreter = Interpreter(default_timeout_ms=1000, default_max_steps=1_000_000)
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "a", "kind": "primitive", "primitive": "test.echo"}],
            [("t", "a"), ("a", "a")],
            config={"maxExecutionMs": 50},
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.error == "ExecutionTimeout"
        assert result.details["maxExecutionMs"] == 50

    def test_cancellation(self, interpreter, registry, echo_workflow):
        token = CancellationToken()
        token.cancel()

        result = interpreter.execute(validate(echo_workflow), {"x": 5}, registry, cancel_token=token)

        assert result.error == "Cancelled"
        assert trace_ids(result) == ["t"]

    def test_no_output_reached(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "p", "kind": "primitive", "primitive": "test.echo"}],
            [("t", "p")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.success is False
        assert result.error == "NoOutputReached"
        assert result.failed_traces == []

    def test_missing_branch_stops_silently(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "c", "kind": "condition", "condition": "input.x > 3"}, {"id": "o", "kind": "output"}],
            [("t", "c"), ("c", "o", "true")],
        )

        result = interpreter.execute(validate(workflow, strict_branches=False), {"x": 1}, registry)

        assert trace_ids(result) == ["t", "c"]
        assert result.failed_traces == []
        assert result.error == "NoOutputReached"

    def test_internal_error_is_captured(self, interpreter, echo_workflow):
        broken_registry = Mock()
        broken_registry.get.side_effect = RuntimeError("registry exploded")

        result = interpreter.execute(validate(echo_workflow), {"x": 5}, broken_registry)

        assert result.success is False
        assert result.error == "InternalError"
        assert result.details["message"] == "registry exploded"
        assert result.finished_at is not None


class TestOutputs:
    """Output node handlers."""

    def test_store_output(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "s", "kind": "output", "outputType": "store", "destination": "customerId", "value": "{{input.id}}"},
            ],
            [("t", "s")],
        )

        result = interpreter.execute(validate(workflow), {"id": "cus_1"}, registry)

        assert result.success is True
        assert result.stored == {"customerId": "cus_1"}
        assert result.final_output is None
        assert result.to_response()["stored"] == {"customerId": "cus_1"}

    def test_notify_output(self, registry, make_workflow):
        http_client = Mock()
        http_client.post.return_value = Mock(status_code=202)
        interpreter = Interpreter(default_timeout_ms=1000, default_max_steps=50, http_client=http_client)
        workflow = make_workflow(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "n", "kind": "output", "outputType": "notify", "destination": "{{variables.hook}}"},
            ],
            [("t", "n")],
            variables={"hook": "https://hooks.example.com/orders"},
        )

        result = interpreter.execute(validate(workflow), {"orderId": "A1"}, registry)

        assert result.success is True
        url = http_client.post.call_args[0][0]
        body = http_client.post.call_args[1]["json"]
        assert url == "https://hooks.example.com/orders"
        assert body["value"] == {"orderId": "A1"}
        assert body["nodeId"] == "n"

    def test_notify_needs_http_destination(self, interpreter, registry, make_workflow):
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "n", "kind": "output", "outputType": "notify", "destination": "ftp://x"}],
            [("t", "n")],
        )

        result = interpreter.execute(validate(workflow), {}, registry)

        assert result.error == "OutputError"

    def test_log_output(self, interpreter, registry, make_workflow, caplog):
        workflow = make_workflow(
            [{"id": "t", "kind": "trigger"}, {"id": "l", "kind": "output", "outputType": "log"}],
            [("t", "l")],
        )

        with caplog.at_level("INFO", logger="storeflow"):
            result = interpreter.execute(validate(workflow), {"x": 1}, registry)

        assert result.success is True
        assert any("Workflow output from l" in record.getMessage() for record in caplog.records)

    def test_response_shape(self, interpreter, registry, echo_workflow):
        response = interpreter.execute(validate(echo_workflow), {"x": 5}, registry).to_response()

        assert set(response) == {"success", "duration", "result", "trace"}
        assert response["trace"][1] == {
            "nodeId": "p",
            "kind": "primitive",
            "status": "succeeded",
            "input": {"x": 5},
            "output": {"x": 5},
            "durationMs": response["trace"][1]["durationMs"],
        }


class TestRunWithTimeout:
    """Test the thread-based timeout helper."""

    def test_returns_result(self):
        assert run_with_timeout(lambda a, b: a + b, 1, 2, 3) == (5, False)

    def test_reraises(self):
        def boom():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            run_with_timeout(boom, 1)

    def test_times_out(self):
        import time

        result, timed_out = run_with_timeout(time.sleep, 0.01, 1)

        assert timed_out is True
        assert result is None
