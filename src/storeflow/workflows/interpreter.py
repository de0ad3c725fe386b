"""
Execution Interpreter - Runs a validated workflow for one trigger payload.

Nodes are visited one at a time from a FIFO worklist seeded with the
trigger's successors. A failing node stops only its own branch; the run is
bounded by a step budget, a wall-clock budget and a cancellation token
checked between iterations.

SYNC-CELERY SAFE: execution is synchronous; primitive calls run on a daemon
thread joined with their timeout.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from storeflow.errors import (
    NodeError,
    PrimitiveExecutionError,
    PrimitiveTimeoutError,
    UnknownPrimitiveError,
)
from storeflow.http import HttpClient
from storeflow.observability import get_logger, with_trace_context
from storeflow.registry.models import InvocationContext, PrimitiveDefinition
from storeflow.registry.registry import PrimitiveRegistry
from storeflow.workflows.conditions import evaluate_condition
from storeflow.workflows.models import (
    ConditionNode,
    NodeKind,
    OutputNode,
    OutputType,
    PrimitiveNode,
    WorkflowNode,
)
from storeflow.workflows.outputs import OutputContext, run_output_handler
from storeflow.workflows.references import ResolutionScope, resolve_value
from storeflow.workflows.validator import ValidatedWorkflow

logger = get_logger(__name__)


class NodeStatus(str, Enum):
    """Status of a visited node."""
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunError(str, Enum):
    """Run-level failure codes."""
    STEP_LIMIT_EXCEEDED = "StepLimitExceeded"
    NO_OUTPUT_REACHED = "NoOutputReached"
    EXECUTION_TIMEOUT = "ExecutionTimeout"
    CANCELLED = "Cancelled"
    INTERNAL_ERROR = "InternalError"


@dataclass
class NodeTrace:
    """
    Record of one node visit.
    """
    node_id: str
    kind: str
    status: NodeStatus
    input: Any = None
    output: Any = None
    error: Optional[Dict[str, Any]] = None
    duration_ms: float = 0
    attempts: int = 1
    branch: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == NodeStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "nodeId": self.node_id,
            "kind": self.kind,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "durationMs": round(self.duration_ms, 3),
        }
        if self.error:
            data["error"] = self.error
        if self.attempts > 1:
            data["attempts"] = self.attempts
        if self.branch is not None:
            data["branch"] = self.branch
        return data


@dataclass
class ExecutionResult:
    """
    Result of one workflow execution.
    """
    workflow_id: Optional[str]
    execution_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    success: bool = False
    traces: List[NodeTrace] = field(default_factory=list)
    final_output: Any = None
    stored: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    duration_ms: float = 0

    @property
    def failed_traces(self) -> List[NodeTrace]:
        return [trace for trace in self.traces if trace.status == NodeStatus.FAILED]

    def trace_for(self, node_id: str) -> List[NodeTrace]:
        return [trace for trace in self.traces if trace.node_id == node_id]

    def to_response(self) -> Dict[str, Any]:
        """Shape returned by the execute endpoint."""
        response: Dict[str, Any] = {
            "success": self.success,
            "duration": round(self.duration_ms, 3),
            "result": self.final_output,
            "trace": [trace.to_dict() for trace in self.traces],
        }
        if self.stored:
            response["stored"] = self.stored
        if self.error:
            response["error"] = self.error
        if self.details:
            response["details"] = self.details
        return response

    def to_summary(self) -> Dict[str, Any]:
        """Compact record kept in execution history."""
        return {
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "success": self.success,
            "durationMs": round(self.duration_ms, 3),
            "nodeCount": len(self.traces),
            "error": self.error,
        }


class CancellationToken:
    """Cooperative cancellation flag checked between iterations."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


def run_with_timeout(func: Callable, timeout_seconds: float, *args, **kwargs) -> Tuple[Any, bool]:
    """
    Run a function on a daemon thread with a timeout.

    Returns: (result, timed_out)
    """
    result_holder = [None]
    exception_holder: List[Optional[BaseException]] = [None]

    def target():
        try:
            result_holder[0] = func(*args, **kwargs)
        except Exception as e:
            exception_holder[0] = e

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join(timeout=timeout_seconds)

    if thread.is_alive():
        # The thread cannot be killed; it is abandoned and its result dropped
        return None, True

    if exception_holder[0]:
        raise exception_holder[0]

    return result_holder[0], False


@dataclass
class _RunState:
    validated: ValidatedWorkflow
    result: ExecutionResult
    variables: Dict[str, Any]
    outputs: Dict[str, Any] = field(default_factory=dict)
    output_reached: bool = False
    first_failure: Optional[NodeTrace] = None


class Interpreter:
    """
    Sync workflow interpreter.

    Usage:
        interpreter = Interpreter()
        result = interpreter.execute(validate(definition), {"x": 5}, registry)
    """

    def __init__(
        self,
        default_timeout_ms: Optional[int] = None,
        default_max_steps: Optional[int] = None,
        http_client: Optional[HttpClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            default_timeout_ms: Primitive timeout when neither node nor primitive sets one
            default_max_steps: Node visit budget when the workflow sets none
            http_client: Client used by notify outputs
            sleep: Used between retry attempts
        """
        if default_timeout_ms is None or default_max_steps is None:
            from storeflow.config import get_settings

            settings = get_settings()
            default_timeout_ms = default_timeout_ms or settings.default_primitive_timeout_ms
            default_max_steps = default_max_steps or settings.default_max_steps

        self._default_timeout_ms = default_timeout_ms
        self._default_max_steps = default_max_steps
        self._http_client = http_client
        self._sleep = sleep

    def execute(
        self,
        validated: ValidatedWorkflow,
        trigger_payload: Any = None,
        registry: Optional[PrimitiveRegistry] = None,
        cancel_token: Optional[CancellationToken] = None,
        execution_id: Optional[str] = None,
        include_unreachable: bool = False,
    ) -> ExecutionResult:
        """
        Execute a validated workflow. Never raises.

        Args:
            validated: Output of ``validate``
            trigger_payload: Data the trigger fired with
            registry: Primitive registry (global registry when omitted)
            cancel_token: Checked between iterations
            execution_id: Id for this run (generated when omitted)
            include_unreachable: Add ``skipped`` traces for unreachable nodes

        Returns:
            ExecutionResult
        """
        start_time = time.perf_counter()
        result = ExecutionResult(
            workflow_id=validated.workflow_id,
            execution_id=execution_id or uuid.uuid4().hex,
            started_at=datetime.now(timezone.utc),
        )
        context = with_trace_context(workflow_id=result.workflow_id, execution_id=result.execution_id)
        logger.info("Workflow execution started", extra=context)

        if registry is None:
            from storeflow.registry import get_global_registry

            registry = get_global_registry()

        try:
            self._run(validated, trigger_payload, registry, cancel_token, result)
        except Exception as e:
            logger.exception("Workflow execution crashed", extra=context)
            result.success = False
            result.error = RunError.INTERNAL_ERROR.value
            result.details = {"message": str(e), "type": type(e).__name__}

        if include_unreachable:
            for node in validated.unreachable:
                result.traces.append(NodeTrace(node_id=node.id, kind=node.kind, status=NodeStatus.SKIPPED))

        result.finished_at = datetime.now(timezone.utc)
        result.duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Workflow execution finished: {'success' if result.success else result.error}",
            extra={**context, "duration_ms": round(result.duration_ms, 3), "nodes": len(result.traces)},
        )
        return result

    def _run(
        self,
        validated: ValidatedWorkflow,
        trigger_payload: Any,
        registry: PrimitiveRegistry,
        cancel_token: Optional[CancellationToken],
        result: ExecutionResult,
    ) -> None:
        definition = validated.definition
        state = _RunState(
            validated=validated,
            result=result,
            variables={**definition.variables, "trigger": trigger_payload},
        )
        max_steps = definition.config.max_steps or self._default_max_steps
        max_execution_ms = definition.config.max_execution_ms
        started = time.perf_counter()

        # The trigger succeeds trivially with the payload as its output
        trigger = validated.trigger
        state.outputs[trigger.id] = trigger_payload
        result.traces.append(
            NodeTrace(
                node_id=trigger.id,
                kind=trigger.kind,
                status=NodeStatus.SUCCEEDED,
                input=trigger_payload,
                output=trigger_payload,
            )
        )
        steps = 1

        # (node index, predecessor output when enqueued)
        worklist: Deque[Tuple[int, Any]] = deque(
            (edge.target, trigger_payload) for edge in validated.successors(validated.trigger_index)
        )

        while worklist:
            if cancel_token is not None and cancel_token.is_cancelled:
                return self._abort(result, RunError.CANCELLED, {"steps": steps})
            elapsed_ms = (time.perf_counter() - started) * 1000
            if max_execution_ms is not None and elapsed_ms > max_execution_ms:
                return self._abort(
                    result, RunError.EXECUTION_TIMEOUT, {"maxExecutionMs": max_execution_ms, "elapsedMs": round(elapsed_ms, 3)}
                )
            if steps >= max_steps:
                return self._abort(result, RunError.STEP_LIMIT_EXCEEDED, {"maxSteps": max_steps})

            steps += 1
            index, node_input = worklist.popleft()
            node = validated.nodes[index]

            trace, branch, terminal = self._visit(node, node_input, state, registry, cancel_token)
            result.traces.append(trace)

            if trace.status == NodeStatus.FAILED:
                if state.first_failure is None:
                    state.first_failure = trace
                continue
            if terminal:
                continue

            for edge in validated.successors(index):
                if branch is None or edge.handle == branch:
                    worklist.append((edge.target, trace.output))

        self._finish(state)

    def _visit(
        self,
        node: WorkflowNode,
        node_input: Any,
        state: _RunState,
        registry: PrimitiveRegistry,
        cancel_token: Optional[CancellationToken],
    ) -> Tuple[NodeTrace, Optional[str], bool]:
        """
        Visit one node.

        Returns:
            (trace, branch, terminal) where branch is the edge handle to
            follow for a condition (None follows every outgoing edge) and
            terminal marks output nodes, which have no successors.
        """
        start_time = time.perf_counter()
        trace = NodeTrace(node_id=node.id, kind=node.kind, status=NodeStatus.SUCCEEDED, input=node_input)
        branch: Optional[str] = None
        terminal = False
        scope = ResolutionScope(variables=state.variables, node_outputs=state.outputs, input=node_input)

        try:
            if isinstance(node, PrimitiveNode):
                args = resolve_value(node.config, scope) if node.config else (
                    dict(node_input) if isinstance(node_input, Mapping) else {}
                )
                trace.input = args
                trace.output, trace.attempts = self._run_primitive(node, args, state, registry, cancel_token)
                state.outputs[node.id] = trace.output

            elif isinstance(node, ConditionNode):
                namespace = self._condition_namespace(state, node_input)
                passed = evaluate_condition(node.condition, namespace)
                branch = "true" if passed else "false"
                trace.branch = branch
                trace.output = node_input
                state.outputs[node.id] = node_input

            elif isinstance(node, OutputNode):
                value = resolve_value(node.value, scope) if node.has_value else node_input
                trace.output = value
                if node.output_type == OutputType.RETURN:
                    state.result.final_output = value
                else:
                    if node.destination:
                        node = node.model_copy(update={"destination": str(resolve_value(node.destination, scope))})
                    run_output_handler(
                        node,
                        value,
                        OutputContext(
                            workflow_id=state.result.workflow_id,
                            execution_id=state.result.execution_id,
                            stored=state.result.stored,
                            http_client=self._http_client,
                        ),
                    )
                state.output_reached = True
                terminal = True

            elif node.kind == NodeKind.TRIGGER.value:
                # Validation rejects edges into the trigger
                raise NodeError(f"Trigger node '{node.id}' cannot be re-entered")

            else:
                raise NodeError(f"Unsupported node kind: {node.kind}")

        except NodeError as e:
            trace.status = NodeStatus.FAILED
            trace.error = e.to_dict()
            logger.warning(
                f"Node {node.id} failed: {e.code}: {e}",
                extra=with_trace_context(
                    workflow_id=state.result.workflow_id,
                    execution_id=state.result.execution_id,
                    node_id=node.id,
                    primitive=getattr(node, "primitive", None),
                ),
            )

        trace.duration_ms = (time.perf_counter() - start_time) * 1000
        return trace, branch, terminal

    def _run_primitive(
        self,
        node: PrimitiveNode,
        args: Dict[str, Any],
        state: _RunState,
        registry: PrimitiveRegistry,
        cancel_token: Optional[CancellationToken],
    ) -> Tuple[Any, int]:
        primitive = registry.get(node.primitive)
        if primitive is None:
            raise UnknownPrimitiveError(node.primitive)

        timeout_ms = node.timeout_ms or primitive.timeout_ms or self._default_timeout_ms
        retry = state.validated.definition.config.retry
        context = InvocationContext(
            workflow_id=state.result.workflow_id,
            execution_id=state.result.execution_id,
            node_id=node.id,
            variables=state.variables,
            logger=logger,
        )

        attempt = 0
        while True:
            attempt += 1
            try:
                return self._invoke(primitive, args, context, timeout_ms), attempt
            except (PrimitiveExecutionError, PrimitiveTimeoutError) as e:
                cancelled = cancel_token is not None and cancel_token.is_cancelled
                if attempt >= retry.max_attempts or cancelled:
                    if attempt > 1:
                        e.details = {**e.details, "attempts": attempt}
                    raise
                logger.info(
                    f"Retrying {primitive.name} after {e.code} (attempt {attempt}/{retry.max_attempts})",
                    extra=with_trace_context(
                        workflow_id=state.result.workflow_id,
                        execution_id=state.result.execution_id,
                        node_id=node.id,
                        primitive=primitive.name,
                    ),
                )
                if retry.backoff_ms:
                    self._sleep(retry.backoff_ms * attempt / 1000)

    def _invoke(
        self,
        primitive: PrimitiveDefinition,
        args: Dict[str, Any],
        context: InvocationContext,
        timeout_ms: int,
    ) -> Any:
        output, timed_out = run_with_timeout(primitive.invoke, timeout_ms / 1000, args, context)
        if timed_out:
            raise PrimitiveTimeoutError(primitive.name, timeout_ms)
        return output

    @staticmethod
    def _condition_namespace(state: _RunState, node_input: Any) -> Dict[str, Any]:
        namespace: Dict[str, Any] = dict(state.variables)
        namespace.update(state.outputs)
        namespace["variables"] = state.variables
        namespace["nodes"] = state.outputs
        namespace["input"] = node_input
        return namespace

    @staticmethod
    def _abort(result: ExecutionResult, error: RunError, details: Dict[str, Any]) -> None:
        result.success = False
        result.error = error.value
        result.details = details

    @staticmethod
    def _finish(state: _RunState) -> None:
        result = state.result
        failure = state.first_failure
        if failure is not None:
            result.success = False
            result.error = failure.error["code"] if failure.error else "NodeError"
            result.details = {"nodeId": failure.node_id, **(failure.error or {})}
        elif not state.output_reached:
            result.success = False
            result.error = RunError.NO_OUTPUT_REACHED.value
        else:
            result.success = True


__all__ = [
    "CancellationToken",
    "ExecutionResult",
    "Interpreter",
    "NodeStatus",
    "NodeTrace",
    "RunError",
    "run_with_timeout",
]
