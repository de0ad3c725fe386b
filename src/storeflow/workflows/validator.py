"""
Graph Validator - Structural checks and compilation to an executable arena.

Takes a WorkflowDefinition, reports every structural problem at once, and
compiles valid graphs into a dense node list with index adjacency.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Set

from pydantic import BaseModel

from storeflow.errors import GraphValidationError
from storeflow.workflows.models import NodeKind, WorkflowGraph, WorkflowNode

BRANCH_HANDLES = ("true", "false")


class GraphIssue(BaseModel):
    """One structural problem found in a workflow graph."""

    code: str
    message: str
    severity: Literal["error", "warning"] = "error"
    node_id: Optional[str] = None
    edge_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == "error"


@dataclass(frozen=True)
class CompiledEdge:
    """Edge between two arena indexes."""
    edge_id: str
    source: int
    target: int
    handle: Optional[str] = None


@dataclass
class ValidatedWorkflow:
    """
    A workflow graph that passed validation.

    Nodes live in a dense list; ``adjacency[i]`` holds the outgoing edges of
    node ``i`` in declaration order.
    """
    definition: WorkflowGraph
    nodes: List[WorkflowNode]
    index: Dict[str, int]
    adjacency: List[List[CompiledEdge]]
    trigger_index: int
    reachable: Set[int] = field(default_factory=set)
    warnings: List[GraphIssue] = field(default_factory=list)

    @property
    def workflow_id(self) -> Optional[str]:
        return getattr(self.definition, "id", None)

    @property
    def trigger(self) -> WorkflowNode:
        return self.nodes[self.trigger_index]

    def node_index(self, node_id: str) -> int:
        return self.index[node_id]

    def successors(self, index: int) -> List[CompiledEdge]:
        return self.adjacency[index]

    @property
    def unreachable(self) -> List[WorkflowNode]:
        return [node for i, node in enumerate(self.nodes) if i not in self.reachable]


def _issue(code: str, message: str, severity: str = "error", **ids: Optional[str]) -> GraphIssue:
    return GraphIssue(code=code, message=message, severity=severity, **ids)


def _reachable_from(start: int, adjacency: List[List[CompiledEdge]]) -> Set[int]:
    seen = {start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for edge in adjacency[current]:
            if edge.target not in seen:
                seen.add(edge.target)
                queue.append(edge.target)
    return seen


def _compile(definition: WorkflowGraph, issues: List[GraphIssue]) -> tuple:
    """Build the arena, recording id and edge problems into ``issues``."""
    nodes: List[WorkflowNode] = []
    index: Dict[str, int] = {}
    for node in definition.nodes:
        if node.id in index:
            issues.append(_issue("DuplicateNodeId", f"Node id '{node.id}' is used more than once", node_id=node.id))
            continue
        index[node.id] = len(nodes)
        nodes.append(node)

    adjacency: List[List[CompiledEdge]] = [[] for _ in nodes]
    for edge in definition.edges:
        missing = [end for end in (edge.source, edge.target) if end not in index]
        if missing:
            issues.append(
                _issue(
                    "DanglingEdge",
                    f"Edge '{edge.id}' references missing node(s): {', '.join(missing)}",
                    edge_id=edge.id,
                )
            )
            continue
        source = index[edge.source]
        adjacency[source].append(
            CompiledEdge(edge_id=edge.id, source=source, target=index[edge.target], handle=edge.source_handle)
        )
    return nodes, index, adjacency


def check(definition: WorkflowGraph, strict_branches: bool = False) -> List[GraphIssue]:
    """Return every issue found in the graph (errors and warnings)."""
    return _check(definition, strict_branches)[0]


def _check(definition: WorkflowGraph, strict_branches: bool):
    issues: List[GraphIssue] = []

    # 1. Exactly one trigger
    triggers = [node for node in definition.nodes if node.kind == NodeKind.TRIGGER.value]
    if not triggers:
        issues.append(_issue("MissingTrigger", "Workflow has no trigger node"))
    elif len(triggers) > 1:
        for extra in triggers[1:]:
            issues.append(
                _issue("MultipleTriggers", f"Workflow has {len(triggers)} trigger nodes", node_id=extra.id)
            )

    # 2. Ids and edge endpoints
    nodes, index, adjacency = _compile(definition, issues)

    trigger_index: Optional[int] = None
    if len(triggers) == 1:
        trigger_index = index[triggers[0].id]

    # 3. Reachability
    reachable: Set[int] = set()
    if trigger_index is not None:
        reachable = _reachable_from(trigger_index, adjacency)
        for i, node in enumerate(nodes):
            if i not in reachable and node.kind != NodeKind.TRIGGER.value:
                issues.append(
                    _issue(
                        "UnreachableNode",
                        f"Node '{node.id}' is not reachable from the trigger",
                        severity="warning",
                        node_id=node.id,
                    )
                )

    # 4. Condition branching
    for i, node in enumerate(nodes):
        if node.kind != NodeKind.CONDITION.value:
            continue
        outgoing = adjacency[i]
        handles = [edge.handle for edge in outgoing]
        if (
            len(outgoing) > 2
            or any(handle not in BRANCH_HANDLES for handle in handles)
            or len(set(handles)) != len(handles)
        ):
            issues.append(
                _issue(
                    "InvalidBranching",
                    f"Condition '{node.id}' needs at most one 'true' and one 'false' edge, got {handles}",
                    node_id=node.id,
                )
            )
            continue
        missing = [handle for handle in BRANCH_HANDLES if handle not in handles]
        if missing:
            issues.append(
                _issue(
                    "MissingBranch",
                    f"Condition '{node.id}' has no '{missing[0]}' branch"
                    if len(missing) == 1
                    else f"Condition '{node.id}' has no branches",
                    severity="error" if strict_branches else "warning",
                    node_id=node.id,
                )
            )

    # 5. Nothing the trigger reaches may lead back into it
    if trigger_index is not None:
        for i in sorted(reachable):
            for edge in adjacency[i]:
                if edge.target == trigger_index:
                    issues.append(
                        _issue(
                            "TriggerCycle",
                            f"Edge '{edge.edge_id}' leads back into the trigger",
                            edge_id=edge.edge_id,
                        )
                    )

    return issues, nodes, index, adjacency, trigger_index, reachable


def validate(definition: WorkflowGraph, strict_branches: Optional[bool] = None) -> ValidatedWorkflow:
    """
    Validate a workflow and compile it for execution.

    Args:
        definition: Workflow (or template) graph
        strict_branches: Treat missing condition branches as errors
            (defaults to STOREFLOW_STRICT_CONDITION_BRANCHES)

    Raises:
        GraphValidationError: Listing every issue when any error exists.
    """
    if strict_branches is None:
        from storeflow.config import get_settings

        strict_branches = get_settings().strict_condition_branches

    issues, nodes, index, adjacency, trigger_index, reachable = _check(definition, strict_branches)
    if any(issue.is_error for issue in issues):
        raise GraphValidationError(issues)

    return ValidatedWorkflow(
        definition=definition,
        nodes=nodes,
        index=index,
        adjacency=adjacency,
        trigger_index=trigger_index,  # type: ignore[arg-type]
        reachable=reachable,
        warnings=[issue for issue in issues if not issue.is_error],
    )


__all__ = [
    "GraphIssue",
    "CompiledEdge",
    "ValidatedWorkflow",
    "check",
    "validate",
]
