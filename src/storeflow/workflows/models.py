"""
Workflow Models - JSON structures for workflow definitions and templates.

These models match the JSON the visual editor saves: flat node and edge
arrays with string ids, the trigger descriptor, variables and config.
Nodes are a closed tagged union on ``kind``.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class NodeKind(str, Enum):
    """Kinds of node a workflow graph can contain."""
    TRIGGER = "trigger"
    PRIMITIVE = "primitive"
    CONDITION = "condition"
    OUTPUT = "output"


class TriggerType(str, Enum):
    """What fires a workflow."""
    MANUAL = "MANUAL"
    SCHEDULE = "SCHEDULE"
    WEBHOOK = "WEBHOOK"
    EVENT = "EVENT"
    AI_AGENT = "AI_AGENT"


class OutputType(str, Enum):
    """What an output node does with its value."""
    RETURN = "return"
    LOG = "log"
    NOTIFY = "notify"
    STORE = "store"


class TemplateCategory(str, Enum):
    ECOMMERCE = "ecommerce"
    MARKETING = "marketing"
    NOTIFICATIONS = "notifications"
    CONTENT = "content"
    INTEGRATIONS = "integrations"
    CUSTOM = "custom"


def new_node_id() -> str:
    return f"node_{uuid.uuid4().hex[:12]}"


def new_edge_id() -> str:
    return f"edge_{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def slugify(value: str) -> str:
    """Lowercase, dash-separated slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "workflow"


# =============================================================================
# NODES
# =============================================================================


class NodePosition(BaseModel):
    """Node position in the canvas."""
    x: float = 0
    y: float = 0


class _NodeBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., description="Node id (unique within workflow)")
    name: str = Field("", description="Display label")
    position: NodePosition = Field(default_factory=NodePosition)


class TriggerNode(_NodeBase):
    kind: Literal["trigger"] = "trigger"


class PrimitiveNode(_NodeBase):
    kind: Literal["primitive"] = "primitive"
    primitive: str = Field(
        ...,
        validation_alias=AliasChoices("primitive", "primitiveId", "primitiveName"),
        description="Registered primitive name",
    )
    config: Dict[str, Any] = Field(default_factory=dict)
    timeout_ms: Optional[int] = Field(None, alias="timeoutMs", gt=0)


class Condition(BaseModel):
    """
    Structured condition as saved by the editor's condition builder.

    ``simple`` compares ``field`` against ``value`` with ``operator``;
    ``expression`` evaluates a restricted expression; ``all``/``any``/``none``
    combine nested conditions.
    """
    model_config = ConfigDict(extra="allow")

    type: Literal["simple", "expression", "all", "any", "none"] = "simple"
    field: Optional[str] = None
    operator: Optional[
        Literal[
            "eq", "neq", "gt", "gte", "lt", "lte",
            "contains", "startsWith", "endsWith", "in", "notIn", "exists",
        ]
    ] = None
    value: Any = None
    expression: Optional[str] = None
    conditions: List["Condition"] = Field(default_factory=list)


class ConditionNode(_NodeBase):
    kind: Literal["condition"] = "condition"
    condition: Union[str, Condition] = Field(
        ...,
        description="Boolean expression or structured condition",
    )


class OutputNode(_NodeBase):
    kind: Literal["output"] = "output"
    output_type: OutputType = Field(OutputType.RETURN, alias="outputType")
    value: Any = Field(None, description="Value to emit; the incoming data when unset")
    destination: Optional[str] = Field(None, description="Notify URL or store key")

    @property
    def has_value(self) -> bool:
        return self.value is not None


WorkflowNode = Annotated[
    Union[TriggerNode, PrimitiveNode, ConditionNode, OutputNode],
    Field(discriminator="kind"),
]


def normalize_editor_node(raw: Any) -> Any:
    """
    Accept the editor's React Flow node shape.

    ``{id, type, position, data: {label, nodeType, primitiveId, config}}`` is
    flattened into the tagged-union shape; anything else passes through.
    """
    if not isinstance(raw, dict) or "kind" in raw or "data" not in raw:
        return raw

    data = raw.get("data") or {}
    config = dict(data.get("config") or {})
    kind = data.get("nodeType") or raw.get("type")
    node: Dict[str, Any] = {
        "id": raw.get("id"),
        "kind": kind,
        "name": data.get("label", raw.get("name", "")),
        "position": raw.get("position") or {},
    }

    if kind == NodeKind.PRIMITIVE.value:
        node["primitive"] = data.get("primitiveId") or data.get("primitiveName")
        node["config"] = config.get("primitiveConfig", config)
        if data.get("timeoutMs"):
            node["timeoutMs"] = data["timeoutMs"]
    elif kind == NodeKind.CONDITION.value:
        node["condition"] = config.get("condition", data.get("condition"))
    elif kind == NodeKind.OUTPUT.value:
        node["outputType"] = config.get("outputType", OutputType.RETURN.value)
        if "value" in config:
            node["value"] = config["value"]
        if config.get("destination"):
            node["destination"] = config["destination"]
    return node


# =============================================================================
# EDGES / CONFIG
# =============================================================================


class Edge(BaseModel):
    """
    Directed connection between two nodes.

    Example: {"id": "e1", "source": "check", "target": "ship", "sourceHandle": "true"}
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(default_factory=new_edge_id)
    source: str
    target: str
    source_handle: Optional[str] = Field(None, alias="sourceHandle")
    target_handle: Optional[str] = Field(None, alias="targetHandle")
    label: Optional[str] = None


class RetryPolicy(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_attempts: int = Field(1, alias="maxAttempts", ge=1, le=10)
    backoff_ms: int = Field(0, alias="backoffMs", ge=0)


class WorkflowConfig(BaseModel):
    """Workflow-level execution options."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    max_steps: Optional[int] = Field(None, alias="maxSteps", gt=0)
    max_execution_ms: Optional[int] = Field(None, alias="maxExecutionMs", gt=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


# =============================================================================
# GRAPHS
# =============================================================================


class WorkflowGraph(BaseModel):
    """Node/edge graph plus trigger descriptor, shared by workflows and templates."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    trigger_type: TriggerType = Field(TriggerType.MANUAL, alias="triggerType")
    trigger_config: Dict[str, Any] = Field(default_factory=dict, alias="triggerConfig")
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    config: WorkflowConfig = Field(default_factory=WorkflowConfig)

    @field_validator("nodes", mode="before")
    @classmethod
    def _normalize_nodes(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [normalize_editor_node(item) for item in value]
        return value

    @field_validator("trigger_config", "variables", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Get node by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_trigger_nodes(self) -> List[TriggerNode]:
        return [node for node in self.nodes if node.kind == NodeKind.TRIGGER.value]

    def get_outgoing_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def get_incoming_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.target == node_id]


class WorkflowDefinition(WorkflowGraph):
    """
    Persisted automation authored in the visual editor.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = Field("Untitled Workflow")
    slug: Optional[str] = None
    description: Optional[str] = None
    owner: Optional[str] = None
    enabled: bool = Field(False, description="Disabled workflows refuse execution")
    template_id: Optional[str] = Field(None, alias="templateId")

    # Editor-only canvas state
    viewport: Dict[str, Any] = Field(default_factory=lambda: {"x": 0, "y": 0, "zoom": 1})

    version: int = 1
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")
    last_run_at: Optional[datetime] = Field(None, alias="lastRunAt")
    deleted_at: Optional[datetime] = Field(None, alias="deletedAt")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    # --- editor operations -------------------------------------------------

    def add_node(self, node: WorkflowNode) -> WorkflowNode:
        if self.get_node(node.id) is not None:
            raise ValueError(f"Node id already exists: {node.id}")
        self.nodes.append(node)
        return node

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge touching it."""
        if self.get_node(node_id) is None:
            raise KeyError(node_id)
        self.nodes = [node for node in self.nodes if node.id != node_id]
        self.edges = [
            edge for edge in self.edges
            if edge.source != node_id and edge.target != node_id
        ]

    def move_node(self, node_id: str, x: float, y: float) -> None:
        node = self.get_node(node_id)
        if node is None:
            raise KeyError(node_id)
        node.position = NodePosition(x=x, y=y)

    def add_edge(
        self,
        source: str,
        target: str,
        source_handle: Optional[str] = None,
        edge_id: Optional[str] = None,
    ) -> Edge:
        for node_id in (source, target):
            if self.get_node(node_id) is None:
                raise KeyError(node_id)
        edge = Edge(id=edge_id or new_edge_id(), source=source, target=target, source_handle=source_handle)
        self.edges.append(edge)
        return edge

    def remove_edge(self, edge_id: str) -> None:
        remaining = [edge for edge in self.edges if edge.id != edge_id]
        if len(remaining) == len(self.edges):
            raise KeyError(edge_id)
        self.edges = remaining

    def update_node_config(self, node_id: str, **changes: Any) -> WorkflowNode:
        """
        Edit a node's per-kind payload (e.g. ``config=...``, ``condition=...``).

        The node is re-validated so the result is always a well-formed node.
        """
        node = self.get_node(node_id)
        if node is None:
            raise KeyError(node_id)
        data = node.model_dump(by_alias=False)
        data.update(changes)
        updated = type(node).model_validate(data)
        self.nodes = [updated if item.id == node_id else item for item in self.nodes]
        return updated


class WorkflowTemplate(WorkflowGraph):
    """
    Catalog entry that can be cloned into a new workflow.
    """

    id: str
    slug: str
    name: str
    description: str = ""
    category: TemplateCategory = TemplateCategory.CUSTOM
    tags: List[str] = Field(default_factory=list)
    is_system: bool = Field(False, alias="isSystem")
    icon: Optional[str] = None


def parse_workflow(data: Dict[str, Any]) -> WorkflowDefinition:
    """Parse workflow JSON into WorkflowDefinition."""
    return WorkflowDefinition.model_validate(data)


__all__ = [
    "NodeKind",
    "TriggerType",
    "OutputType",
    "TemplateCategory",
    "NodePosition",
    "TriggerNode",
    "PrimitiveNode",
    "Condition",
    "ConditionNode",
    "OutputNode",
    "WorkflowNode",
    "Edge",
    "RetryPolicy",
    "WorkflowConfig",
    "WorkflowGraph",
    "WorkflowDefinition",
    "WorkflowTemplate",
    "new_node_id",
    "new_edge_id",
    "slugify",
    "parse_workflow",
]
