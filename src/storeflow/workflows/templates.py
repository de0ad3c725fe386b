"""
Template catalog and installer.

System templates ship with the package; custom templates are created from
existing workflows. Installing a template deep-copies its graph into a new,
disabled workflow with fresh node and edge ids.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any, Dict, List, Optional, Union

from storeflow.errors import (
    ExpressionError,
    NameConflictError,
    TemplateNotFoundError,
    UnresolvedReferenceError,
)
from storeflow.observability import get_logger
from storeflow.storage.base import WorkflowStore
from storeflow.workflows.expressions import rename_names
from storeflow.workflows.models import (
    Condition,
    ConditionNode,
    Edge,
    TemplateCategory,
    WorkflowDefinition,
    WorkflowGraph,
    WorkflowTemplate,
    new_edge_id,
    new_node_id,
    slugify,
)
from storeflow.workflows.references import (
    INPUT_KEY,
    TRIGGER_KEY,
    VARIABLE_PREFIXES,
    rename_node_references,
)

logger = get_logger(__name__)

NODES_KEY = "nodes"

# Condition names bound to the run environment rather than a node output
RESERVED_CONDITION_NAMES = (TRIGGER_KEY, INPUT_KEY, NODES_KEY) + VARIABLE_PREFIXES


SYSTEM_TEMPLATES: List[Dict[str, Any]] = [
    {
        "id": "tpl_order_paid_label",
        "slug": "order-paid-shipping-label",
        "name": "Ship Paid Orders",
        "description": "When an order is paid, validate the address, buy the cheapest label and return the tracking info.",
        "category": "ecommerce",
        "tags": ["orders", "shipping", "shippo"],
        "icon": "Truck",
        "isSystem": True,
        "triggerType": "EVENT",
        "triggerConfig": {"eventTypes": ["order.paid"]},
        "nodes": [
            {"id": "trigger", "kind": "trigger", "name": "Order paid"},
            {
                "id": "address",
                "kind": "primitive",
                "name": "Validate address",
                "primitive": "shipping.validateAddress",
                "config": {
                    "name": "{{trigger.shippingAddress.name}}",
                    "street1": "{{trigger.shippingAddress.street1}}",
                    "city": "{{trigger.shippingAddress.city}}",
                    "state": "{{trigger.shippingAddress.state}}",
                    "zip": "{{trigger.shippingAddress.zip}}",
                    "country": "{{trigger.shippingAddress.country}}",
                },
            },
            {"id": "valid", "kind": "condition", "name": "Address valid?", "condition": "input.isValid"},
            {
                "id": "rates",
                "kind": "primitive",
                "name": "Get rates",
                "primitive": "shipping.getRates",
                "config": {"addressTo": "{{address.address}}", "parcels": "{{trigger.parcels}}"},
            },
            {
                "id": "label",
                "kind": "primitive",
                "name": "Buy label",
                "primitive": "shipping.createLabel",
                "config": {"rateId": "{{rates.rates.0.rateId}}", "orderId": "{{trigger.orderId}}"},
            },
            {
                "id": "done",
                "kind": "output",
                "name": "Tracking",
                "outputType": "return",
                "value": {"trackingNumber": "{{label.trackingNumber}}", "labelUrl": "{{label.labelUrl}}"},
            },
            {
                "id": "flag",
                "kind": "output",
                "name": "Flag for review",
                "outputType": "log",
                "value": {"orderId": "{{trigger.orderId}}", "messages": "{{address.messages}}"},
            },
        ],
        "edges": [
            {"id": "e1", "source": "trigger", "target": "address"},
            {"id": "e2", "source": "address", "target": "valid"},
            {"id": "e3", "source": "valid", "target": "rates", "sourceHandle": "true"},
            {"id": "e4", "source": "valid", "target": "flag", "sourceHandle": "false"},
            {"id": "e5", "source": "rates", "target": "label"},
            {"id": "e6", "source": "label", "target": "done"},
        ],
    },
    {
        "id": "tpl_new_customer_stripe",
        "slug": "new-customer-stripe",
        "name": "Create Stripe Customer",
        "description": "Create a Stripe customer for every new storefront account and store its id.",
        "category": "integrations",
        "tags": ["customers", "stripe", "payments"],
        "icon": "UserPlus",
        "isSystem": True,
        "triggerType": "EVENT",
        "triggerConfig": {"eventTypes": ["customer.created"]},
        "nodes": [
            {"id": "trigger", "kind": "trigger", "name": "Customer created"},
            {"id": "email", "kind": "primitive", "name": "Check email", "primitive": "validation.email",
             "config": {"email": "{{trigger.email}}"}},
            {"id": "ok", "kind": "condition", "name": "Email valid?",
             "condition": {"type": "simple", "field": "input.valid", "operator": "eq", "value": True}},
            {"id": "customer", "kind": "primitive", "name": "Create customer", "primitive": "payment.createCustomer",
             "config": {"email": "{{email.email}}", "name": "{{trigger.name}}"}},
            {"id": "save", "kind": "output", "name": "Save customer id", "outputType": "store",
             "destination": "stripeCustomerId", "value": "{{customer.customerId}}"},
        ],
        "edges": [
            {"id": "e1", "source": "trigger", "target": "email"},
            {"id": "e2", "source": "email", "target": "ok"},
            {"id": "e3", "source": "ok", "target": "customer", "sourceHandle": "true"},
            {"id": "e4", "source": "customer", "target": "save"},
        ],
    },
    {
        "id": "tpl_big_order_alert",
        "slug": "big-order-alert",
        "name": "Big Order Alert",
        "description": "Notify a webhook when an order total crosses a threshold.",
        "category": "notifications",
        "tags": ["orders", "alerts", "webhook"],
        "icon": "Bell",
        "isSystem": True,
        "triggerType": "EVENT",
        "triggerConfig": {"eventTypes": ["order.created"]},
        "variables": {"threshold": 500, "alertUrl": "https://example.com/hooks/orders"},
        "nodes": [
            {"id": "trigger", "kind": "trigger", "name": "Order created"},
            {"id": "big", "kind": "condition", "name": "Over threshold?", "condition": "trigger.total >= threshold"},
            {"id": "notify", "kind": "output", "name": "Alert", "outputType": "notify",
             "destination": "{{variables.alertUrl}}",
             "value": {"orderId": "{{trigger.orderId}}", "total": "{{trigger.total}}"}},
        ],
        "edges": [
            {"id": "e1", "source": "trigger", "target": "big"},
            {"id": "e2", "source": "big", "target": "notify", "sourceHandle": "true"},
        ],
    },
    {
        "id": "tpl_welcome_coupon",
        "slug": "welcome-coupon",
        "name": "Welcome Coupon",
        "description": "Create a one-time welcome coupon for a new subscriber and return the code.",
        "category": "marketing",
        "tags": ["marketing", "coupon", "stripe"],
        "icon": "Percent",
        "isSystem": True,
        "triggerType": "WEBHOOK",
        "triggerConfig": {"path": "newsletter-signup"},
        "nodes": [
            {"id": "trigger", "kind": "trigger", "name": "Signup webhook"},
            {"id": "code", "kind": "primitive", "name": "Coupon code", "primitive": "string.format",
             "config": {"value": "WELCOME-{{trigger.firstName}}", "operation": "upper"}},
            {"id": "coupon", "kind": "primitive", "name": "Create coupon", "primitive": "discount.createCoupon",
             "config": {"percentOff": 10, "duration": "once", "code": "{{code.text}}"}},
            {"id": "done", "kind": "output", "name": "Coupon", "outputType": "return",
             "value": {"code": "{{coupon.couponId}}"}},
        ],
        "edges": [
            {"id": "e1", "source": "trigger", "target": "code"},
            {"id": "e2", "source": "code", "target": "coupon"},
            {"id": "e3", "source": "coupon", "target": "done"},
        ],
    },
    {
        "id": "tpl_daily_sales_digest",
        "slug": "daily-sales-digest",
        "name": "Daily Sales Digest",
        "description": "Every morning, fetch yesterday's orders from the store API and total them.",
        "category": "ecommerce",
        "tags": ["reports", "schedule", "orders"],
        "icon": "BarChart",
        "isSystem": True,
        "triggerType": "SCHEDULE",
        "triggerConfig": {"cron": "0 8 * * *"},
        "variables": {"ordersUrl": "https://example.com/api/orders?since=yesterday"},
        "nodes": [
            {"id": "trigger", "kind": "trigger", "name": "Every day 08:00"},
            {"id": "fetch", "kind": "primitive", "name": "Fetch orders", "primitive": "http.request",
             "config": {"url": "{{variables.ordersUrl}}"}},
            {"id": "total", "kind": "primitive", "name": "Total sales", "primitive": "data.aggregate",
             "config": {"items": "{{fetch.body.orders}}", "field": "total", "operation": "sum"}},
            {"id": "report", "kind": "output", "name": "Log digest", "outputType": "log",
             "value": {"orders": "{{fetch.body.orders}}", "total": "{{total.result}}"}},
        ],
        "edges": [
            {"id": "e1", "source": "trigger", "target": "fetch"},
            {"id": "e2", "source": "fetch", "target": "total"},
            {"id": "e3", "source": "total", "target": "report"},
        ],
    },
]


def _remap_references(value: Any, id_map: Dict[str, str]) -> Any:
    """Rewrite ``{{oldId...}}`` references to the cloned node ids."""
    if isinstance(value, str):
        try:
            return rename_node_references(value, id_map)
        except UnresolvedReferenceError:
            # Left as is; the clone reports it at run time like the original
            return value
    if isinstance(value, dict):
        return {key: _remap_references(item, id_map) for key, item in value.items()}
    if isinstance(value, list):
        return [_remap_references(item, id_map) for item in value]
    return value


def _remap_expression(expression: str, names: Dict[str, str]) -> str:
    try:
        return rename_names(expression, names, container=NODES_KEY)
    except ExpressionError:
        return expression


def _remap_field(path: str, names: Dict[str, str]) -> str:
    """Rename the node id heading a dotted field path (``fetch.total``, ``nodes.fetch.total``)."""
    segments = path.split(".")
    position = 1 if segments[0] == NODES_KEY and len(segments) > 1 else 0
    if segments[position] in names:
        segments[position] = names[segments[position]]
    return ".".join(segments)


def _remap_condition(condition: Union[str, Condition], names: Dict[str, str]) -> Union[str, Condition]:
    """Rewrite node ids named by a condition expression or structured condition."""
    if isinstance(condition, str):
        return _remap_expression(condition, names)
    update: Dict[str, Any] = {}
    if condition.field:
        update["field"] = _remap_field(condition.field, names)
    if condition.expression:
        update["expression"] = _remap_expression(condition.expression, names)
    if condition.conditions:
        update["conditions"] = [_remap_condition(child, names) for child in condition.conditions]
    return condition.model_copy(update=update)


def clone_graph(graph: WorkflowGraph) -> Dict[str, Any]:
    """
    Deep-copy a graph with fresh node and edge ids.

    References to the old node ids inside node payloads and condition
    expressions are rewritten.

    Returns:
        Field values (nodes, edges, trigger, variables, config) for a new workflow
    """
    id_map = {node.id: new_node_id() for node in graph.nodes}
    names = {old: new for old, new in id_map.items() if old not in RESERVED_CONDITION_NAMES}
    nodes = []
    for node in graph.nodes:
        clone = node.model_copy(deep=True, update={"id": id_map[node.id]})
        for attr in ("config", "value", "destination"):
            current = getattr(clone, attr, None)
            if isinstance(current, (str, dict, list)):
                setattr(clone, attr, _remap_references(current, id_map))
        if isinstance(clone, ConditionNode):
            clone.condition = _remap_condition(clone.condition, names)
        nodes.append(clone)

    edges = [
        Edge(
            id=new_edge_id(),
            source=id_map.get(edge.source, edge.source),
            target=id_map.get(edge.target, edge.target),
            source_handle=edge.source_handle,
            target_handle=edge.target_handle,
            label=edge.label,
        )
        for edge in graph.edges
    ]
    return {
        "nodes": nodes,
        "edges": edges,
        "trigger_type": graph.trigger_type,
        "trigger_config": copy.deepcopy(graph.trigger_config),
        "variables": copy.deepcopy(graph.variables),
        "config": graph.config.model_copy(deep=True),
    }


class TemplateCatalog:
    """
    Browsable set of workflow templates.

    Usage:
        catalog = TemplateCatalog()
        for category, templates in catalog.grouped().items(): ...
    """

    def __init__(self, templates: Optional[List[WorkflowTemplate]] = None):
        if templates is None:
            templates = [WorkflowTemplate.model_validate(data) for data in SYSTEM_TEMPLATES]
        self._templates: Dict[str, WorkflowTemplate] = {}
        for template in templates:
            self.add(template)

    def add(self, template: WorkflowTemplate) -> WorkflowTemplate:
        if template.id in self._templates or self.get(template.slug) is not None:
            raise ValueError(f"Template already exists: {template.slug}")
        self._templates[template.id] = template
        return template

    def get(self, id_or_slug: str) -> Optional[WorkflowTemplate]:
        """Look a template up by id, then by slug."""
        template = self._templates.get(id_or_slug)
        if template is not None:
            return template
        for candidate in self._templates.values():
            if candidate.slug == id_or_slug:
                return candidate
        return None

    def list(self, category: Optional[TemplateCategory] = None, tag: Optional[str] = None) -> List[WorkflowTemplate]:
        templates = [
            template
            for template in self._templates.values()
            if (category is None or template.category == category) and (tag is None or tag in template.tags)
        ]
        return sorted(templates, key=lambda t: (t.category.value, t.name))

    def grouped(self) -> Dict[str, List[WorkflowTemplate]]:
        """Templates grouped by category, in category order."""
        groups: Dict[str, List[WorkflowTemplate]] = {}
        for template in self.list():
            groups.setdefault(template.category.value, []).append(template)
        return groups

    def create_from_workflow(
        self,
        workflow: WorkflowDefinition,
        name: Optional[str] = None,
        description: Optional[str] = None,
        category: TemplateCategory = TemplateCategory.CUSTOM,
        tags: Optional[List[str]] = None,
    ) -> WorkflowTemplate:
        """Save an existing workflow's graph as a custom template."""
        name = name or workflow.name
        base = slugify(name)
        slug, counter = base, 2
        while self.get(slug) is not None:
            slug = f"{base}-{counter}"
            counter += 1

        template = WorkflowTemplate(
            id=f"tpl_{uuid.uuid4().hex[:12]}",
            slug=slug,
            name=name,
            description=description or workflow.description or "",
            category=category,
            tags=list(tags or []),
            is_system=False,
            trigger_type=workflow.trigger_type,
            trigger_config=copy.deepcopy(workflow.trigger_config),
            nodes=[node.model_copy(deep=True) for node in workflow.nodes],
            edges=[edge.model_copy(deep=True) for edge in workflow.edges],
            variables=copy.deepcopy(workflow.variables),
            config=workflow.config.model_copy(deep=True),
        )
        logger.info(f"Template created from workflow {workflow.id}: {template.slug}")
        return self.add(template)


class TemplateInstaller:
    """
    Installs templates as new workflows.

    Usage:
        installer = TemplateInstaller(catalog, store)
        workflow = installer.install("order-paid-shipping-label", "Ship orders", owner="store-1")
    """

    def __init__(
        self,
        catalog: TemplateCatalog,
        store: WorkflowStore,
        enforce_unique_names: Optional[bool] = None,
    ):
        if enforce_unique_names is None:
            from storeflow.config import get_settings

            enforce_unique_names = get_settings().enforce_unique_workflow_names
        self.catalog = catalog
        self.store = store
        self.enforce_unique_names = enforce_unique_names

    def install(self, template_id: str, new_name: Optional[str] = None, owner: Optional[str] = None) -> WorkflowDefinition:
        """
        Create a disabled workflow from a template.

        Raises:
            TemplateNotFoundError: No template with that id or slug
            NameConflictError: Owner already has a workflow with that name
        """
        template = self.catalog.get(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template not found: {template_id}")

        name = new_name or template.name
        if self.enforce_unique_names and self.store.name_exists(owner, name):
            raise NameConflictError(f"A workflow named '{name}' already exists")

        cloned = clone_graph(template)

        workflow = WorkflowDefinition(
            name=name,
            slug=self.store.unique_slug(name),
            description=template.description,
            owner=owner,
            enabled=False,
            template_id=template.id,
            **cloned,
        )
        saved = self.store.save(workflow)
        logger.info(
            f"Installed template {template.slug} as {saved.slug}",
            extra={"workflow_id": saved.id},
        )
        return saved


__all__ = [
    "SYSTEM_TEMPLATES",
    "TemplateCatalog",
    "TemplateInstaller",
    "clone_graph",
]
