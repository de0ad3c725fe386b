"""
Data, validation and logic primitives.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List

from storeflow.registry.models import InvocationContext, PrimitiveDefinition
from storeflow.workflows.conditions import OPERATORS, get_path

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def transform(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    """Build a new object from dotted paths into ``data``."""
    data = args["data"]
    return {key: get_path(data, path) for key, path in args["mapping"].items()}


def filter_items(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    compare = OPERATORS[args["operator"]]
    items = [item for item in args["items"] if compare(get_path(item, args["field"]), args.get("value"))]
    return {"items": items, "count": len(items)}


def map_items(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    values = [get_path(item, args["field"]) for item in args["items"]]
    return {"items": values, "count": len(values)}


def aggregate(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    operation = args["operation"]
    items: List[Any] = args["items"]
    if operation == "count":
        return {"result": len(items), "operation": operation}

    field = args.get("field")
    values = [get_path(item, field) if field else item for item in items]
    numbers = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]

    if operation == "sum":
        result: Any = sum(numbers)
    elif operation == "avg":
        result = sum(numbers) / len(numbers) if numbers else None
    elif operation == "min":
        result = min(numbers) if numbers else None
    else:
        result = max(numbers) if numbers else None
    return {"result": result, "operation": operation}


def merge(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for obj in args["objects"]:
        if isinstance(obj, dict):
            merged.update(obj)
    return merged


def required_fields(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    data = args["data"]
    missing = [name for name in args["fields"] if get_path(data, name) in (None, "", [], {})]
    return {"valid": not missing, "missing": missing}


def validate_email(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    email = args["email"].strip()
    return {"valid": bool(EMAIL_PATTERN.match(email)), "email": email.lower()}


def switch(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    key = "" if args.get("value") is None else str(args["value"])
    cases: Dict[str, Any] = args["cases"]
    if key in cases:
        return {"matched": key, "result": cases[key]}
    return {"matched": None, "result": args.get("default")}


def coalesce(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    for value in args["values"]:
        if value is not None and value != "":
            return {"result": value}
    return {"result": args.get("default")}


PRIMITIVES = [
    PrimitiveDefinition(
        name="data.transform",
        display_name="Transform Data",
        description="Build a new object by picking dotted paths from the input data.",
        category="data",
        tags=["data", "transform", "mapping"],
        icon="Shuffle",
        builtin=True,
        input_schema={
            "properties": {
                "data": {"type": "any", "description": "Source data"},
                "mapping": {"type": "object", "description": "Output key -> dotted source path"},
            },
            "required": ["data", "mapping"],
        },
        handler=transform,
    ),
    PrimitiveDefinition(
        name="data.filter",
        display_name="Filter Items",
        description="Keep list items whose field matches a comparison.",
        category="data",
        tags=["data", "filter", "list"],
        icon="Filter",
        builtin=True,
        input_schema={
            "properties": {
                "items": {"type": "array"},
                "field": {"type": "string", "description": "Dotted path inside each item"},
                "operator": {"type": "string", "enum": sorted(OPERATORS), "default": "eq"},
                "value": {"type": "any"},
            },
            "required": ["items", "field"],
        },
        handler=filter_items,
    ),
    PrimitiveDefinition(
        name="data.map",
        display_name="Map Items",
        description="Extract one field from every list item.",
        category="data",
        tags=["data", "map", "list"],
        icon="List",
        builtin=True,
        input_schema={
            "properties": {
                "items": {"type": "array"},
                "field": {"type": "string"},
            },
            "required": ["items", "field"],
        },
        handler=map_items,
    ),
    PrimitiveDefinition(
        name="data.aggregate",
        display_name="Aggregate",
        description="Sum, average, min, max or count list items.",
        category="data",
        tags=["data", "aggregate", "math"],
        icon="Sigma",
        builtin=True,
        input_schema={
            "properties": {
                "items": {"type": "array"},
                "field": {"type": "string"},
                "operation": {"type": "string", "enum": ["sum", "avg", "min", "max", "count"], "default": "sum"},
            },
            "required": ["items"],
        },
        handler=aggregate,
    ),
    PrimitiveDefinition(
        name="data.merge",
        display_name="Merge Objects",
        description="Shallow-merge a list of objects, later keys winning.",
        category="data",
        tags=["data", "merge"],
        icon="Merge",
        builtin=True,
        input_schema={"properties": {"objects": {"type": "array"}}, "required": ["objects"]},
        handler=merge,
    ),
    PrimitiveDefinition(
        name="validation.requiredFields",
        display_name="Check Required Fields",
        description="Report which of the listed fields are missing or empty.",
        category="validation",
        tags=["validation", "fields"],
        icon="CheckSquare",
        builtin=True,
        input_schema={
            "properties": {
                "data": {"type": "object"},
                "fields": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["data", "fields"],
        },
        handler=required_fields,
    ),
    PrimitiveDefinition(
        name="validation.email",
        display_name="Validate Email",
        description="Check an email address is well formed.",
        category="validation",
        tags=["validation", "email"],
        icon="AtSign",
        builtin=True,
        input_schema={"properties": {"email": {"type": "string"}}, "required": ["email"]},
        handler=validate_email,
    ),
    PrimitiveDefinition(
        name="logic.switch",
        display_name="Switch",
        description="Pick a result by matching a value against named cases.",
        category="logic",
        tags=["logic", "switch", "branch"],
        icon="GitBranch",
        builtin=True,
        input_schema={
            "properties": {
                "value": {"type": "any"},
                "cases": {"type": "object", "description": "Case value -> result"},
                "default": {"type": "any"},
            },
            "required": ["cases"],
        },
        handler=switch,
    ),
    PrimitiveDefinition(
        name="logic.coalesce",
        display_name="Coalesce",
        description="Return the first value that is not null or empty.",
        category="logic",
        tags=["logic", "default"],
        icon="Layers",
        builtin=True,
        input_schema={
            "properties": {
                "values": {"type": "array"},
                "default": {"type": "any"},
            },
            "required": ["values"],
        },
        handler=coalesce,
    ),
]
