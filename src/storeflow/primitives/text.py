"""
Text primitives.
"""

from __future__ import annotations

from string import Template
from typing import Any, Dict

from storeflow.registry.models import InvocationContext, PrimitiveDefinition
from storeflow.workflows.models import slugify


def render_template(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    """
    Render ``$key`` / ``${key}`` placeholders from ``values``.

    Node config strings are already resolved before the call, so this uses
    its own placeholder syntax; unknown placeholders are left in place.
    """
    values = {str(k): "" if v is None else v for k, v in args["values"].items()}
    return {"text": Template(args["template"]).safe_substitute(values)}


def format_text(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    value = "" if args.get("value") is None else str(args["value"])
    operation = args["operation"]

    if operation == "upper":
        result = value.upper()
    elif operation == "lower":
        result = value.lower()
    elif operation == "trim":
        result = value.strip()
    elif operation == "capitalize":
        result = value[:1].upper() + value[1:]
    elif operation == "slug":
        result = slugify(value)
    else:
        length = args["length"]
        result = value if len(value) <= length else value[: max(length - 1, 0)] + "…"
    return {"text": result}


PRIMITIVES = [
    PrimitiveDefinition(
        name="string.template",
        display_name="Render Template",
        description="Fill $key placeholders in a text template.",
        category="text",
        tags=["text", "template", "string"],
        icon="FileText",
        builtin=True,
        input_schema={
            "properties": {
                "template": {"type": "string", "description": "Text with $key or ${key} placeholders"},
                "values": {"type": "object", "default": {}},
            },
            "required": ["template"],
        },
        handler=render_template,
    ),
    PrimitiveDefinition(
        name="string.format",
        display_name="Format Text",
        description="Change case, trim, slugify or truncate text.",
        category="text",
        tags=["text", "format", "string"],
        icon="Type",
        builtin=True,
        input_schema={
            "properties": {
                "value": {"type": "any"},
                "operation": {
                    "type": "string",
                    "enum": ["upper", "lower", "trim", "capitalize", "slug", "truncate"],
                },
                "length": {"type": "integer", "default": 100},
            },
            "required": ["operation"],
        },
        handler=format_text,
    ),
]
