"""
Date, math and utility primitives.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from storeflow.registry.models import InvocationContext, PrimitiveDefinition

# util.wait never blocks longer than this
MAX_WAIT_MS = 10_000

_UNITS = {"seconds", "minutes", "hours", "days", "weeks"}


def _parse_date(value: Any) -> datetime:
    if value in (None, "", "now"):
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def date_now(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {"iso": now.isoformat(), "unix": int(now.timestamp())}


def date_add(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    base = _parse_date(args.get("date"))
    result = base + timedelta(**{args["unit"]: args["amount"]})
    return {"iso": result.isoformat(), "unix": int(result.timestamp())}


def calculate(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    a, b, operation = args["a"], args["b"], args["operation"]
    if operation == "add":
        result = a + b
    elif operation == "subtract":
        result = a - b
    elif operation == "multiply":
        result = a * b
    elif operation == "divide":
        if b == 0:
            raise ZeroDivisionError("division by zero")
        result = a / b
    else:
        result = a * b / 100
    return {"result": result}


def round_number(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    return {"result": round(args["value"], args["decimals"])}


def make_uuid(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    return {"uuid": str(uuid.uuid4())}


def timestamp(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    return {"timestamp": int(time.time() * 1000)}


def log_message(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    level = logging.getLevelName(args["level"].upper())
    context.logger.log(
        level,
        args["message"],
        extra={
            "workflow_id": context.workflow_id,
            "execution_id": context.execution_id,
            "node_id": context.node_id,
            "data": args.get("data"),
        },
    )
    return {"logged": True, "message": args["message"]}


def wait(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    waited = min(args["ms"], MAX_WAIT_MS)
    time.sleep(waited / 1000)
    return {"waitedMs": waited}


PRIMITIVES = [
    PrimitiveDefinition(
        name="date.now",
        display_name="Current Time",
        description="Current UTC time as ISO string and unix seconds.",
        category="date",
        tags=["date", "time"],
        icon="Clock",
        builtin=True,
        handler=date_now,
    ),
    PrimitiveDefinition(
        name="date.add",
        display_name="Add to Date",
        description="Shift a date by an amount of seconds, minutes, hours, days or weeks.",
        category="date",
        tags=["date", "time", "schedule"],
        icon="CalendarPlus",
        builtin=True,
        input_schema={
            "properties": {
                "date": {"type": "any", "description": "ISO date, unix seconds or 'now'", "default": "now"},
                "amount": {"type": "number"},
                "unit": {"type": "string", "enum": sorted(_UNITS), "default": "days"},
            },
            "required": ["amount"],
        },
        handler=date_add,
    ),
    PrimitiveDefinition(
        name="math.calculate",
        display_name="Calculate",
        description="Add, subtract, multiply, divide or take a percentage of two numbers.",
        category="math",
        tags=["math", "calculate"],
        icon="Calculator",
        builtin=True,
        input_schema={
            "properties": {
                "a": {"type": "number"},
                "b": {"type": "number"},
                "operation": {
                    "type": "string",
                    "enum": ["add", "subtract", "multiply", "divide", "percent"],
                },
            },
            "required": ["a", "b", "operation"],
        },
        handler=calculate,
    ),
    PrimitiveDefinition(
        name="math.round",
        display_name="Round",
        description="Round a number to a number of decimals.",
        category="math",
        tags=["math", "round"],
        icon="Hash",
        builtin=True,
        input_schema={
            "properties": {
                "value": {"type": "number"},
                "decimals": {"type": "integer", "default": 2},
            },
            "required": ["value"],
        },
        handler=round_number,
    ),
    PrimitiveDefinition(
        name="util.uuid",
        display_name="Generate UUID",
        description="Generate a random UUID.",
        category="util",
        tags=["util", "id"],
        icon="Fingerprint",
        builtin=True,
        handler=make_uuid,
    ),
    PrimitiveDefinition(
        name="util.timestamp",
        display_name="Timestamp",
        description="Current time in unix milliseconds.",
        category="util",
        tags=["util", "time"],
        icon="Timer",
        builtin=True,
        handler=timestamp,
    ),
    PrimitiveDefinition(
        name="util.log",
        display_name="Log",
        description="Write a message to the execution log.",
        category="util",
        tags=["util", "debug", "log"],
        icon="ScrollText",
        builtin=True,
        input_schema={
            "properties": {
                "message": {"type": "string"},
                "level": {"type": "string", "enum": ["debug", "info", "warning", "error"], "default": "info"},
                "data": {"type": "any"},
            },
            "required": ["message"],
        },
        handler=log_message,
    ),
    PrimitiveDefinition(
        name="util.wait",
        display_name="Wait",
        description="Pause the branch for a number of milliseconds (at most 10 seconds).",
        category="util",
        tags=["util", "delay"],
        icon="Hourglass",
        builtin=True,
        timeout_ms=MAX_WAIT_MS + 1000,
        input_schema={
            "properties": {"ms": {"type": "integer", "default": 1000}},
        },
        handler=wait,
    ),
]
