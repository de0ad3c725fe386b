"""
HTTP primitives.
"""

from __future__ import annotations

from typing import Any, Dict

from storeflow.http import HttpClient
from storeflow.registry.models import InvocationContext, PrimitiveDefinition


def http_request(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    """Send a request; non-2xx responses fail the node when ``failOnError``."""
    client = HttpClient(default_headers=args.get("headers") or {}, timeout=args.get("timeoutSeconds"))
    method = args["method"]
    body = args.get("body")
    response = client.request(
        method,
        args["url"],
        params=args.get("query"),
        json=body if method not in ("GET", "DELETE") else None,
    )
    if args["failOnError"]:
        response.raise_for_status()
    return {"ok": response.ok, **response.to_dict()}


def send_webhook(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    client = HttpClient(default_headers=args.get("headers") or {})
    payload = {
        "event": args.get("event"),
        "workflowId": context.workflow_id,
        "executionId": context.execution_id,
        "data": args.get("payload"),
    }
    response = client.post(args["url"], json=payload)
    response.raise_for_status()
    return {"delivered": True, "status": response.status_code}


PRIMITIVES = [
    PrimitiveDefinition(
        name="http.request",
        display_name="HTTP Request",
        description="Call an HTTP endpoint and return status, headers and body.",
        category="http",
        tags=["http", "api", "request"],
        icon="Globe",
        builtin=True,
        timeout_ms=60000,
        input_schema={
            "properties": {
                "url": {"type": "string"},
                "method": {
                    "type": "string",
                    "enum": ["GET", "POST", "PUT", "PATCH", "DELETE"],
                    "default": "GET",
                },
                "headers": {"type": "object"},
                "query": {"type": "object"},
                "body": {"type": "any"},
                "timeoutSeconds": {"type": "number"},
                "failOnError": {"type": "boolean", "default": True},
            },
            "required": ["url"],
        },
        handler=http_request,
    ),
    PrimitiveDefinition(
        name="http.webhook",
        display_name="Send Webhook",
        description="POST a JSON event envelope to a webhook URL.",
        category="http",
        tags=["http", "webhook", "notify"],
        icon="Webhook",
        builtin=True,
        input_schema={
            "properties": {
                "url": {"type": "string"},
                "event": {"type": "string"},
                "payload": {"type": "any"},
                "headers": {"type": "object"},
            },
            "required": ["url"],
        },
        handler=send_webhook,
    ),
]
