"""
Payment primitives backed by the Stripe SDK.

Requires STOREFLOW_STRIPE_API_KEY. Amounts are integer minor units (cents).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from storeflow.config import get_settings
from storeflow.registry.models import InvocationContext, PrimitiveDefinition


class PaymentConfigError(Exception):
    """Raised when the Stripe key is not configured."""


def stripe_api_key() -> str:
    settings = get_settings()
    if settings.stripe_api_key is None:
        raise PaymentConfigError("STOREFLOW_STRIPE_API_KEY is not configured")
    return settings.stripe_api_key.get_secret_value()


def _iso(timestamp: Optional[int]) -> Optional[str]:
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _metadata(args: Dict[str, Any], **extra: Any) -> Dict[str, str]:
    metadata = {str(k): str(v) for k, v in (args.get("metadata") or {}).items()}
    metadata.update({k: str(v) for k, v in extra.items() if v is not None})
    return metadata


def create_customer(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    params: Dict[str, Any] = {"email": args["email"], "metadata": _metadata(args)}
    if args.get("name"):
        params["name"] = args["name"]
    if args.get("phone"):
        params["phone"] = args["phone"]
    if args.get("address"):
        address = args["address"]
        params["address"] = {
            "line1": address.get("line1"),
            "line2": address.get("line2"),
            "city": address.get("city"),
            "state": address.get("state"),
            "postal_code": address.get("postalCode"),
            "country": address.get("country"),
        }

    customer = stripe.Customer.create(api_key=stripe_api_key(), **params)
    return {"success": True, "customerId": customer["id"], "email": customer.get("email")}


def create_intent(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "amount": int(args["amount"]),
        "currency": args["currency"].lower(),
        "capture_method": args["captureMethod"],
        "metadata": _metadata(args, orderId=args.get("orderId"), workflowId=context.workflow_id),
    }
    if args.get("customerId"):
        params["customer"] = args["customerId"]

    intent = stripe.PaymentIntent.create(api_key=stripe_api_key(), **params)
    return {
        "success": True,
        "paymentIntentId": intent["id"],
        "clientSecret": intent.get("client_secret"),
        "status": intent.get("status"),
    }


def create_refund(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    params: Dict[str, Any] = {"payment_intent": args["paymentIntentId"], "metadata": _metadata(args)}
    if args.get("amount") is not None:
        params["amount"] = int(args["amount"])
    if args.get("reason"):
        params["reason"] = args["reason"]

    refund = stripe.Refund.create(api_key=stripe_api_key(), **params)
    return {
        "success": True,
        "refundId": refund["id"],
        "status": refund.get("status"),
        "amount": refund.get("amount"),
        "isFullRefund": args.get("amount") is None,
    }


def get_invoices(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    result = stripe.Invoice.list(api_key=stripe_api_key(), customer=args["customerId"], limit=args["limit"])
    invoices = [
        {
            "id": invoice["id"],
            "number": invoice.get("number"),
            "status": invoice.get("status"),
            "amountDue": invoice.get("amount_due"),
            "amountPaid": invoice.get("amount_paid"),
            "currency": invoice.get("currency"),
            "created": _iso(invoice.get("created")),
            "dueDate": _iso(invoice.get("due_date")),
            "pdfUrl": invoice.get("invoice_pdf"),
            "hostedUrl": invoice.get("hosted_invoice_url"),
        }
        for invoice in result["data"]
    ]
    return {"success": True, "invoices": invoices, "count": len(invoices)}


def create_coupon(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    params: Dict[str, Any] = {"duration": args["duration"], "metadata": _metadata(args)}
    if args.get("percentOff") is not None:
        params["percent_off"] = args["percentOff"]
    elif args.get("amountOff") is not None:
        params["amount_off"] = int(args["amountOff"])
        params["currency"] = args["currency"].lower()
    else:
        raise ValueError("Either percentOff or amountOff is required")
    if args.get("name"):
        params["name"] = args["name"]
    if args.get("code"):
        params["id"] = args["code"]

    coupon = stripe.Coupon.create(api_key=stripe_api_key(), **params)
    return {
        "success": True,
        "couponId": coupon["id"],
        "percentOff": coupon.get("percent_off"),
        "amountOff": coupon.get("amount_off"),
        "duration": coupon.get("duration"),
    }


PRIMITIVES = [
    PrimitiveDefinition(
        name="payment.createCustomer",
        display_name="Create Customer",
        description="Create a Stripe customer.",
        category="payment",
        tags=["payment", "stripe", "customer"],
        icon="UserPlus",
        builtin=True,
        timeout_ms=15000,
        input_schema={
            "properties": {
                "email": {"type": "string"},
                "name": {"type": "string"},
                "phone": {"type": "string"},
                "address": {
                    "type": "object",
                    "properties": {
                        name: {"type": "string"}
                        for name in ("line1", "line2", "city", "state", "postalCode", "country")
                    },
                },
                "metadata": {"type": "object"},
            },
            "required": ["email"],
        },
        handler=create_customer,
    ),
    PrimitiveDefinition(
        name="payment.createIntent",
        display_name="Create Payment Intent",
        description="Create a Stripe payment intent and return its client secret.",
        category="payment",
        tags=["payment", "stripe", "intent", "checkout"],
        icon="CreditCard",
        builtin=True,
        timeout_ms=15000,
        input_schema={
            "properties": {
                "amount": {"type": "integer", "description": "Amount in cents"},
                "currency": {"type": "string", "default": "USD"},
                "orderId": {"type": "string"},
                "customerId": {"type": "string"},
                "captureMethod": {"type": "string", "enum": ["automatic", "manual"], "default": "automatic"},
                "metadata": {"type": "object"},
            },
            "required": ["amount"],
        },
        handler=create_intent,
    ),
    PrimitiveDefinition(
        name="payment.refund",
        display_name="Refund Payment",
        description="Refund a payment in full or in part.",
        category="payment",
        tags=["payment", "stripe", "refund"],
        icon="RotateCcw",
        builtin=True,
        timeout_ms=15000,
        input_schema={
            "properties": {
                "paymentIntentId": {"type": "string"},
                "amount": {"type": "integer", "description": "Cents; full refund when omitted"},
                "reason": {"type": "string", "enum": ["duplicate", "fraudulent", "requested_by_customer"]},
                "metadata": {"type": "object"},
            },
            "required": ["paymentIntentId"],
        },
        handler=create_refund,
    ),
    PrimitiveDefinition(
        name="payment.getInvoices",
        display_name="List Invoices",
        description="List a Stripe customer's invoices.",
        category="payment",
        tags=["payment", "stripe", "invoices", "billing"],
        icon="FileText",
        builtin=True,
        timeout_ms=10000,
        input_schema={
            "properties": {
                "customerId": {"type": "string"},
                "limit": {"type": "integer", "default": 10},
            },
            "required": ["customerId"],
        },
        handler=get_invoices,
    ),
    PrimitiveDefinition(
        name="discount.createCoupon",
        display_name="Create Coupon",
        description="Create a Stripe coupon for a percentage or fixed discount.",
        category="discount",
        tags=["discount", "stripe", "coupon", "marketing"],
        icon="Percent",
        builtin=True,
        timeout_ms=15000,
        input_schema={
            "properties": {
                "percentOff": {"type": "number"},
                "amountOff": {"type": "integer", "description": "Cents"},
                "currency": {"type": "string", "default": "USD"},
                "duration": {"type": "string", "enum": ["once", "repeating", "forever"], "default": "once"},
                "name": {"type": "string"},
                "code": {"type": "string", "description": "Coupon id customers type in"},
                "metadata": {"type": "object"},
            },
        },
        handler=create_coupon,
    ),
]
