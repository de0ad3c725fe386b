"""
Shipping primitives backed by the Shippo REST API.

Requires STOREFLOW_SHIPPO_API_TOKEN. Rates come back cheapest first.
"""

from __future__ import annotations

from typing import Any, Dict, List

from storeflow.config import get_settings
from storeflow.http import HttpClient
from storeflow.registry.models import InvocationContext, PrimitiveDefinition

ADDRESS_FIELDS = ("name", "company", "street1", "street2", "city", "state", "zip", "country", "phone", "email")

_ADDRESS_SCHEMA = {
    "type": "object",
    "properties": {name: {"type": "string"} for name in ADDRESS_FIELDS},
}

_PARCEL_SCHEMA = {
    "type": "object",
    "properties": {
        "length": {"type": "number", "description": "Length in inches"},
        "width": {"type": "number", "description": "Width in inches"},
        "height": {"type": "number", "description": "Height in inches"},
        "weight": {"type": "number", "description": "Weight in ounces"},
        "massUnit": {"type": "string"},
        "distanceUnit": {"type": "string"},
    },
    "required": ["length", "width", "height", "weight"],
}


class ShippingConfigError(Exception):
    """Raised when the Shippo token is not configured."""


def shippo_client() -> HttpClient:
    """Build an authenticated Shippo client from settings."""
    settings = get_settings()
    if settings.shippo_api_token is None:
        raise ShippingConfigError("STOREFLOW_SHIPPO_API_TOKEN is not configured")
    return HttpClient(
        base_url=settings.shippo_base_url,
        auth_header=f"ShippoToken {settings.shippo_api_token.get_secret_value()}",
        default_headers={"Content-Type": "application/json"},
    )


def _address(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key in ADDRESS_FIELDS and value is not None}


def _parcel(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "length": str(data["length"]),
        "width": str(data["width"]),
        "height": str(data["height"]),
        "weight": str(data["weight"]),
        "distance_unit": data.get("distanceUnit", "in"),
        "mass_unit": data.get("massUnit", "oz"),
    }


def _rate(rate: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "rateId": rate.get("object_id"),
        "carrier": rate.get("provider"),
        "service": (rate.get("servicelevel") or {}).get("name"),
        "price": float(rate.get("amount") or 0),
        "currency": rate.get("currency"),
        "estimatedDays": rate.get("estimated_days"),
        "deliveryTerms": rate.get("duration_terms"),
    }


def get_rates(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    extra: Dict[str, Any] = {}
    if args.get("signature"):
        extra["signature_confirmation"] = "STANDARD"
    if args.get("insurance"):
        extra["insurance"] = args["insurance"]

    body = {
        "address_from": _address(args.get("addressFrom") or {}),
        "address_to": _address(args["addressTo"]),
        "parcels": [_parcel(parcel) for parcel in args["parcels"]],
        "extra": extra,
        "async": False,
    }
    response = shippo_client().post("/shipments/", json=body)
    response.raise_for_status()
    shipment = response.json()

    rates: List[Dict[str, Any]] = sorted(
        (_rate(rate) for rate in shipment.get("rates", [])),
        key=lambda rate: rate["price"],
    )
    cheapest = rates[0] if rates else None
    return {
        "success": True,
        "shipmentId": shipment.get("object_id"),
        "rates": rates,
        "cheapest": (
            {"carrier": cheapest["carrier"], "service": cheapest["service"], "price": cheapest["price"]}
            if cheapest
            else None
        ),
    }


def create_label(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    body = {"rate": args["rateId"], "label_file_type": args["labelFormat"], "async": False}
    if args.get("orderId"):
        body["metadata"] = f"order:{args['orderId']}"
    response = shippo_client().post("/transactions/", json=body)
    response.raise_for_status()
    transaction = response.json()
    return {
        "success": transaction.get("status") == "SUCCESS",
        "transactionId": transaction.get("object_id"),
        "trackingNumber": transaction.get("tracking_number"),
        "trackingUrl": transaction.get("tracking_url_provider"),
        "labelUrl": transaction.get("label_url"),
        "eta": transaction.get("eta"),
        "messages": transaction.get("messages", []),
    }


def get_tracking(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    response = shippo_client().get(f"/tracks/{args['carrier']}/{args['trackingNumber']}")
    response.raise_for_status()
    tracking = response.json()
    status = tracking.get("tracking_status") or {}

    def _event(event: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "status": event.get("status"),
            "details": event.get("status_details"),
            "date": event.get("status_date"),
            "location": event.get("location"),
        }

    return {
        "success": True,
        "carrier": tracking.get("carrier"),
        "trackingNumber": tracking.get("tracking_number"),
        "eta": tracking.get("eta"),
        "currentStatus": _event(status),
        "isDelivered": status.get("status") == "DELIVERED",
        "history": [_event(event) for event in tracking.get("tracking_history", [])],
    }


def validate_address(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    body = {**_address(args), "validate": True}
    response = shippo_client().post("/addresses/", json=body)
    response.raise_for_status()
    address = response.json()
    results = address.get("validation_results") or {}
    messages = results.get("messages") or []
    return {
        "success": True,
        "isValid": bool(results.get("is_valid")),
        "address": {key: address.get(key) for key in ADDRESS_FIELDS if key not in ("phone", "email")},
        "messages": messages,
        "hasWarnings": any(m.get("type") == "warning" for m in messages),
        "hasErrors": any(m.get("type") == "error" for m in messages),
    }


def refund_label(args: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
    response = shippo_client().post("/refunds/", json={"transaction": args["transactionId"], "async": False})
    response.raise_for_status()
    refund = response.json()
    return {
        "success": refund.get("status") != "ERROR",
        "transactionId": args["transactionId"],
        "refundId": refund.get("object_id"),
        "status": refund.get("status"),
    }


PRIMITIVES = [
    PrimitiveDefinition(
        name="shipping.getRates",
        display_name="Get Shipping Rates",
        description="Compare carrier rates for a shipment, cheapest first.",
        category="shipping",
        tags=["shipping", "rates", "carriers", "shippo"],
        icon="Truck",
        builtin=True,
        timeout_ms=30000,
        input_schema={
            "properties": {
                "addressFrom": _ADDRESS_SCHEMA,
                "addressTo": {
                    **_ADDRESS_SCHEMA,
                    "required": ["name", "street1", "city", "state", "zip", "country"],
                },
                "parcels": {"type": "array", "items": _PARCEL_SCHEMA},
                "signature": {"type": "boolean", "description": "Require signature confirmation"},
                "insurance": {"type": "object"},
            },
            "required": ["addressTo", "parcels"],
        },
        handler=get_rates,
    ),
    PrimitiveDefinition(
        name="shipping.createLabel",
        display_name="Create Shipping Label",
        description="Purchase a label for a rate returned by shipping.getRates.",
        category="shipping",
        tags=["shipping", "label", "purchase", "shippo"],
        icon="Tag",
        builtin=True,
        timeout_ms=30000,
        input_schema={
            "properties": {
                "rateId": {"type": "string"},
                "labelFormat": {"type": "string", "enum": ["PDF", "PDF_4x6", "PNG", "ZPLII"], "default": "PDF"},
                "orderId": {"type": "string"},
            },
            "required": ["rateId"],
        },
        handler=create_label,
    ),
    PrimitiveDefinition(
        name="shipping.getTracking",
        display_name="Track Shipment",
        description="Current tracking status and history for a tracking number.",
        category="shipping",
        tags=["shipping", "tracking", "status", "shippo"],
        icon="MapPin",
        builtin=True,
        timeout_ms=15000,
        input_schema={
            "properties": {
                "carrier": {"type": "string", "enum": ["usps", "ups", "fedex", "dhl_express"]},
                "trackingNumber": {"type": "string"},
            },
            "required": ["carrier", "trackingNumber"],
        },
        handler=get_tracking,
    ),
    PrimitiveDefinition(
        name="shipping.validateAddress",
        display_name="Validate Address",
        description="Validate and standardize a shipping address.",
        category="shipping",
        tags=["shipping", "address", "validation", "shippo"],
        icon="CheckCircle",
        builtin=True,
        timeout_ms=15000,
        input_schema={
            "properties": {
                **{name: {"type": "string"} for name in ADDRESS_FIELDS},
                "country": {"type": "string", "default": "US"},
            },
            "required": ["name", "street1", "city", "state", "zip"],
        },
        handler=validate_address,
    ),
    PrimitiveDefinition(
        name="shipping.refundLabel",
        display_name="Refund Label",
        description="Request a refund for a purchased label.",
        category="shipping",
        tags=["shipping", "refund", "label", "shippo"],
        icon="RotateCcw",
        builtin=True,
        timeout_ms=15000,
        input_schema={
            "properties": {"transactionId": {"type": "string"}},
            "required": ["transactionId"],
        },
        handler=refund_label,
    ),
]
