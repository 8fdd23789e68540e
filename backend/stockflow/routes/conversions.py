# Overview: Flask API routes for stock conversions (propose, confirm, cancel, history).

# backend/stockflow/routes/conversions.py
"""
Stock conversion routes.

Two-phase flow:
1. POST /api/conversions                 -> PROPOSED, returns cost_impact
2. POST /api/conversions/<id>/confirm    -> COMMITTED (idempotent)
   POST /api/conversions/<id>/cancel     -> CANCELLED

POST /api/conversions/execute proposes and confirms in one request.
Clients retrying a request should resend the same conversion_key.
"""
from flask import Blueprint, g, request

from ..models import StockConversion
from ..validation import ModelValidationPolicy, ValidationError, validate_payload
from ..decorators import handle_service_errors, require_business


conversions_bp = Blueprint("conversions", __name__, url_prefix="/api/conversions")

CONVERSION_POLICY = ModelValidationPolicy(
    writable_fields={
        "conversion_key",
        "source_product_id",
        "destination_product_name",
        "source_quantity",
        "destination_quantity",
        "unit",
        "unit_cost",
        "selling_price",
        "record_loss",
    },
    required_on_create={
        "source_product_id",
        "destination_product_name",
        "source_quantity",
        "destination_quantity",
    },
)


def _record_loss_flag(payload: dict):
    value = payload.get("record_loss")
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError("record_loss must be true or false")
    return value


def _conversion_kwargs(patch: dict) -> dict:
    return {
        "source_product_id": patch["source_product_id"],
        "destination_product_name": patch["destination_product_name"],
        "source_quantity": patch["source_quantity"],
        "destination_quantity": patch["destination_quantity"],
        "unit": patch.get("unit"),
        "unit_cost": patch.get("unit_cost"),
        "selling_price": patch.get("selling_price"),
        "conversion_key": patch.get("conversion_key"),
    }


@conversions_bp.post("")
@require_business
@handle_service_errors
def propose_conversion_route():
    from ..services.conversion_service import propose_conversion

    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=StockConversion, payload=payload, policy=CONVERSION_POLICY, partial=False)
    patch.pop("record_loss", None)

    conversion = propose_conversion(business_id=g.business_id, **_conversion_kwargs(patch))
    return {"conversion": conversion.to_dict()}, 201


@conversions_bp.post("/execute")
@require_business
@handle_service_errors
def execute_conversion_route():
    from ..services.conversion_service import convert_stock

    payload = request.get_json(silent=True) or {}
    record_loss = _record_loss_flag(payload)
    patch = validate_payload(model=StockConversion, payload=payload, policy=CONVERSION_POLICY, partial=False)

    conversion = convert_stock(
        business_id=g.business_id,
        record_loss=record_loss,
        **_conversion_kwargs(patch),
    )
    return {"conversion": conversion.to_dict()}, 201


@conversions_bp.post("/<int:conversion_id>/confirm")
@require_business
@handle_service_errors
def confirm_conversion_route(conversion_id: int):
    from ..services.conversion_service import confirm_conversion

    payload = request.get_json(silent=True) or {}
    conversion = confirm_conversion(
        business_id=g.business_id,
        conversion_id=conversion_id,
        record_loss=_record_loss_flag(payload),
    )
    return {"conversion": conversion.to_dict()}


@conversions_bp.post("/<int:conversion_id>/cancel")
@require_business
@handle_service_errors
def cancel_conversion_route(conversion_id: int):
    from ..services.conversion_service import cancel_conversion

    conversion = cancel_conversion(business_id=g.business_id, conversion_id=conversion_id)
    return {"conversion": conversion.to_dict()}


@conversions_bp.get("/<int:conversion_id>")
@require_business
@handle_service_errors
def get_conversion_route(conversion_id: int):
    from ..services.conversion_service import get_conversion

    return {"conversion": get_conversion(g.business_id, conversion_id).to_dict()}


@conversions_bp.get("")
@require_business
@handle_service_errors
def list_conversions_route():
    from ..services.conversion_service import list_conversions

    conversions = list_conversions(
        g.business_id,
        status=request.args.get("status") or None,
        limit=request.args.get("limit", default=50, type=int),
    )
    return {"items": [c.to_dict() for c in conversions]}
