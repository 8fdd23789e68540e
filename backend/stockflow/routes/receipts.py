# Overview: Flask API routes for the receipt ledger (stock received).

from flask import Blueprint, g, request

from ..models import InventoryReceipt
from ..validation import ModelValidationPolicy, enforce_rules_receipt, validate_payload
from ..decorators import handle_service_errors, require_business


receipts_bp = Blueprint("receipts", __name__, url_prefix="/api/receipts")

RECEIPT_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "product_name",
        "quantity_received",
        "unit_cost",
        "total_cost",
        "supplier_id",
        "received_date",
        "batch_number",
        "expiry_date",
    },
    required_on_create={"quantity_received"},
    extra_fields={"selling_price", "record_as_expense"},
)


@receipts_bp.post("")
@require_business
@handle_service_errors
def create_receipt_route():
    """
    Receive stock. Either product_id or product_name is required; an unknown
    name registers a new product.
    """
    from ..services.receipt_service import record_receipt

    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=InventoryReceipt, payload=payload, policy=RECEIPT_POLICY, partial=False)
    enforce_rules_receipt(patch)

    receipt = record_receipt(
        business_id=g.business_id,
        product_id=patch.get("product_id"),
        product_name=patch.get("product_name"),
        quantity_received=patch["quantity_received"],
        unit_cost=patch.get("unit_cost"),
        total_cost=patch.get("total_cost"),
        supplier_id=patch.get("supplier_id"),
        received_date=patch.get("received_date"),
        selling_price=patch.get("selling_price"),
        batch_number=patch.get("batch_number"),
        expiry_date=patch.get("expiry_date"),
        record_as_expense=bool(patch.get("record_as_expense")),
    )
    return {"receipt": receipt.to_dict()}, 201


@receipts_bp.get("")
@require_business
@handle_service_errors
def list_receipts_route():
    from ..services.receipt_service import list_receipts

    product_id = request.args.get("product_id", type=int)
    limit = request.args.get("limit", default=200, type=int)
    receipts = list_receipts(g.business_id, product_id=product_id, limit=limit)
    return {"items": [r.to_dict() for r in receipts]}


@receipts_bp.get("/<int:receipt_id>")
@require_business
@handle_service_errors
def get_receipt_route(receipt_id: int):
    from ..services.receipt_service import get_receipt

    return {"receipt": get_receipt(g.business_id, receipt_id).to_dict()}
