# Overview: Flask API routes for the sales ledger (sales and reversals).

from flask import Blueprint, g, request

from ..models import SaleEvent
from ..validation import ModelValidationPolicy, enforce_rules_sale, validate_payload
from ..decorators import handle_service_errors, require_business


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "product_name", "quantity", "amount", "customer_name", "sold_at"},
    required_on_create={"quantity"},
    extra_fields={"unit_price"},
)


@sales_bp.post("")
@require_business
@handle_service_errors
def record_sale_route():
    from ..services.sales_service import record_sale

    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=SaleEvent, payload=payload, policy=SALE_POLICY, partial=False)
    enforce_rules_sale(patch)

    sale = record_sale(
        business_id=g.business_id,
        product_id=patch.get("product_id"),
        product_name=patch.get("product_name"),
        quantity=patch["quantity"],
        amount=patch.get("amount"),
        unit_price=patch.get("unit_price"),
        sold_at=patch.get("sold_at"),
        customer_name=patch.get("customer_name"),
    )
    return {"sale": sale.to_dict()}, 201


@sales_bp.get("")
@require_business
@handle_service_errors
def list_sales_route():
    """
    Query params:
    - product_id, origin (SALES_LEDGER | MOVEMENT), limit
    - include_reversed: "0"/"false" hides fully reversed sales
    """
    from ..services.sales_service import list_sales

    include_reversed = request.args.get("include_reversed", "1").lower() not in {"0", "false", "no"}
    sales = list_sales(
        g.business_id,
        product_id=request.args.get("product_id", type=int),
        origin=request.args.get("origin") or None,
        include_reversed=include_reversed,
        limit=request.args.get("limit", default=200, type=int),
    )
    return {"items": [s.to_dict() for s in sales]}


@sales_bp.get("/<int:sale_id>")
@require_business
@handle_service_errors
def get_sale_route(sale_id: int):
    from ..services.sales_service import get_sale

    sale = get_sale(g.business_id, sale_id)
    return {"sale": sale.to_dict(), "reversals": [r.to_dict() for r in sale.reversals]}


@sales_bp.post("/<int:sale_id>/reverse")
@require_business
@handle_service_errors
def reverse_sale_route(sale_id: int):
    """
    Body (all optional): quantity (partial reversal), reason, restock (default true).
    """
    from ..services.sales_service import reverse_sale

    payload = request.get_json(silent=True) or {}
    sale = reverse_sale(
        business_id=g.business_id,
        sale_id=sale_id,
        quantity=payload.get("quantity"),
        reason=payload.get("reason"),
        restock=bool(payload.get("restock", True)),
    )
    return {"sale": sale.to_dict()}
