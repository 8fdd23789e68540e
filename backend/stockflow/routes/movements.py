# Overview: Flask API routes for the movement ledger (losses, movement-recorded sales, history).

from flask import Blueprint, g, request

from ..models import InventoryMovement
from ..validation import ModelValidationPolicy, validate_payload
from ..decorators import handle_service_errors, require_business


movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")

LOSS_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "product_name", "movement_type", "quantity", "notes"},
    required_on_create={"movement_type", "quantity"},
    extra_fields={"record_as_expense", "occurred_at"},
)

SOLD_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "product_name", "quantity", "unit_price", "notes"},
    required_on_create={"quantity"},
    extra_fields={"sold_at"},
)


@movements_bp.post("/losses")
@require_business
@handle_service_errors
def record_loss_route():
    """
    Write off damaged, expired, stolen, spoiled or adjusted stock.

    Body: movement_type, quantity (positive), product_id or product_name,
    optional notes, record_as_expense, occurred_at.
    """
    from ..services.movement_service import record_loss

    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=InventoryMovement, payload=payload, policy=LOSS_POLICY, partial=False)

    movement = record_loss(
        business_id=g.business_id,
        movement_type=patch["movement_type"],
        quantity=patch["quantity"],
        product_id=patch.get("product_id"),
        product_name=patch.get("product_name"),
        notes=patch.get("notes"),
        record_as_expense=bool(patch.get("record_as_expense")),
        occurred_at=patch.get("occurred_at"),
    )
    return {"movement": movement.to_dict()}, 201


@movements_bp.post("/sold")
@require_business
@handle_service_errors
def record_sold_movement_route():
    from ..services.movement_service import record_sold_movement

    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=InventoryMovement, payload=payload, policy=SOLD_POLICY, partial=False)

    movement = record_sold_movement(
        business_id=g.business_id,
        quantity=patch["quantity"],
        unit_price=patch.get("unit_price"),
        product_id=patch.get("product_id"),
        product_name=patch.get("product_name"),
        notes=patch.get("notes"),
        sold_at=patch.get("sold_at"),
    )
    return {"movement": movement.to_dict()}, 201


@movements_bp.get("")
@require_business
@handle_service_errors
def list_movements_route():
    from ..services.movement_service import list_movements

    movements = list_movements(
        g.business_id,
        product_id=request.args.get("product_id", type=int),
        movement_type=request.args.get("movement_type") or None,
        limit=request.args.get("limit", default=200, type=int),
    )
    return {"items": [m.to_dict() for m in movements]}


@movements_bp.get("/conversions")
@require_business
@handle_service_errors
def conversion_history_route():
    from ..services.movement_service import list_conversion_history

    limit = request.args.get("limit", default=10, type=int)
    return {"items": list_conversion_history(g.business_id, limit=limit)}
