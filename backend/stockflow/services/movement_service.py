# Overview: Movement ledger; signed stock events for sales, write-offs and conversions.

"""
Movement Ledger

- quantity is signed: removals are negative, conversion rows carry +Q.
- Loss types (damaged, expired, theft, spoiled, adjusted) decrement stock
  clamped at zero and may book a "Loss/Damage" expense valued at the
  product's selling price.
- A "sold" movement is the MOVEMENT origin of the sales stream: it writes
  the movement row AND its SaleEvent together, never a second sales-ledger
  row.
- Conversion rows are only written by conversion_service; their notes hold
  JSON lineage {originalProduct, convertedProduct, originalQuantity,
  newQuantity, unit}.
"""

from __future__ import annotations

import json

from flask import current_app

from ..extensions import db
from ..models import InventoryMovement, Product
from ..validation import ValidationError, optional_non_negative, require_positive
from stockflow.time_utils import normalize_datetime, to_utc_z
from .concurrency import run_with_retry
from .expense_service import CATEGORY_LOSS_DAMAGE, _append_expense
from .product_service import remove_stock, resolve_product
from .sales_service import ORIGIN_MOVEMENT, _append_sale_event
from .snapshot_service import invalidate_product_metrics


MOVEMENT_SOLD = "sold"
MOVEMENT_CONVERSION = "conversion"
LOSS_TYPES = ("damaged", "expired", "theft", "spoiled", "adjusted")
MOVEMENT_TYPES = (MOVEMENT_SOLD, *LOSS_TYPES, MOVEMENT_CONVERSION)


def _append_movement(
    *,
    product: Product,
    movement_type: str,
    quantity: float,
    unit_price: float | None = None,
    notes: str | None = None,
    conversion_id: int | None = None,
    created_at=None,
) -> InventoryMovement:
    """Core insert without stock change, retry or commit."""
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of: {', '.join(MOVEMENT_TYPES)}")

    movement = InventoryMovement(
        business_id=product.business_id,
        product_id=product.id,
        product_name=product.name,
        movement_type=movement_type,
        quantity=quantity,
        unit_price=unit_price,
        notes=notes,
        conversion_id=conversion_id,
    )
    if created_at is not None:
        movement.created_at = created_at
    db.session.add(movement)
    db.session.flush()
    return movement


def conversion_notes(
    *,
    original_product: str,
    converted_product: str,
    original_quantity: float,
    new_quantity: float,
    unit: str | None,
) -> str:
    return json.dumps({
        "originalProduct": original_product,
        "convertedProduct": converted_product,
        "originalQuantity": original_quantity,
        "newQuantity": new_quantity,
        "unit": unit,
    })


def record_loss(
    *,
    business_id: int,
    movement_type: str,
    quantity,
    product_id: int | None = None,
    product_name: str | None = None,
    notes: str | None = None,
    record_as_expense: bool = False,
    occurred_at=None,
) -> InventoryMovement:
    """
    Write off stock (damaged, expired, theft, spoiled, adjusted).

    The movement records the full requested quantity as a negative number;
    stock is clamped at zero. The optional expense is valued at the
    product's current selling price and linked through movement_id.
    """
    if movement_type not in LOSS_TYPES:
        raise ValidationError(f"movement_type must be one of: {', '.join(LOSS_TYPES)}")
    qty = require_positive(quantity, "quantity")
    try:
        occurred_dt = normalize_datetime(occurred_at)
    except ValueError as exc:
        raise ValidationError("occurred_at must be an ISO-8601 datetime") from exc

    def _op():
        product = resolve_product(
            business_id,
            product_id=product_id,
            product_name=product_name,
            lock=True,
        )
        remove_stock(product, qty, clamp=True)
        movement = _append_movement(
            product=product,
            movement_type=movement_type,
            quantity=-qty,
            unit_price=product.selling_price,
            notes=(notes or "").strip() or None,
            created_at=occurred_dt,
        )

        loss_value = qty * float(product.selling_price or 0)
        if record_as_expense and loss_value > 0:
            _append_expense(
                business_id=business_id,
                amount=loss_value,
                category=CATEGORY_LOSS_DAMAGE,
                vendor_name="Inventory Loss",
                description=f"{movement_type.capitalize()}: {qty:g} {product.name}",
                notes=movement.notes,
                movement_id=movement.id,
            )

        invalidate_product_metrics(product.id)
        db.session.commit()
        current_app.logger.info(
            "Recorded %s of %g %s (business=%s)", movement_type, qty, product.name, business_id
        )
        return movement

    return run_with_retry(_op)


def record_sold_movement(
    *,
    business_id: int,
    quantity,
    unit_price,
    product_id: int | None = None,
    product_name: str | None = None,
    notes: str | None = None,
    sold_at=None,
) -> InventoryMovement:
    """
    Record a sale through the movement ledger (origin MOVEMENT).

    The sale amount is |quantity| * unit_price. Both rows are written in one
    transaction.
    """
    qty = require_positive(quantity, "quantity")
    price = optional_non_negative(unit_price, "unit_price")
    try:
        sold_dt = normalize_datetime(sold_at)
    except ValueError as exc:
        raise ValidationError("sold_at must be an ISO-8601 datetime") from exc

    def _op():
        product = resolve_product(
            business_id,
            product_id=product_id,
            product_name=product_name,
            lock=True,
        )
        sale_price = price if price is not None else float(product.selling_price or 0)

        remove_stock(product, qty, clamp=True)
        movement = _append_movement(
            product=product,
            movement_type=MOVEMENT_SOLD,
            quantity=-qty,
            unit_price=sale_price,
            notes=(notes or "").strip() or None,
            created_at=sold_dt,
        )
        _append_sale_event(
            product=product,
            origin=ORIGIN_MOVEMENT,
            quantity=qty,
            amount=qty * sale_price,
            sold_at=sold_dt,
            movement_id=movement.id,
        )

        invalidate_product_metrics(product.id)
        db.session.commit()
        return movement

    return run_with_retry(_op)


def list_movements(
    business_id: int,
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    limit: int = 200,
) -> list[InventoryMovement]:
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of: {', '.join(MOVEMENT_TYPES)}")
    query = db.session.query(InventoryMovement).filter_by(business_id=business_id)
    if product_id is not None:
        query = query.filter(InventoryMovement.product_id == product_id)
    if movement_type is not None:
        query = query.filter(InventoryMovement.movement_type == movement_type)
    return (
        query.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )


def list_conversion_history(business_id: int, *, limit: int = 10) -> list[dict]:
    """
    Recent conversions, newest first, read back from the movement lineage.

    Rows whose notes do not parse are skipped.
    """
    rows = []
    for movement in list_movements(business_id, movement_type=MOVEMENT_CONVERSION, limit=limit):
        lineage = movement.lineage()
        if lineage is None:
            continue
        rows.append({
            "movement_id": movement.id,
            "conversion_id": movement.conversion_id,
            "original_product": lineage.get("originalProduct"),
            "converted_product": lineage.get("convertedProduct"),
            "original_quantity": lineage.get("originalQuantity"),
            "new_quantity": lineage.get("newQuantity"),
            "unit": lineage.get("unit"),
            "converted_at": to_utc_z(movement.created_at),
        })
    return rows
