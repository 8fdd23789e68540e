# Overview: Receipt ledger; stock received from suppliers and conversions.

"""
Receipt Ledger

WHY: Receipts are the only source of cost basis. Every receipt both adds
stock to the product registry and appends an immutable acquisition row that
the valuation engine averages over.

DESIGN:
- The product is resolved (or created) from the free-text name here, once.
- total_cost is stored derived (unit_cost * quantity) when the caller omits it.
- An "Inventory Purchase" expense is booked only when the caller asks.
"""

from __future__ import annotations

from datetime import date, datetime

from flask import current_app

from ..extensions import db
from ..models import InventoryReceipt, Product
from ..validation import NotFoundError, ValidationError, optional_non_negative, require_positive
from stockflow.time_utils import normalize_datetime
from .concurrency import run_with_retry
from .expense_service import CATEGORY_INVENTORY_PURCHASE, _append_expense
from .product_service import add_stock, get_supplier, resolve_product
from .snapshot_service import invalidate_product_metrics


def _append_receipt(
    *,
    product: Product,
    quantity_received: float,
    unit_cost: float | None,
    total_cost: float | None,
    received_dt: datetime,
    supplier_id: int | None = None,
    batch_number: str | None = None,
    expiry_date: date | None = None,
    conversion_id: int | None = None,
) -> InventoryReceipt:
    """Core insert without stock change, locking, retry or commit."""
    if total_cost is None and unit_cost is not None:
        total_cost = unit_cost * quantity_received

    receipt = InventoryReceipt(
        business_id=product.business_id,
        product_id=product.id,
        product_name=product.name,
        quantity_received=quantity_received,
        unit_cost=unit_cost,
        total_cost=total_cost,
        supplier_id=supplier_id,
        batch_number=batch_number,
        expiry_date=expiry_date,
        conversion_id=conversion_id,
        received_date=received_dt,
    )
    db.session.add(receipt)
    db.session.flush()
    return receipt


def record_receipt(
    *,
    business_id: int,
    product_name: str | None = None,
    product_id: int | None = None,
    quantity_received,
    unit_cost=None,
    total_cost=None,
    supplier_id: int | None = None,
    received_date=None,
    selling_price=None,
    batch_number: str | None = None,
    expiry_date: date | None = None,
    record_as_expense: bool = False,
) -> InventoryReceipt:
    """
    Receive stock into a product, creating the product on first receipt.

    Raises:
        ValidationError: non-positive quantity, negative cost, bad date
        NotFoundError: unknown product_id or supplier_id
    """
    quantity = require_positive(quantity_received, "quantity_received")
    unit = optional_non_negative(unit_cost, "unit_cost")
    total = optional_non_negative(total_cost, "total_cost")
    price = optional_non_negative(selling_price, "selling_price")
    try:
        received_dt = normalize_datetime(received_date)
    except ValueError as exc:
        raise ValidationError("received_date must be an ISO-8601 date") from exc

    def _op():
        supplier = get_supplier(business_id, supplier_id) if supplier_id is not None else None
        product = resolve_product(
            business_id,
            product_id=product_id,
            product_name=product_name,
            create=product_id is None,
            lock=True,
        )

        add_stock(product, quantity)
        if price:
            product.selling_price = price

        receipt = _append_receipt(
            product=product,
            quantity_received=quantity,
            unit_cost=unit,
            total_cost=total,
            received_dt=received_dt,
            supplier_id=supplier.id if supplier else None,
            batch_number=(batch_number or "").strip() or None,
            expiry_date=expiry_date,
        )

        if record_as_expense and receipt.total_cost:
            _append_expense(
                business_id=business_id,
                amount=receipt.total_cost,
                category=CATEGORY_INVENTORY_PURCHASE,
                vendor_name=supplier.name if supplier else "Unknown Supplier",
                description=f"Purchase of {quantity:g} {product.name}",
                payment_method="cash",
                receipt_id=receipt.id,
            )

        invalidate_product_metrics(product.id)
        db.session.commit()
        current_app.logger.info(
            "Received %g %s (business=%s, receipt=%s)", quantity, product.name, business_id, receipt.id
        )
        return receipt

    return run_with_retry(_op)


def get_receipt(business_id: int, receipt_id: int) -> InventoryReceipt:
    receipt = db.session.get(InventoryReceipt, receipt_id)
    if receipt is None or receipt.business_id != business_id:
        raise NotFoundError(f"Receipt {receipt_id} not found")
    return receipt


def list_receipts(
    business_id: int,
    *,
    product_id: int | None = None,
    limit: int = 200,
) -> list[InventoryReceipt]:
    query = db.session.query(InventoryReceipt).filter_by(business_id=business_id)
    if product_id is not None:
        query = query.filter(InventoryReceipt.product_id == product_id)
    return (
        query.order_by(InventoryReceipt.received_date.desc(), InventoryReceipt.id.desc())
        .limit(limit)
        .all()
    )
