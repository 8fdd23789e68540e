# Overview: Sales event stream with origin tags, reversals and the effective-sales projection.

"""
Sales Ledger Invariants (authoritative)

- Every sale is ONE SaleEvent tagged with exactly one origin:
    SALES_LEDGER  recorded through record_sale()
    MOVEMENT      recorded through movement_service.record_sold_movement()
  A sale is never written through both paths, so summing the two origins
  in reconciliation cannot double count.
- Events are append-only. Reversals append SaleReversal rows; the
  projection nets them out (effective_quantity / effective_amount).
- A fully reversed sale (effective_quantity == 0) contributes 0 everywhere.
- Recording a sale deducts stock, clamped at zero; reversing with
  restock=True puts the reversed quantity back.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Product, SaleEvent, SaleReversal
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    optional_non_negative,
    require_positive,
)
from stockflow.time_utils import normalize_datetime, utcnow, window_start
from .concurrency import run_with_retry
from .product_service import get_product, remove_stock, add_stock, resolve_product
from .snapshot_service import invalidate_product_metrics


ORIGIN_SALES_LEDGER = "SALES_LEDGER"
ORIGIN_MOVEMENT = "MOVEMENT"
SALE_ORIGINS = {ORIGIN_SALES_LEDGER, ORIGIN_MOVEMENT}


def _sales_window_days() -> int:
    return int(current_app.config.get("SALES_WINDOW_DAYS", 30))


def _append_sale_event(
    *,
    product: Product,
    origin: str,
    quantity: float,
    amount: float,
    sold_at: datetime,
    movement_id: int | None = None,
    customer_name: str | None = None,
) -> SaleEvent:
    """
    Core insert without stock change, retry or commit.

    Also maintains the product's denormalized last_sale_date and
    sales_count_30d.
    """
    if origin not in SALE_ORIGINS:
        raise ValidationError(f"origin must be one of: {', '.join(sorted(SALE_ORIGINS))}")
    if (origin == ORIGIN_MOVEMENT) != (movement_id is not None):
        raise ValidationError("movement_id must be set exactly when origin is MOVEMENT")

    sale = SaleEvent(
        business_id=product.business_id,
        product_id=product.id,
        product_name=product.name,
        origin=origin,
        movement_id=movement_id,
        quantity=quantity,
        amount=amount,
        customer_name=customer_name,
        sold_at=sold_at,
    )
    db.session.add(sale)

    if product.last_sale_date is None or sold_at > product.last_sale_date:
        product.last_sale_date = sold_at
    if sold_at >= window_start(_sales_window_days()):
        product.sales_count_30d = int(product.sales_count_30d or 0) + 1

    db.session.flush()
    return sale


def record_sale(
    *,
    business_id: int,
    product_name: str | None = None,
    product_id: int | None = None,
    quantity,
    amount=None,
    unit_price=None,
    sold_at=None,
    customer_name: str | None = None,
) -> SaleEvent:
    """
    Record a completed customer sale (origin SALES_LEDGER).

    amount defaults to quantity * unit_price, then quantity * the product's
    selling price, then 0.
    """
    qty = require_positive(quantity, "quantity")
    total = optional_non_negative(amount, "amount")
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

        if total is not None:
            sale_amount = total
        elif price is not None:
            sale_amount = qty * price
        else:
            sale_amount = qty * float(product.selling_price or 0)

        remove_stock(product, qty, clamp=True)
        sale = _append_sale_event(
            product=product,
            origin=ORIGIN_SALES_LEDGER,
            quantity=qty,
            amount=sale_amount,
            sold_at=sold_dt,
            customer_name=(customer_name or "").strip() or None,
        )

        invalidate_product_metrics(product.id)
        db.session.commit()
        return sale

    return run_with_retry(_op)


def get_sale(business_id: int, sale_id: int) -> SaleEvent:
    sale = db.session.get(SaleEvent, sale_id)
    if sale is None or sale.business_id != business_id:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def reverse_sale(
    *,
    business_id: int,
    sale_id: int,
    quantity=None,
    reason: str | None = None,
    restock: bool = True,
) -> SaleEvent:
    """
    Reverse all (quantity=None) or part of a sale.

    The reversed amount is proportional to the reversed share of the
    remaining effective quantity.

    Raises:
        NotFoundError: unknown sale
        ConflictError: sale already fully reversed
        ValidationError: quantity <= 0 or above the effective quantity
    """
    def _op():
        sale = get_sale(business_id, sale_id)
        remaining = sale.effective_quantity
        if remaining <= 0:
            raise ConflictError(f"Sale {sale_id} is already fully reversed")

        qty = remaining if quantity is None else require_positive(quantity, "quantity")
        if qty > remaining:
            raise ValidationError(
                f"Cannot reverse {qty:g}; only {remaining:g} remains on sale {sale_id}"
            )

        if qty == remaining:
            reversed_amount = sale.effective_amount
        else:
            reversed_amount = sale.effective_amount * (qty / remaining)

        reversal = SaleReversal(
            sale_id=sale.id,
            quantity=qty,
            amount=reversed_amount,
            reason=(reason or "").strip() or None,
            restock=bool(restock),
        )
        db.session.add(reversal)

        product = get_product(business_id, sale.product_id, lock=True)
        if restock:
            add_stock(product, qty)
        if remaining - qty <= 0 and sale.sold_at >= window_start(_sales_window_days()):
            product.sales_count_30d = max(0, int(product.sales_count_30d or 0) - 1)

        invalidate_product_metrics(product.id)
        db.session.commit()
        current_app.logger.info(
            "Reversed %g of sale %s (%s), restock=%s", qty, sale.id, sale.product_name, restock
        )
        return sale

    return run_with_retry(_op)


def list_sales(
    business_id: int,
    *,
    product_id: int | None = None,
    origin: str | None = None,
    since: datetime | None = None,
    include_reversed: bool = True,
    limit: int | None = None,
) -> list[SaleEvent]:
    if origin is not None and origin not in SALE_ORIGINS:
        raise ValidationError(f"origin must be one of: {', '.join(sorted(SALE_ORIGINS))}")

    query = (
        db.session.query(SaleEvent)
        .options(selectinload(SaleEvent.reversals))
        .filter(SaleEvent.business_id == business_id)
    )
    if product_id is not None:
        query = query.filter(SaleEvent.product_id == product_id)
    if origin is not None:
        query = query.filter(SaleEvent.origin == origin)
    if since is not None:
        query = query.filter(SaleEvent.sold_at >= since)
    query = query.order_by(SaleEvent.sold_at.desc(), SaleEvent.id.desc())
    if limit is not None:
        query = query.limit(limit)

    sales = query.all()
    if not include_reversed:
        sales = [s for s in sales if not s.is_reversed]
    return sales


def sale_records(business_id: int, *, product_id: int | None = None) -> list[dict]:
    """Reversal-aware projection of the sales ledger (origin SALES_LEDGER)."""
    return [
        {
            "sale_id": sale.id,
            "product_id": sale.product_id,
            "product_name": sale.product_name,
            "effective_quantity": sale.effective_quantity,
            "effective_amount": sale.effective_amount,
            "is_reversed": sale.is_reversed,
        }
        for sale in list_sales(business_id, product_id=product_id, origin=ORIGIN_SALES_LEDGER)
    ]


def refresh_sales_counters(business_id: int, *, now: datetime | None = None) -> int:
    """
    Recompute Product.sales_count_30d from the event stream.

    The counter is bumped on write and drifts as sales age out of the
    window; this resets it. Flushes, does not commit. Returns the number
    of products whose counter changed.
    """
    since = window_start(_sales_window_days(), now=now or utcnow())
    counts: dict[int, int] = {}
    for sale in list_sales(business_id, since=since, include_reversed=False):
        counts[sale.product_id] = counts.get(sale.product_id, 0) + 1

    changed = 0
    for product in db.session.query(Product).filter_by(business_id=business_id).all():
        fresh = counts.get(product.id, 0)
        if product.sales_count_30d != fresh:
            product.sales_count_30d = fresh
            changed += 1
    db.session.flush()
    return changed
