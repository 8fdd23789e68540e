# Overview: Weighted-average cost basis and stock valuation from the receipt ledger.

"""
Valuation Invariants (authoritative)

- Weighted average unit cost (WAC) for a product is
      sum(total_cost) / sum(quantity_received)
  over ALL of its receipts, where a missing total_cost falls back to
  unit_cost * quantity_received.
- WAC is 0 when the product has no receipts (never None, never an error).
- Stock value = current_stock * WAC.
- Pure and read-only. Recomputed on every call; conversions in particular
  must read a fresh WAC at execution time.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from sqlalchemy import func

from ..extensions import db
from ..models import InventoryReceipt, Product


class ReceiptLike(Protocol):
    quantity_received: float
    unit_cost: float | None
    total_cost: float | None


def safe_divide(numerator: float, denominator: float) -> float:
    """Division where a zero denominator yields 0 instead of an error."""
    if not denominator:
        return 0.0
    return float(numerator) / float(denominator)


def receipt_total_cost(receipt: ReceiptLike) -> float:
    if receipt.total_cost is not None:
        return float(receipt.total_cost)
    return float(receipt.unit_cost or 0) * float(receipt.quantity_received or 0)


def weighted_average_unit_cost(receipts: Iterable[ReceiptLike]) -> float:
    total_cost = 0.0
    total_quantity = 0.0
    for receipt in receipts:
        total_cost += receipt_total_cost(receipt)
        total_quantity += float(receipt.quantity_received or 0)
    return safe_divide(total_cost, total_quantity)


def stock_value(current_stock: float, unit_cost: float) -> float:
    return float(current_stock or 0) * float(unit_cost or 0)


def list_product_receipts(business_id: int, product_id: int) -> list[InventoryReceipt]:
    return (
        db.session.query(InventoryReceipt)
        .filter_by(business_id=business_id, product_id=product_id)
        .order_by(InventoryReceipt.received_date.asc(), InventoryReceipt.id.asc())
        .all()
    )


def get_weighted_average_unit_cost(business_id: int, product_id: int) -> float:
    """WAC computed in the database (same fallback rule as receipt_total_cost)."""
    cost_expr = func.coalesce(
        InventoryReceipt.total_cost,
        func.coalesce(InventoryReceipt.unit_cost, 0) * InventoryReceipt.quantity_received,
    )
    row = (
        db.session.query(
            func.coalesce(func.sum(InventoryReceipt.quantity_received), 0).label("units"),
            func.coalesce(func.sum(cost_expr), 0).label("cost"),
        )
        .filter(
            InventoryReceipt.business_id == business_id,
            InventoryReceipt.product_id == product_id,
        )
        .one()
    )
    return safe_divide(float(row.cost or 0), float(row.units or 0))


def get_product_valuation(product: Product) -> dict:
    wac = get_weighted_average_unit_cost(product.business_id, product.id)
    return {
        "product_id": product.id,
        "product_name": product.name,
        "current_stock": float(product.current_stock or 0),
        "weighted_average_unit_cost": wac,
        "stock_value": stock_value(product.current_stock, wac),
    }
