# Overview: Per-product reconciliation of receipts, stock and both sale origins into one metric bundle.

"""
Reconciliation Invariants (authoritative)

Stage 1, acquisition (receipt ledger, by product_id):
- units_received    = sum(quantity_received)
- total_invested    = sum(total_cost), falling back to unit_cost * quantity
- supplier_count    = distinct non-null supplier ids
- avg_inventory_age = whole days since the EARLIEST receipt (age of the
                      oldest batch, not a stock-weighted average)

Stage 2, inventory:
- units_remaining = Product.current_stock, read as-is

Stage 3, sales (one tagged stream, two origins, summed):
- SALES_LEDGER events contribute their reversal-netted effective totals
- MOVEMENT events contribute |quantity| and |quantity| * unit_price, also
  net of reversals (a reversed sale contributes 0 whatever its origin)
- avg_selling_price = revenue / units_sold, else Product.selling_price, else 0

Derived (every zero denominator yields 0):
- avg_unit_cost     = total_invested / units_received
- turnover_times    = units_sold / units_received
- turnover_rate     = turnover_times * 100
- cost_of_goods_sold = avg_unit_cost * units_sold
- profit_margin     = (revenue - cost_of_goods_sold) / revenue * 100
- break_even_point  = ceil(total_invested / avg_selling_price)

Snapshots:
- One ProductMetricSnapshot row per product. Ledger writes mark it stale
  (snapshot_service); get_product_metrics() recomputes stale or missing
  rows on read; refresh_metrics() recomputes a whole business.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import InventoryReceipt, Product, ProductMetricSnapshot, SaleEvent
from stockflow.time_utils import days_since, to_utc_z, utcnow
from .product_service import get_business, get_product
from .sales_service import ORIGIN_MOVEMENT, ORIGIN_SALES_LEDGER, refresh_sales_counters
from .valuation_service import receipt_total_cost, safe_divide


LOW_STOCK_UNITS = 5
FAST_MOVING_TURNOVER = 1.5
NORMAL_MOVEMENT_TURNOVER = 0.5


class MovementTier(str, Enum):
    OUT_OF_STOCK = "Out of Stock"
    LOW_STOCK = "Low Stock"
    FAST_MOVING = "Fast-moving"
    NORMAL = "Normal movement"
    SLOW_MOVING = "Slow-moving"
    NO_SALES = "No sales yet"


def movement_tier(units_remaining: float, turnover_times: float) -> MovementTier:
    if units_remaining <= 0:
        return MovementTier.OUT_OF_STOCK
    if units_remaining < LOW_STOCK_UNITS:
        return MovementTier.LOW_STOCK
    if turnover_times >= FAST_MOVING_TURNOVER:
        return MovementTier.FAST_MOVING
    if turnover_times >= NORMAL_MOVEMENT_TURNOVER:
        return MovementTier.NORMAL
    if turnover_times > 0:
        return MovementTier.SLOW_MOVING
    return MovementTier.NO_SALES


@dataclass
class ProductMetrics:
    product_id: int
    product_name: str
    units_received: float
    total_invested: float
    supplier_count: int
    avg_inventory_age: int
    units_remaining: float
    units_sold: float
    revenue: float
    avg_selling_price: float
    avg_unit_cost: float
    cost_of_goods_sold: float
    turnover_times: float
    turnover_rate: float
    profit_margin: float
    break_even_point: int
    status: str
    computed_at: datetime | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["computed_at"] = to_utc_z(self.computed_at)
        return data

    @classmethod
    def from_snapshot(cls, snapshot: ProductMetricSnapshot) -> "ProductMetrics":
        return cls(
            product_id=snapshot.product_id,
            product_name=snapshot.product_name,
            units_received=snapshot.units_received,
            total_invested=snapshot.total_invested,
            supplier_count=snapshot.supplier_count,
            avg_inventory_age=snapshot.avg_inventory_age,
            units_remaining=snapshot.units_remaining,
            units_sold=snapshot.units_sold,
            revenue=snapshot.revenue,
            avg_selling_price=snapshot.avg_selling_price,
            avg_unit_cost=snapshot.avg_unit_cost,
            cost_of_goods_sold=snapshot.cost_of_goods_sold,
            turnover_times=snapshot.turnover_times,
            turnover_rate=snapshot.turnover_rate,
            profit_margin=snapshot.profit_margin,
            break_even_point=snapshot.break_even_point,
            status=snapshot.status,
            computed_at=snapshot.computed_at,
        )


def compute_product_metrics(
    product: Product,
    receipts: Iterable[InventoryReceipt],
    sales: Iterable[SaleEvent],
    *,
    now: datetime | None = None,
) -> ProductMetrics:
    """Pure computation over already-loaded rows for a single product."""
    now = now or utcnow()
    receipts = list(receipts)

    units_received = sum(float(r.quantity_received or 0) for r in receipts)
    total_invested = sum(receipt_total_cost(r) for r in receipts)
    supplier_count = len({r.supplier_id for r in receipts if r.supplier_id is not None})
    earliest = min((r.received_date for r in receipts if r.received_date is not None), default=None)
    avg_inventory_age = days_since(earliest, now=now)

    units_remaining = float(product.current_stock or 0)

    ledger_units = ledger_revenue = 0.0
    movement_units = movement_revenue = 0.0
    for sale in sales:
        if sale.origin == ORIGIN_SALES_LEDGER:
            ledger_units += sale.effective_quantity
            ledger_revenue += sale.effective_amount
        elif sale.origin == ORIGIN_MOVEMENT:
            movement_units += abs(float(sale.effective_quantity))
            movement_revenue += abs(float(sale.effective_amount))
    units_sold = ledger_units + movement_units
    revenue = ledger_revenue + movement_revenue

    if units_sold > 0:
        avg_selling_price = safe_divide(revenue, units_sold)
    else:
        avg_selling_price = float(product.selling_price or 0)

    avg_unit_cost = safe_divide(total_invested, units_received)
    turnover_times = safe_divide(units_sold, units_received)
    cost_of_goods_sold = avg_unit_cost * units_sold
    profit_margin = safe_divide(revenue - cost_of_goods_sold, revenue) * 100
    break_even_point = math.ceil(safe_divide(total_invested, avg_selling_price))

    return ProductMetrics(
        product_id=product.id,
        product_name=product.name,
        units_received=units_received,
        total_invested=total_invested,
        supplier_count=supplier_count,
        avg_inventory_age=avg_inventory_age,
        units_remaining=units_remaining,
        units_sold=units_sold,
        revenue=revenue,
        avg_selling_price=avg_selling_price,
        avg_unit_cost=avg_unit_cost,
        cost_of_goods_sold=cost_of_goods_sold,
        turnover_times=turnover_times,
        turnover_rate=turnover_times * 100,
        profit_margin=profit_margin,
        break_even_point=break_even_point,
        status=movement_tier(units_remaining, turnover_times).value,
        computed_at=now,
    )


def _load_ledgers(business_id: int, product_ids: list[int]):
    receipts: dict[int, list[InventoryReceipt]] = {pid: [] for pid in product_ids}
    sales: dict[int, list[SaleEvent]] = {pid: [] for pid in product_ids}
    if not product_ids:
        return receipts, sales

    for receipt in (
        db.session.query(InventoryReceipt)
        .filter(
            InventoryReceipt.business_id == business_id,
            InventoryReceipt.product_id.in_(product_ids),
        )
        .all()
    ):
        receipts[receipt.product_id].append(receipt)

    for sale in (
        db.session.query(SaleEvent)
        .options(selectinload(SaleEvent.reversals))
        .filter(SaleEvent.business_id == business_id, SaleEvent.product_id.in_(product_ids))
        .all()
    ):
        sales[sale.product_id].append(sale)

    return receipts, sales


def _store_snapshot(metrics: ProductMetrics, business_id: int) -> ProductMetricSnapshot:
    snapshot = db.session.get(ProductMetricSnapshot, metrics.product_id)
    if snapshot is None:
        snapshot = ProductMetricSnapshot(product_id=metrics.product_id, business_id=business_id)
        db.session.add(snapshot)

    for field, value in asdict(metrics).items():
        if field == "product_id":
            continue
        setattr(snapshot, field, value)
    snapshot.is_stale = False
    return snapshot


def _recompute(business_id: int, products: list[Product], now: datetime) -> list[ProductMetrics]:
    receipts, sales = _load_ledgers(business_id, [p.id for p in products])
    results = []
    for product in products:
        metrics = compute_product_metrics(
            product, receipts[product.id], sales[product.id], now=now
        )
        _store_snapshot(metrics, business_id)
        results.append(metrics)
    return results


def get_product_metrics(business_id: int, product_id: int, *, now: datetime | None = None) -> ProductMetrics:
    """Metric bundle for one product, served from its snapshot unless stale or missing."""
    product = get_product(business_id, product_id)
    snapshot = db.session.get(ProductMetricSnapshot, product.id)
    if snapshot is not None and not snapshot.is_stale:
        return ProductMetrics.from_snapshot(snapshot)

    (metrics,) = _recompute(business_id, [product], now or utcnow())
    db.session.commit()
    return metrics


def list_product_metrics(business_id: int, *, now: datetime | None = None) -> list[ProductMetrics]:
    """All products' bundles; only stale or missing snapshots are recomputed."""
    get_business(business_id)
    products = (
        db.session.query(Product)
        .filter_by(business_id=business_id)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
    snapshots = {
        s.product_id: s
        for s in db.session.query(ProductMetricSnapshot).filter_by(business_id=business_id).all()
    }

    dirty = [p for p in products if p.id not in snapshots or snapshots[p.id].is_stale]
    fresh = {m.product_id: m for m in _recompute(business_id, dirty, now or utcnow())}
    if dirty:
        db.session.commit()

    return [
        fresh[p.id] if p.id in fresh else ProductMetrics.from_snapshot(snapshots[p.id])
        for p in products
    ]


def refresh_metrics(
    business_id: int,
    *,
    product_id: int | None = None,
    now: datetime | None = None,
) -> list[ProductMetrics]:
    """
    Explicit refresh: recompute snapshots regardless of staleness.

    A business-wide refresh also resets the trailing-window sales counters.
    """
    get_business(business_id)
    now = now or utcnow()

    if product_id is not None:
        products = [get_product(business_id, product_id)]
    else:
        refresh_sales_counters(business_id, now=now)
        products = (
            db.session.query(Product)
            .filter_by(business_id=business_id)
            .order_by(Product.name.asc(), Product.id.asc())
            .all()
        )

    results = _recompute(business_id, products, now)
    db.session.commit()
    current_app.logger.info(
        "Refreshed metrics for %d product(s) (business=%s)", len(results), business_id
    )
    return results
