# Overview: Stock health classifier and the inventory overview built on it.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Mapping

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import InventoryReceipt, Product, SaleEvent
from stockflow.time_utils import to_utc_z, utcnow, window_start
from .product_service import get_business
from .valuation_service import receipt_total_cost, safe_divide, stock_value


class StockStatus(str, Enum):
    HEALTHY = "healthy"
    LOW = "low"
    OUT = "out"
    SLOW = "slow"


@dataclass(frozen=True)
class StockPolicy:
    low_threshold: float = 5
    slow_threshold: float = 20
    sales_window_days: int = 30

    @classmethod
    def from_config(cls, config: Mapping | None = None) -> "StockPolicy":
        if config is None:
            config = current_app.config
        return cls(
            low_threshold=config.get("STOCK_LOW_THRESHOLD", 5),
            slow_threshold=config.get("STOCK_SLOW_THRESHOLD", 20),
            sales_window_days=config.get("SALES_WINDOW_DAYS", 30),
        )


DEFAULT_POLICY = StockPolicy()


def classify_stock(
    current_stock: float,
    sales_count: int,
    policy: StockPolicy = DEFAULT_POLICY,
) -> StockStatus:
    """
    First match wins:
    1. no stock                                   -> OUT
    2. stock below the low threshold              -> LOW
    3. no sales in the window and stock above the
       slow threshold                             -> SLOW
    4. otherwise                                  -> HEALTHY
    """
    if current_stock <= 0:
        return StockStatus.OUT
    if current_stock < policy.low_threshold:
        return StockStatus.LOW
    if sales_count == 0 and current_stock > policy.slow_threshold:
        return StockStatus.SLOW
    return StockStatus.HEALTHY


def recommendation_for(status: StockStatus, product_name: str, current_stock: float) -> str:
    if status is StockStatus.OUT:
        return f"Out of stock - reorder {product_name} immediately"
    if status is StockStatus.LOW:
        return f"Low stock - only {current_stock:g} {product_name} remaining"
    if status is StockStatus.SLOW:
        return f"{product_name} moving slowly - consider promotion"
    return f"{product_name} stock levels are healthy"


def _recent_sales(business_id: int, since: datetime) -> list[SaleEvent]:
    return (
        db.session.query(SaleEvent)
        .options(selectinload(SaleEvent.reversals))
        .filter(SaleEvent.business_id == business_id, SaleEvent.sold_at >= since)
        .all()
    )


def get_inventory_overview(
    business_id: int,
    *,
    policy: StockPolicy | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Per-product stock health rows plus the aggregate counts used by the dashboard.

    Sales counts cover the trailing window and skip fully reversed sales.
    """
    get_business(business_id)
    policy = policy or StockPolicy.from_config()
    now = now or utcnow()
    since = window_start(policy.sales_window_days, now=now)

    products = (
        db.session.query(Product)
        .filter_by(business_id=business_id)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
    receipts = db.session.query(InventoryReceipt).filter_by(business_id=business_id).all()
    sales = [s for s in _recent_sales(business_id, since) if not s.is_reversed]

    cost_by_product: dict[int, list[float]] = {}
    for receipt in receipts:
        totals = cost_by_product.setdefault(receipt.product_id, [0.0, 0.0])
        totals[0] += receipt_total_cost(receipt)
        totals[1] += float(receipt.quantity_received or 0)

    sales_by_product: dict[int, list[float]] = {}
    for sale in sales:
        totals = sales_by_product.setdefault(sale.product_id, [0, 0.0, 0.0])
        totals[0] += 1
        totals[1] += sale.effective_quantity
        totals[2] += sale.effective_amount

    items = []
    for product in products:
        cost, quantity = cost_by_product.get(product.id, (0.0, 0.0))
        sale_count, sold_quantity, sold_amount = sales_by_product.get(product.id, (0, 0.0, 0.0))
        avg_cost = safe_divide(cost, quantity)
        stock = float(product.current_stock or 0)
        status = classify_stock(stock, sale_count, policy)

        items.append({
            "id": product.id,
            "product_name": product.name,
            "current_stock": stock,
            "last_sale_date": to_utc_z(product.last_sale_date),
            "sales_count_30d": sale_count,
            "avg_selling_price": safe_divide(sold_amount, sold_quantity),
            "avg_cost_price": avg_cost,
            "total_value": stock_value(stock, avg_cost),
            "status": status.value,
            "recommendation": recommendation_for(status, product.name, stock),
        })

    stock_metrics = {
        "total_items": sum(item["current_stock"] for item in items),
        "total_value": sum(item["total_value"] for item in items),
        "low_stock_items": sum(1 for item in items if item["status"] == StockStatus.LOW.value),
        "out_of_stock_items": sum(1 for item in items if item["status"] == StockStatus.OUT.value),
        "total_revenue": sum(sale.effective_amount for sale in sales),
    }

    return {
        "business_id": business_id,
        "as_of": to_utc_z(now),
        "window_days": policy.sales_window_days,
        "items": items,
        "stock_metrics": stock_metrics,
    }
