# Overview: Supply-chain insights derived from the reconciliation metric bundles.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import SupplyChainInsight
from stockflow.time_utils import utcnow
from .product_service import get_business
from .reconciliation_service import ProductMetrics, refresh_metrics


INSIGHT_TYPES = (
    "stockout_alert",
    "supply_chain_low_stock",
    "high_demand",
    "supply_chain_slow_moving",
    "supply_chain_star_product",
    "margin_warning",
    "supply_chain_risk",
    "getting_started",
)


def _insight(metrics: ProductMetrics | None, insight_type: str, message: str, priority: str) -> dict:
    return {
        "product_id": metrics.product_id if metrics else None,
        "product_name": metrics.product_name if metrics else "Getting Started",
        "insight_type": insight_type,
        "message": message,
        "priority": priority,
    }


def generate_insights(metrics_list: list[ProductMetrics]) -> list[dict]:
    """
    Rule-based insights. Turnover thresholds compare against turnover_times
    (units sold per unit received), not the percentage.
    """
    if not metrics_list:
        return [_insight(
            None,
            "getting_started",
            "Start by recording inventory receipts and sales to get personalized insights.",
            "low",
        )]

    insights = []
    for m in metrics_list:
        name = m.product_name
        stock = m.units_remaining
        turnover = m.turnover_times

        if stock <= 0 and m.units_sold > 0:
            insights.append(_insight(
                m,
                "stockout_alert",
                f"{name} is out of stock after selling {m.units_sold:g} units. Restock immediately.",
                "high",
            ))
        elif 0 < stock <= 5 and turnover > 0.3:
            insights.append(_insight(
                m,
                "supply_chain_low_stock",
                f"{name} is running low ({stock:g} units left). Consider reordering soon.",
                "high",
            ))

        if turnover > 0.7 and stock < 15:
            insights.append(_insight(
                m,
                "high_demand",
                f"{name} is in high demand. Consider increasing stock levels.",
                "medium",
            ))

        if m.avg_inventory_age > 30 and stock > 10 and turnover < 0.3:
            insights.append(_insight(
                m,
                "supply_chain_slow_moving",
                f"{name} has been in stock for {m.avg_inventory_age} days with low sales. "
                f"Consider promotional pricing or bundling.",
                "medium",
            ))

        if turnover > 0.6 and m.profit_margin > 20 and m.revenue > 100:
            insights.append(_insight(
                m,
                "supply_chain_star_product",
                f"{name} is a star performer: {m.profit_margin:.1f}% margin, "
                f"{m.revenue:.0f} revenue.",
                "low",
            ))

        if 0 < m.profit_margin < 10 and m.revenue > 50:
            insights.append(_insight(
                m,
                "margin_warning",
                f"{name} has a low profit margin ({m.profit_margin:.1f}%). "
                f"Review pricing or supplier costs.",
                "medium",
            ))

        if m.supplier_count == 1 and m.revenue > 200:
            insights.append(_insight(
                m,
                "supply_chain_risk",
                f"{name} depends on a single supplier but generates significant revenue. "
                f"Consider a backup supplier.",
                "medium",
            ))

    return insights


def list_insights(business_id: int) -> list[SupplyChainInsight]:
    return (
        db.session.query(SupplyChainInsight)
        .filter_by(business_id=business_id)
        .order_by(SupplyChainInsight.id.asc())
        .all()
    )


def analyze_supply_chain(business_id: int) -> dict:
    """
    Refresh every metric snapshot, replace the stored insights and return
    the full analysis.
    """
    get_business(business_id)
    metrics_list = refresh_metrics(business_id)
    generated = generate_insights(metrics_list)

    db.session.query(SupplyChainInsight).filter(
        SupplyChainInsight.business_id == business_id,
        SupplyChainInsight.insight_type.in_(INSIGHT_TYPES),
    ).delete(synchronize_session=False)

    now = utcnow()
    rows = [
        SupplyChainInsight(business_id=business_id, created_at=now, **insight)
        for insight in generated
    ]
    db.session.add_all(rows)
    db.session.commit()

    current_app.logger.info(
        "Generated %d insight(s) for business %s", len(rows), business_id
    )
    return {
        "metrics": [m.to_dict() for m in metrics_list],
        "insights": [row.to_dict() for row in rows],
        "summary": {
            "total_products": len(metrics_list),
            "total_investment": sum(m.total_invested for m in metrics_list),
            "total_revenue": sum(m.revenue for m in metrics_list),
            "insights_generated": len(rows),
        },
    }
