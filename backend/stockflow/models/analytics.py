from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z, utcnow


class ProductMetricSnapshot(db.Model):
    """
    Materialized reconciliation metrics, one row per product.

    Every ledger write touching a product marks its row stale; readers
    recompute stale or missing rows. An explicit refresh recomputes all rows
    for a business.
    """
    __tablename__ = "product_metric_snapshots"

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    units_received = db.Column(db.Float, nullable=False, default=0.0)
    total_invested = db.Column(db.Float, nullable=False, default=0.0)
    supplier_count = db.Column(db.Integer, nullable=False, default=0)
    avg_inventory_age = db.Column(db.Integer, nullable=False, default=0)
    units_remaining = db.Column(db.Float, nullable=False, default=0.0)
    units_sold = db.Column(db.Float, nullable=False, default=0.0)
    revenue = db.Column(db.Float, nullable=False, default=0.0)
    avg_selling_price = db.Column(db.Float, nullable=False, default=0.0)
    avg_unit_cost = db.Column(db.Float, nullable=False, default=0.0)
    cost_of_goods_sold = db.Column(db.Float, nullable=False, default=0.0)
    turnover_times = db.Column(db.Float, nullable=False, default=0.0)
    turnover_rate = db.Column(db.Float, nullable=False, default=0.0)
    profit_margin = db.Column(db.Float, nullable=False, default=0.0)
    break_even_point = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(32), nullable=False)

    is_stale = db.Column(db.Boolean, nullable=False, default=False, index=True)
    computed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class SupplyChainInsight(db.Model):
    __tablename__ = "supply_chain_insights"
    __table_args__ = (
        db.Index("ix_insights_business_type", "business_id", "insight_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    insight_type = db.Column(db.String(64), nullable=False)
    message = db.Column(db.String(512), nullable=False)
    priority = db.Column(db.String(16), nullable=False, default="medium")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "insight_type": self.insight_type,
            "message": self.message,
            "priority": self.priority,
            "created_at": to_utc_z(self.created_at),
        }
