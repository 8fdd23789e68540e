from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z, utcnow


class SaleEvent(db.Model):
    """
    Append-only sale event stream.

    ORIGIN:
    Every sale enters the system through exactly one path and is tagged with it:
    - SALES_LEDGER: recorded as a customer sale (amount known)
    - MOVEMENT: recorded as a "sold" inventory movement (amount = |qty| * unit_price)
    movement_id is set if and only if origin == MOVEMENT.

    Reversals never edit the event; they append SaleReversal rows and the
    effective_* projection nets them out.
    """
    __tablename__ = "sale_events"
    __table_args__ = (
        db.CheckConstraint("origin IN ('SALES_LEDGER', 'MOVEMENT')", name="ck_sale_events_origin"),
        db.CheckConstraint(
            "(origin = 'MOVEMENT' AND movement_id IS NOT NULL) OR "
            "(origin = 'SALES_LEDGER' AND movement_id IS NULL)",
            name="ck_sale_events_single_origin",
        ),
        db.UniqueConstraint("movement_id", name="uq_sale_events_movement"),
        db.Index("ix_sale_events_business_product_sold", "business_id", "product_id", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    origin = db.Column(db.String(16), nullable=False, index=True)
    movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    quantity = db.Column(db.Float, nullable=False)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    customer_name = db.Column(db.String(255), nullable=True)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    reversals = db.relationship(
        "SaleReversal",
        backref="sale",
        lazy=True,
        order_by="SaleReversal.id",
    )

    @property
    def reversed_quantity(self) -> float:
        return sum(float(r.quantity) for r in self.reversals)

    @property
    def reversed_amount(self) -> float:
        return sum(float(r.amount) for r in self.reversals)

    @property
    def effective_quantity(self) -> float:
        return max(0.0, float(self.quantity) - self.reversed_quantity)

    @property
    def effective_amount(self) -> float:
        if self.effective_quantity <= 0:
            return 0.0
        return max(0.0, float(self.amount) - self.reversed_amount)

    @property
    def is_reversed(self) -> bool:
        return self.effective_quantity <= 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "origin": self.origin,
            "movement_id": self.movement_id,
            "quantity": self.quantity,
            "amount": self.amount,
            "customer_name": self.customer_name,
            "effective_quantity": self.effective_quantity,
            "effective_amount": self.effective_amount,
            "is_reversed": self.is_reversed,
            "sold_at": to_utc_z(self.sold_at),
            "created_at": to_utc_z(self.created_at),
        }


class SaleReversal(db.Model):
    __tablename__ = "sale_reversals"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_reversals_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_events.id"), nullable=False, index=True)
    quantity = db.Column(db.Float, nullable=False)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    reason = db.Column(db.String(255), nullable=True)
    restock = db.Column(db.Boolean, nullable=False, default=True)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "quantity": self.quantity,
            "amount": self.amount,
            "reason": self.reason,
            "restock": self.restock,
            "reversed_at": to_utc_z(self.reversed_at),
        }
