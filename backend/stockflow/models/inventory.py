from __future__ import annotations

import json

from ..extensions import db
from stockflow.time_utils import to_utc_z, to_iso_date, utcnow


class Product(db.Model):
    """
    Product registry row.

    NAME KEY:
    Product.name keeps the text as the operator typed it. Product.name_key is
    the case-folded, whitespace-collapsed form and is unique per business.
    Ledger rows reference products by product_id; free-text names are
    resolved to an id once, when the ledger row is written.

    STOCK:
    current_stock is authoritative and maintained independently of the
    ledgers. It is never negative. version_id guards every stock write
    (optimistic compare-and-swap, see services/concurrency.py).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("business_id", "name_key", name="uq_products_business_name_key"),
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_business_name", "business_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    name_key = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=True)

    current_stock = db.Column(db.Float, nullable=False, default=0.0)
    selling_price = db.Column(db.Float, nullable=True)

    last_sale_date = db.Column(db.DateTime(timezone=True), nullable=True)
    sales_count_30d = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    business = db.relationship("Business", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "unit": self.unit,
            "current_stock": self.current_stock,
            "selling_price": self.selling_price,
            "last_sale_date": to_utc_z(self.last_sale_date),
            "sales_count_30d": self.sales_count_30d,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_business_name", "business_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    phone_number = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "location": self.location,
            "phone_number": self.phone_number,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryReceipt(db.Model):
    """
    Acquisition event from a supplier (or from a stock conversion).

    Immutable once written. total_cost may be NULL on legacy rows; readers
    fall back to unit_cost * quantity_received.
    """
    __tablename__ = "inventory_receipts"
    __table_args__ = (
        db.CheckConstraint("quantity_received > 0", name="ck_receipts_quantity_positive"),
        db.Index("ix_receipts_business_product_received", "business_id", "product_id", "received_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity_received = db.Column(db.Float, nullable=False)
    unit_cost = db.Column(db.Float, nullable=True)
    total_cost = db.Column(db.Float, nullable=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    conversion_id = db.Column(db.Integer, db.ForeignKey("stock_conversions.id"), nullable=True, index=True)

    received_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("receipts", lazy=True))
    supplier = db.relationship("Supplier")

    def effective_total_cost(self) -> float:
        if self.total_cost is not None:
            return float(self.total_cost)
        return float(self.unit_cost or 0) * float(self.quantity_received or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity_received": self.quantity_received,
            "unit_cost": self.unit_cost,
            "total_cost": self.effective_total_cost(),
            "supplier_id": self.supplier_id,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "conversion_id": self.conversion_id,
            "received_date": to_utc_z(self.received_date),
            "created_at": to_utc_z(self.created_at),
        }


class InventoryMovement(db.Model):
    """
    Signed stock event: sold, damaged, expired, theft, spoiled, adjusted, conversion.

    Negative quantity is a removal. Conversion rows carry JSON lineage in
    notes. Immutable: corrections are new rows.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_movements_business_product_type", "business_id", "product_id", "movement_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Float, nullable=False)
    unit_price = db.Column(db.Float, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    conversion_id = db.Column(db.Integer, db.ForeignKey("stock_conversions.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    def lineage(self) -> dict | None:
        """Parsed conversion lineage, or None for non-conversion or free-text notes."""
        if self.movement_type != "conversion" or not self.notes:
            return None
        try:
            parsed = json.loads(self.notes)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "notes": self.notes,
            "conversion_id": self.conversion_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockConversion(db.Model):
    """
    Conversion command: Q units of a source product become N units of a destination.

    LIFECYCLE:
    1. PROPOSED: inputs validated, cost impact computed and shown to the operator
    2. COMMITTED: all five write steps applied in one transaction
    3. CANCELLED: abandoned before confirmation

    conversion_key is the idempotency key; a committed conversion is never
    applied twice.
    """
    __tablename__ = "stock_conversions"
    __table_args__ = (
        db.UniqueConstraint("business_id", "conversion_key", name="uq_conversions_business_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    conversion_key = db.Column(db.String(64), nullable=False)

    source_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    source_product_name = db.Column(db.String(255), nullable=False)
    destination_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    destination_product_name = db.Column(db.String(255), nullable=False)

    source_quantity = db.Column(db.Float, nullable=False)
    destination_quantity = db.Column(db.Float, nullable=False)
    unit = db.Column(db.String(32), nullable=True)
    unit_cost = db.Column(db.Float, nullable=True)
    selling_price = db.Column(db.Float, nullable=True)

    source_unit_cost = db.Column(db.Float, nullable=False, default=0.0)
    cost_impact = db.Column(db.Float, nullable=False, default=0.0)
    record_loss = db.Column(db.Boolean, nullable=True)
    expense_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PROPOSED", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    committed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "conversion_key": self.conversion_key,
            "source_product_id": self.source_product_id,
            "source_product_name": self.source_product_name,
            "destination_product_id": self.destination_product_id,
            "destination_product_name": self.destination_product_name,
            "source_quantity": self.source_quantity,
            "destination_quantity": self.destination_quantity,
            "unit": self.unit,
            "unit_cost": self.unit_cost,
            "selling_price": self.selling_price,
            "source_unit_cost": self.source_unit_cost,
            "cost_impact": self.cost_impact,
            "record_loss": self.record_loss,
            "expense_id": self.expense_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "committed_at": to_utc_z(self.committed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
