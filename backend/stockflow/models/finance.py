from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z, to_iso_date, utcnow


class Expense(db.Model):
    """
    Expense ledger row.

    Loss events link back to their origin: conversion_id for stock
    conversions, movement_id for damage/expiry/theft write-offs.
    Reversal flags the row; amounts are never edited.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.UniqueConstraint("business_id", "expense_number", name="uq_expenses_business_number"),
        db.Index("ix_expenses_business_category", "business_id", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    expense_number = db.Column(db.String(32), nullable=False)

    amount = db.Column(db.Float, nullable=False)
    category = db.Column(db.String(64), nullable=False)
    vendor_name = db.Column(db.String(255), nullable=True)
    description = db.Column(db.String(512), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    payment_method = db.Column(db.String(32), nullable=True)
    expense_date = db.Column(db.Date, nullable=False, default=lambda: utcnow().date())

    conversion_id = db.Column(db.Integer, db.ForeignKey("stock_conversions.id"), nullable=True, index=True)
    movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True, index=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("inventory_receipts.id"), nullable=True, index=True)

    is_reversed = db.Column(db.Boolean, nullable=False, default=False)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversal_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "expense_number": self.expense_number,
            "amount": self.amount,
            "category": self.category,
            "vendor_name": self.vendor_name,
            "description": self.description,
            "notes": self.notes,
            "payment_method": self.payment_method,
            "expense_date": to_iso_date(self.expense_date),
            "conversion_id": self.conversion_id,
            "movement_id": self.movement_id,
            "receipt_id": self.receipt_id,
            "is_reversed": self.is_reversed,
            "reversed_at": to_utc_z(self.reversed_at),
            "reversal_reason": self.reversal_reason,
            "created_at": to_utc_z(self.created_at),
        }
