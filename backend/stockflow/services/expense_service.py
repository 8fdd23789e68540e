# Overview: Expense ledger; sink for conversion losses, write-offs and purchases.

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import Expense
from ..validation import ConflictError, NotFoundError, ValidationError, require_non_negative, require_text
from stockflow.time_utils import utcnow
from .document_service import next_document_number
from .product_service import get_business


CATEGORY_STOCK_CONVERSION = "Stock Conversion"
CATEGORY_LOSS_DAMAGE = "Loss/Damage"
CATEGORY_INVENTORY_PURCHASE = "Inventory Purchase"


def _append_expense(
    *,
    business_id: int,
    amount: float,
    category: str,
    description: str | None = None,
    vendor_name: str | None = None,
    notes: str | None = None,
    payment_method: str | None = None,
    expense_date: date | None = None,
    conversion_id: int | None = None,
    movement_id: int | None = None,
    receipt_id: int | None = None,
) -> Expense:
    """Core insert without commit; shared by the ledger services."""
    expense = Expense(
        business_id=business_id,
        expense_number=next_document_number(
            business_id=business_id,
            document_type="EXPENSE",
            prefix="EXP",
        ),
        amount=float(amount),
        category=category,
        description=description,
        vendor_name=vendor_name,
        notes=notes,
        payment_method=payment_method,
        expense_date=expense_date or utcnow().date(),
        conversion_id=conversion_id,
        movement_id=movement_id,
        receipt_id=receipt_id,
    )
    db.session.add(expense)
    db.session.flush()
    return expense


def record_expense(
    *,
    business_id: int,
    amount,
    category: str,
    description: str | None = None,
    vendor_name: str | None = None,
    notes: str | None = None,
    payment_method: str | None = None,
    expense_date: date | None = None,
) -> Expense:
    get_business(business_id)
    expense = _append_expense(
        business_id=business_id,
        amount=require_non_negative(amount, "amount"),
        category=require_text(category, "category", max_length=64),
        description=description,
        vendor_name=vendor_name,
        notes=notes,
        payment_method=payment_method,
        expense_date=expense_date,
    )
    db.session.commit()
    return expense


def get_expense(business_id: int, expense_id: int) -> Expense:
    expense = db.session.get(Expense, expense_id)
    if expense is None or expense.business_id != business_id:
        raise NotFoundError(f"Expense {expense_id} not found")
    return expense


def reverse_expense(*, business_id: int, expense_id: int, reason: str | None = None) -> Expense:
    expense = get_expense(business_id, expense_id)
    if expense.is_reversed:
        raise ConflictError(f"Expense {expense.expense_number} is already reversed")
    expense.is_reversed = True
    expense.reversed_at = utcnow()
    expense.reversal_reason = (reason or "").strip() or None
    db.session.commit()
    return expense


def list_expenses(
    business_id: int,
    *,
    category: str | None = None,
    include_reversed: bool = True,
    limit: int = 200,
) -> list[Expense]:
    if limit <= 0:
        raise ValidationError("limit must be > 0")
    query = db.session.query(Expense).filter_by(business_id=business_id)
    if category:
        query = query.filter(Expense.category == category)
    if not include_reversed:
        query = query.filter(Expense.is_reversed.is_(False))
    return query.order_by(Expense.expense_date.desc(), Expense.id.desc()).limit(limit).all()
