# Overview: Flask API routes for the expense ledger.

from flask import Blueprint, g, request

from ..models import Expense
from ..validation import ModelValidationPolicy, validate_payload
from ..decorators import handle_service_errors, require_business


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")

EXPENSE_POLICY = ModelValidationPolicy(
    writable_fields={
        "amount",
        "category",
        "vendor_name",
        "description",
        "notes",
        "payment_method",
        "expense_date",
    },
    required_on_create={"amount", "category"},
)


@expenses_bp.post("")
@require_business
@handle_service_errors
def record_expense_route():
    from ..services.expense_service import record_expense

    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=False)

    expense = record_expense(business_id=g.business_id, **patch)
    return {"expense": expense.to_dict()}, 201


@expenses_bp.get("")
@require_business
@handle_service_errors
def list_expenses_route():
    from ..services.expense_service import list_expenses

    include_reversed = request.args.get("include_reversed", "1").lower() not in {"0", "false", "no"}
    expenses = list_expenses(
        g.business_id,
        category=request.args.get("category") or None,
        include_reversed=include_reversed,
        limit=request.args.get("limit", default=200, type=int),
    )
    return {
        "items": [e.to_dict() for e in expenses],
        "total": sum(e.amount for e in expenses if not e.is_reversed),
    }


@expenses_bp.get("/<int:expense_id>")
@require_business
@handle_service_errors
def get_expense_route(expense_id: int):
    from ..services.expense_service import get_expense

    return {"expense": get_expense(g.business_id, expense_id).to_dict()}


@expenses_bp.post("/<int:expense_id>/reverse")
@require_business
@handle_service_errors
def reverse_expense_route(expense_id: int):
    from ..services.expense_service import reverse_expense

    payload = request.get_json(silent=True) or {}
    expense = reverse_expense(
        business_id=g.business_id,
        expense_id=expense_id,
        reason=payload.get("reason"),
    )
    return {"expense": expense.to_dict()}
