# Overview: Stock conversion transactor; turns Q units of one product into N units of another.

"""
Conversion Invariants (authoritative)

Lifecycle: PROPOSED -> COMMITTED | CANCELLED.

propose_conversion():
- validates 0 < Q <= source stock, N > 0, destination != source
- reads the source's weighted average unit cost FRESH and reports
  cost_impact = WAC * Q
- persists the proposal under conversion_key (idempotency key). Reusing a
  key with identical inputs returns the existing proposal; with different
  inputs it is a ConflictError.

confirm_conversion() applies five steps in ONE transaction:
  1. source.current_stock -= Q   (never clamped; insufficient stock rejects)
  2. append a "conversion" movement on the source, quantity +Q, with JSON
     lineage notes
  3. resolve or create the destination; current_stock += N; optional
     selling price
  4. append a destination receipt (unit_cost given or 0) tagged with the
     conversion id
  5. if the loss is recorded and WAC * Q > 0, append a "Stock Conversion"
     expense
Either all five are committed or none is. Confirming an already committed
conversion returns it unchanged. A database failure inside a step is
surfaced as PartialWriteError naming the step; the transaction is rolled
back, so the command can simply be retried.

Loss recording follows CONVERSION_LOSS_POLICY:
- "always" / "never" decide on their own
- "ask" requires the caller to pass record_loss explicitly
"""

from __future__ import annotations

import uuid

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import StockConversion
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    enforce_rules_conversion,
    optional_non_negative,
    require_positive,
    require_text,
)
from stockflow.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .expense_service import CATEGORY_STOCK_CONVERSION, _append_expense
from .movement_service import (
    MOVEMENT_CONVERSION,
    _append_movement,
    conversion_notes,
    list_conversion_history,
)
from .product_service import add_stock, find_product_by_name, get_product, normalize_name, remove_stock, resolve_product
from .receipt_service import _append_receipt
from .snapshot_service import invalidate_product_metrics
from .valuation_service import get_weighted_average_unit_cost


STATUS_PROPOSED = "PROPOSED"
STATUS_COMMITTED = "COMMITTED"
STATUS_CANCELLED = "CANCELLED"

LOSS_POLICIES = ("ask", "always", "never")

__all__ = [
    "PartialWriteError",
    "propose_conversion",
    "confirm_conversion",
    "cancel_conversion",
    "convert_stock",
    "get_conversion",
    "list_conversions",
    "list_conversion_history",
]


class PartialWriteError(Exception):
    """A conversion step failed after earlier steps were staged."""

    def __init__(self, conversion_id: int, step: str, message: str | None = None):
        self.conversion_id = conversion_id
        self.step = step
        super().__init__(
            message or f"Conversion {conversion_id} failed at step '{step}' and was rolled back"
        )


def _resolve_record_loss(record_loss: bool | None) -> bool:
    policy = str(current_app.config.get("CONVERSION_LOSS_POLICY", "ask")).lower()
    if policy not in LOSS_POLICIES:
        raise ValidationError(f"CONVERSION_LOSS_POLICY must be one of: {', '.join(LOSS_POLICIES)}")
    if policy == "always":
        return True
    if policy == "never":
        return False
    if record_loss is None:
        raise ValidationError("record_loss is required: record the converted cost as an expense?")
    return bool(record_loss)


def get_conversion(business_id: int, conversion_id: int, *, lock: bool = False) -> StockConversion:
    query = db.session.query(StockConversion).filter_by(id=conversion_id)
    if lock:
        query = lock_for_update(query)
    conversion = query.first()
    if conversion is None or conversion.business_id != business_id:
        raise NotFoundError(f"Conversion {conversion_id} not found")
    return conversion


def list_conversions(business_id: int, *, status: str | None = None, limit: int = 50) -> list[StockConversion]:
    query = db.session.query(StockConversion).filter_by(business_id=business_id)
    if status:
        query = query.filter(StockConversion.status == status.upper())
    return query.order_by(StockConversion.created_at.desc(), StockConversion.id.desc()).limit(limit).all()


def _same_inputs(conversion: StockConversion, inputs: dict) -> bool:
    return (
        conversion.source_product_id == inputs["source_product_id"]
        and normalize_name(conversion.destination_product_name) == normalize_name(inputs["destination_product_name"])
        and conversion.source_quantity == inputs["source_quantity"]
        and conversion.destination_quantity == inputs["destination_quantity"]
        and conversion.unit == inputs["unit"]
        and conversion.unit_cost == inputs["unit_cost"]
        and conversion.selling_price == inputs["selling_price"]
    )


def propose_conversion(
    *,
    business_id: int,
    source_product_id: int,
    destination_product_name: str,
    source_quantity,
    destination_quantity,
    unit: str | None = None,
    unit_cost=None,
    selling_price=None,
    conversion_key: str | None = None,
) -> StockConversion:
    """
    Validate a conversion and persist it as PROPOSED with its cost impact.

    Raises:
        ValidationError: bad quantities, same product, not enough stock
        NotFoundError: unknown source product
        ConflictError: conversion_key reused with different inputs
    """
    enforce_rules_conversion({
        "source_quantity": source_quantity,
        "destination_quantity": destination_quantity,
        "unit_cost": unit_cost,
        "selling_price": selling_price,
    })
    inputs = {
        "source_product_id": source_product_id,
        "destination_product_name": " ".join(require_text(destination_product_name, "destination_product_name").split()),
        "source_quantity": require_positive(source_quantity, "source_quantity"),
        "destination_quantity": require_positive(destination_quantity, "destination_quantity"),
        "unit": (unit or "").strip() or None,
        "unit_cost": optional_non_negative(unit_cost, "unit_cost"),
        "selling_price": optional_non_negative(selling_price, "selling_price"),
    }
    key = (conversion_key or "").strip() or uuid.uuid4().hex

    existing = (
        db.session.query(StockConversion)
        .filter_by(business_id=business_id, conversion_key=key)
        .first()
    )
    if existing is not None:
        if _same_inputs(existing, inputs):
            return existing
        raise ConflictError(f"Conversion key {key!r} was already used with different inputs")

    source = get_product(business_id, source_product_id)
    if normalize_name(inputs["destination_product_name"]) == source.name_key:
        raise ValidationError("Destination product must differ from the source product")

    quantity = inputs["source_quantity"]
    on_hand = float(source.current_stock or 0)
    if quantity > on_hand:
        raise ValidationError(
            f"Not enough stock: only {on_hand:g} of {source.name!r} available"
        )

    wac = get_weighted_average_unit_cost(business_id, source.id)
    destination = find_product_by_name(business_id, inputs["destination_product_name"])

    conversion = StockConversion(
        business_id=business_id,
        conversion_key=key,
        source_product_name=source.name,
        destination_product_id=destination.id if destination else None,
        source_unit_cost=wac,
        cost_impact=wac * quantity,
        status=STATUS_PROPOSED,
        **inputs,
    )
    db.session.add(conversion)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"Conversion key {key!r} is already in use") from exc
    return conversion


def confirm_conversion(
    *,
    business_id: int,
    conversion_id: int,
    record_loss: bool | None = None,
) -> StockConversion:
    """
    Apply a proposed conversion atomically. Idempotent once committed.

    Raises:
        NotFoundError: unknown conversion
        ConflictError: conversion was cancelled
        ValidationError: stock fell below Q since the proposal; loss decision missing
        PartialWriteError: a database error inside one of the five steps
    """
    def _op():
        conversion = get_conversion(business_id, conversion_id, lock=True)
        if conversion.status == STATUS_COMMITTED:
            return conversion
        if conversion.status == STATUS_CANCELLED:
            raise ConflictError(f"Conversion {conversion_id} was cancelled")

        book_loss = _resolve_record_loss(record_loss)
        source = get_product(business_id, conversion.source_product_id, lock=True)
        quantity = float(conversion.source_quantity)
        produced = float(conversion.destination_quantity)

        # Cost basis is re-read at execution time, not taken from the proposal
        wac = get_weighted_average_unit_cost(business_id, source.id)
        conversion.source_unit_cost = wac
        conversion.cost_impact = wac * quantity

        step = "decrement_source"
        try:
            remove_stock(source, quantity, clamp=False)

            step = "append_movement"
            _append_movement(
                product=source,
                movement_type=MOVEMENT_CONVERSION,
                quantity=quantity,
                notes=conversion_notes(
                    original_product=source.name,
                    converted_product=conversion.destination_product_name,
                    original_quantity=quantity,
                    new_quantity=produced,
                    unit=conversion.unit,
                ),
                conversion_id=conversion.id,
            )

            step = "upsert_destination"
            destination = resolve_product(
                business_id,
                product_name=conversion.destination_product_name,
                create=True,
                lock=True,
            )
            if destination.id == source.id:
                raise ValidationError("Destination product must differ from the source product")
            add_stock(destination, produced)
            if conversion.selling_price:
                destination.selling_price = conversion.selling_price
            if conversion.unit and not destination.unit:
                destination.unit = conversion.unit

            step = "append_receipt"
            _append_receipt(
                product=destination,
                quantity_received=produced,
                unit_cost=conversion.unit_cost or 0.0,
                total_cost=None,
                received_dt=utcnow(),
                conversion_id=conversion.id,
            )

            step = "record_expense"
            expense = None
            if book_loss and conversion.cost_impact > 0:
                expense = _append_expense(
                    business_id=business_id,
                    amount=conversion.cost_impact,
                    category=CATEGORY_STOCK_CONVERSION,
                    vendor_name="Stock Conversion Loss",
                    description=(
                        f"Converted {quantity:g} {source.name} to "
                        f"{produced:g} {destination.name}"
                    ),
                    conversion_id=conversion.id,
                )

            invalidate_product_metrics([source.id, destination.id])
            conversion.destination_product_id = destination.id
            conversion.record_loss = book_loss
            conversion.expense_id = expense.id if expense else None
            conversion.status = STATUS_COMMITTED
            conversion.committed_at = utcnow()

            step = "commit"
            db.session.commit()
        except (OperationalError, StaleDataError):
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception(
                "Conversion %s failed at step %s", conversion_id, step
            )
            raise PartialWriteError(conversion_id, step) from exc

        current_app.logger.info(
            "Committed conversion %s: %g %s -> %g %s (loss recorded: %s)",
            conversion.id,
            quantity,
            conversion.source_product_name,
            produced,
            conversion.destination_product_name,
            book_loss,
        )
        return conversion

    return run_with_retry(_op)


def cancel_conversion(*, business_id: int, conversion_id: int) -> StockConversion:
    conversion = get_conversion(business_id, conversion_id)
    if conversion.status == STATUS_CANCELLED:
        return conversion
    if conversion.status == STATUS_COMMITTED:
        raise ConflictError(f"Conversion {conversion_id} is already committed")
    conversion.status = STATUS_CANCELLED
    conversion.cancelled_at = utcnow()
    db.session.commit()
    return conversion


def convert_stock(
    *,
    business_id: int,
    source_product_id: int,
    destination_product_name: str,
    source_quantity,
    destination_quantity,
    unit: str | None = None,
    unit_cost=None,
    selling_price=None,
    record_loss: bool | None = None,
    conversion_key: str | None = None,
) -> StockConversion:
    """Propose and confirm in one call. The loss decision is checked before anything is written."""
    record_loss = _resolve_record_loss(record_loss)
    conversion = propose_conversion(
        business_id=business_id,
        source_product_id=source_product_id,
        destination_product_name=destination_product_name,
        source_quantity=source_quantity,
        destination_quantity=destination_quantity,
        unit=unit,
        unit_cost=unit_cost,
        selling_price=selling_price,
        conversion_key=conversion_key,
    )
    return confirm_conversion(
        business_id=business_id,
        conversion_id=conversion.id,
        record_loss=record_loss,
    )
