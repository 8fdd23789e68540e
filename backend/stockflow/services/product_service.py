# Overview: Product and supplier registry; name resolution and guarded stock writes.

"""
Product Registry Invariants (authoritative)

- Product.current_stock is authoritative and never negative.
- Free-text product names are resolved to a product id ONCE, at the write
  boundary, by exact match on the normalized name key. Readers never
  re-match names, so "Palm Oil" and "Palm Oil Refined" cannot contaminate
  each other's metrics.
- Every stock change goes through add_stock()/remove_stock(); the ORM
  version check on Product turns the read-modify-write into a
  compare-and-swap (see concurrency.run_with_retry).
- add_stock()/remove_stock() only stage the change; the caller's next flush
  writes it together with the ledger row, as ONE versioned UPDATE.
- Other functions here flush but do not commit unless they are public commands
  (register_product, update_product, create_supplier).
"""

from __future__ import annotations

from ..extensions import db
from ..models import Business, Product, Supplier
from ..validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    require_text,
    require_non_negative,
    optional_non_negative,
)
from .concurrency import lock_for_update, run_with_retry
from .snapshot_service import invalidate_product_metrics


def normalize_name(name: str) -> str:
    """Canonical name key: whitespace collapsed, case-folded."""
    return " ".join(str(name).split()).casefold()


def get_business(business_id: int) -> Business:
    business = db.session.get(Business, business_id)
    if business is None:
        raise NotFoundError(f"Business {business_id} not found")
    return business


def create_business(*, name: str, currency: str = "GHS") -> Business:
    business = Business(name=require_text(name, "name"), currency=(currency or "GHS").upper())
    db.session.add(business)
    db.session.commit()
    return business


def get_product(business_id: int, product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None or product.business_id != business_id:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def find_product_by_name(business_id: int, name: str, *, lock: bool = False) -> Product | None:
    key = normalize_name(name)
    if not key:
        return None
    query = db.session.query(Product).filter_by(business_id=business_id, name_key=key)
    if lock:
        query = lock_for_update(query)
    return query.first()


def resolve_product(
    business_id: int,
    *,
    product_id: int | None = None,
    product_name: str | None = None,
    create: bool = False,
    lock: bool = False,
) -> Product:
    """
    Resolve a ledger write's product reference to a registry row.

    product_id wins when both are given. With create=True an unknown name
    registers a new product with zero stock (flushed, not committed).
    """
    if product_id is not None:
        return get_product(business_id, product_id, lock=lock)

    name = require_text(product_name, "product_name")
    product = find_product_by_name(business_id, name, lock=lock)
    if product is not None:
        return product
    if not create:
        raise NotFoundError(f"Product {name!r} not found")

    get_business(business_id)
    product = Product(
        business_id=business_id,
        name=" ".join(name.split()),
        name_key=normalize_name(name),
        current_stock=0.0,
        sales_count_30d=0,
    )
    db.session.add(product)
    db.session.flush()
    return product


def list_products(business_id: int, *, in_stock_only: bool = False) -> list[Product]:
    query = db.session.query(Product).filter_by(business_id=business_id)
    if in_stock_only:
        query = query.filter(Product.current_stock > 0)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def register_product(
    *,
    business_id: int,
    name: str,
    selling_price=None,
    unit: str | None = None,
    current_stock=0,
) -> Product:
    """Explicitly register a product (outside of a receipt or conversion)."""
    get_business(business_id)
    name = require_text(name, "name")
    price = optional_non_negative(selling_price, "selling_price")
    stock = require_non_negative(current_stock, "current_stock")

    if find_product_by_name(business_id, name) is not None:
        raise ConflictError(f"Product {name!r} already exists")

    product = Product(
        business_id=business_id,
        name=" ".join(name.split()),
        name_key=normalize_name(name),
        unit=unit,
        current_stock=stock,
        selling_price=price,
        sales_count_30d=0,
    )
    db.session.add(product)
    db.session.commit()
    return product


def update_product(
    *,
    business_id: int,
    product_id: int,
    name: str | None = None,
    selling_price=None,
    unit: str | None = None,
) -> Product:
    """Rename or reprice a product. Stock is not editable here."""
    def _op():
        product = get_product(business_id, product_id, lock=True)

        if name is not None:
            new_name = require_text(name, "name")
            clash = find_product_by_name(business_id, new_name)
            if clash is not None and clash.id != product.id:
                raise ConflictError(f"Product {new_name!r} already exists")
            product.name = " ".join(new_name.split())
            product.name_key = normalize_name(new_name)

        if selling_price is not None:
            product.selling_price = require_non_negative(selling_price, "selling_price")

        if unit is not None:
            product.unit = unit.strip() or None

        invalidate_product_metrics(product.id)
        db.session.commit()
        return product

    return run_with_retry(_op)


def add_stock(product: Product, quantity: float) -> Product:
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    product.current_stock = float(product.current_stock or 0) + float(quantity)
    return product


def remove_stock(product: Product, quantity: float, *, clamp: bool = True) -> float:
    """
    Deduct stock and return the quantity actually removed.

    clamp=True floors the stock at zero (sales and losses recorded after the
    fact). clamp=False refuses to go negative (conversions).
    """
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    on_hand = float(product.current_stock or 0)
    if quantity > on_hand and not clamp:
        raise ValidationError(
            f"Not enough stock: only {on_hand:g} of {product.name!r} available"
        )

    removed = min(on_hand, float(quantity))
    product.current_stock = max(0.0, on_hand - float(quantity))
    return removed


def create_supplier(
    *,
    business_id: int,
    name: str,
    location: str | None = None,
    phone_number: str | None = None,
) -> Supplier:
    get_business(business_id)
    supplier = Supplier(
        business_id=business_id,
        name=require_text(name, "name"),
        location=(location or "").strip() or None,
        phone_number=(phone_number or "").strip() or None,
    )
    db.session.add(supplier)
    db.session.commit()
    return supplier


def get_supplier(business_id: int, supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None or supplier.business_id != business_id:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def list_suppliers(business_id: int) -> list[Supplier]:
    return (
        db.session.query(Supplier)
        .filter_by(business_id=business_id)
        .order_by(Supplier.name.asc())
        .all()
    )
