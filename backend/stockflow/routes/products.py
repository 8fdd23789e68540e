# Overview: Flask API routes for the product and supplier registry.

# backend/stockflow/routes/products.py
"""
Product registry routes.

All routes are scoped to the business in g.business_id (set by
@require_business). Stock is never edited here: it moves only through the
receipt, movement, sale and conversion endpoints.
"""
from flask import Blueprint, g, request

from ..models import Product, Supplier
from ..validation import ModelValidationPolicy, validate_payload
from ..decorators import handle_service_errors, require_business

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "selling_price", "unit", "current_stock"},
    required_on_create={"name"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "selling_price", "unit"},
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "location", "phone_number"},
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@products_bp.get("")
@require_business
@handle_service_errors
def list_products_route():
    """
    Query params:
    - in_stock: "1"/"true" to hide products with zero stock
    """
    from ..services.product_service import list_products

    in_stock = request.args.get("in_stock", "").lower() in {"1", "true", "yes"}
    products = list_products(g.business_id, in_stock_only=in_stock)
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.post("")
@require_business
@handle_service_errors
def create_product_route():
    from ..services.product_service import register_product

    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)

    product = register_product(
        business_id=g.business_id,
        name=patch["name"],
        selling_price=patch.get("selling_price"),
        unit=patch.get("unit"),
        current_stock=patch.get("current_stock") or 0,
    )
    return {"product": product.to_dict()}, 201


@products_bp.get("/<int:product_id>")
@require_business
@handle_service_errors
def get_product_route(product_id: int):
    """Product row plus its current valuation (weighted average cost, stock value)."""
    from ..services.product_service import get_product
    from ..services.valuation_service import get_product_valuation

    product = get_product(g.business_id, product_id)
    return {"product": product.to_dict(), "valuation": get_product_valuation(product)}


@products_bp.put("/<int:product_id>")
@require_business
@handle_service_errors
def update_product_route(product_id: int):
    from ..services.product_service import update_product

    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)

    product = update_product(
        business_id=g.business_id,
        product_id=product_id,
        name=patch.get("name"),
        selling_price=patch.get("selling_price"),
        unit=patch.get("unit"),
    )
    return {"product": product.to_dict()}


@suppliers_bp.get("")
@require_business
@handle_service_errors
def list_suppliers_route():
    from ..services.product_service import list_suppliers

    suppliers = list_suppliers(g.business_id)
    return {"items": [s.to_dict() for s in suppliers]}


@suppliers_bp.post("")
@require_business
@handle_service_errors
def create_supplier_route():
    from ..services.product_service import create_supplier

    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)

    supplier = create_supplier(business_id=g.business_id, **patch)
    return {"supplier": supplier.to_dict()}, 201
