# Overview: Flask API routes for reconciliation metrics, supply-chain insights and the stock overview.

from flask import Blueprint, g, request

from ..decorators import handle_service_errors, require_business


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api")


@analytics_bp.get("/overview")
@require_business
@handle_service_errors
def inventory_overview_route():
    """Stock health rows (healthy/low/out/slow) and dashboard totals."""
    from ..services.stock_status_service import get_inventory_overview

    return get_inventory_overview(g.business_id)


@analytics_bp.get("/metrics")
@require_business
@handle_service_errors
def list_metrics_route():
    from ..services.reconciliation_service import list_product_metrics

    metrics = list_product_metrics(g.business_id)
    return {"items": [m.to_dict() for m in metrics]}


@analytics_bp.get("/metrics/<int:product_id>")
@require_business
@handle_service_errors
def get_metrics_route(product_id: int):
    from ..services.reconciliation_service import get_product_metrics

    return {"metrics": get_product_metrics(g.business_id, product_id).to_dict()}


@analytics_bp.post("/metrics/refresh")
@require_business
@handle_service_errors
def refresh_metrics_route():
    """Body (optional): product_id to refresh a single product."""
    from ..services.reconciliation_service import refresh_metrics

    payload = request.get_json(silent=True) or {}
    product_id = payload.get("product_id")
    if product_id is not None and (isinstance(product_id, bool) or not isinstance(product_id, int)):
        return {"error": "product_id must be an integer"}, 400

    metrics = refresh_metrics(g.business_id, product_id=product_id)
    return {"items": [m.to_dict() for m in metrics], "refreshed": len(metrics)}


@analytics_bp.post("/metrics/analyze")
@require_business
@handle_service_errors
def analyze_route():
    from ..services.insight_service import analyze_supply_chain

    return analyze_supply_chain(g.business_id)


@analytics_bp.get("/insights")
@require_business
@handle_service_errors
def list_insights_route():
    from ..services.insight_service import list_insights

    return {"items": [i.to_dict() for i in list_insights(g.business_id)]}
