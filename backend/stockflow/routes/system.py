# backend/stockflow/routes/system.py
"""
System health, version and business bootstrap endpoints.
"""

import sys
import time

from flask import Blueprint, current_app, request

from ..extensions import db
from ..models import Business, Product
from ..decorators import handle_service_errors
from stockflow.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        business_count = db.session.query(Business).count()
        product_count = db.session.query(Product).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "businesses": business_count,
                "products": product_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database check failed
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503
    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }


@system_bp.post("/businesses")
@handle_service_errors
def create_business_route():
    from ..services.product_service import create_business

    payload = request.get_json(silent=True) or {}
    business = create_business(name=payload.get("name"), currency=payload.get("currency") or "GHS")
    return {"business": business.to_dict()}, 201
