# backend/stockwatch/routes/system.py
"""
System health and version endpoints.

Health covers the ledger database and the alert pipeline: a growing DEAD
queue or duplicate active alerts degrade the service without making it
unavailable.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func
from ..extensions import db
from ..models import Product, Inventory, Alert
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        inventory_count = db.session.query(Inventory).count()
        alert_count = db.session.query(Alert).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "inventory_rows": inventory_count,
                "alerts": alert_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_alert_pipeline_health() -> dict:
    """
    Check the alert queue and the one-active-alert-per-product invariant.
    """
    start_time = time.time()
    try:
        from ..services.queue_service import get_queue

        queue_stats = get_queue().stats()

        duplicate_products = (
            db.session.query(Alert.product_id)
            .filter(Alert.status == "NEW")
            .group_by(Alert.product_id)
            .having(func.count(Alert.alert_id) > 1)
            .count()
        )

        elapsed_ms = (time.time() - start_time) * 1000
        details = {
            "dispatch_mode": current_app.config.get("ALERT_DISPATCH_MODE", "sync"),
            "dedup_strategy": current_app.config.get("ALERT_DEDUP_STRATEGY", "conditional"),
            "queue": queue_stats,
            "products_with_duplicate_active_alerts": duplicate_products,
        }

        warnings = []
        if queue_stats.get("DEAD"):
            warnings.append(f"{queue_stats['DEAD']} dead alert requests")
        if duplicate_products:
            warnings.append(f"{duplicate_products} products with duplicate active alerts")

        if warnings:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "; ".join(warnings),
                "details": details,
            }

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Alert pipeline health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Alert pipeline error"
        }


@system_bp.get("/api/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    pipeline_health = check_alert_pipeline_health()

    all_checks = [database_health, pipeline_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "alert_pipeline": pipeline_health,
        }
    }

    return response, http_status


@system_bp.get("/api/version")
def version():
    """Non-sensitive deployment information."""
    import sys

    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
