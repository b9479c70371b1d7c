# backend/stockwatch/routes/alerts.py
"""
Alert routes: listing, acknowledgment, status moves, the direct create escape
hatch, the reconciliation sweep and the alert queue consumer trigger.
"""
from flask import Blueprint, current_app, request

from ..models import Alert
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    ConflictError,
    enforce_rules_alert_create,
)
from ..services.ledger_store import NotFoundError, StoreError

alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/alerts")

ALERT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "location_id", "alert_type", "threshold", "current_stock", "status"},
    required_on_create={"product_id", "threshold", "current_stock"},
)


def _user_id_from_body() -> str | None:
    body = request.get_json(silent=True) or {}
    user_id = body.get("user_id") if isinstance(body, dict) else None
    return str(user_id) if user_id else None


@alerts_bp.get("")
def list_alerts_route():
    """All alerts newest first; ?status=NEW|PROCESSING|SENT|ACKNOWLEDGED filters."""
    from ..services.alert_service import list_alerts

    try:
        alerts = list_alerts(request.args.get("status") or None)
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"items": [a.to_dict() for a in alerts], "count": len(alerts)}


@alerts_bp.get("/<alert_id>")
def get_alert_route(alert_id: str):
    from ..services.alert_service import get_alert

    try:
        return get_alert(alert_id).to_dict()
    except NotFoundError as e:
        return {"error": str(e)}, 404


@alerts_bp.post("")
def create_alert_route():
    """
    Directly create an alert.

    Bypasses the one-active-alert-per-product check. Use with care.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Alert, payload=payload, policy=ALERT_CREATE_POLICY, partial=False)
        enforce_rules_alert_create(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.alert_service import create_alert

    try:
        alert = create_alert(
            product_id=patch["product_id"],
            location_id=patch.get("location_id"),
            alert_type=patch["alert_type"],
            threshold=patch["threshold"],
            current_stock=patch["current_stock"],
            status=patch["status"],
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except StoreError:
        current_app.logger.exception("Failed to create alert")
        return {"error": "Alert creation failed"}, 503

    return {"message": "Alert created successfully", "alert": alert.to_dict()}, 201


@alerts_bp.post("/<alert_id>/acknowledge")
def acknowledge_alert_route(alert_id: str):
    """Idempotent: acknowledging an acknowledged alert returns it unchanged."""
    from ..services.alert_service import acknowledge_alert, get_alert

    try:
        already = get_alert(alert_id).status == "ACKNOWLEDGED"
        alert = acknowledge_alert(alert_id, user_id=_user_id_from_body())
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except StoreError:
        current_app.logger.exception("Failed to acknowledge alert")
        return {"error": "Alert acknowledgment failed"}, 503

    message = "Alert was already acknowledged" if already else "Alert acknowledged successfully"
    return {"message": message, "alert": alert.to_dict()}


@alerts_bp.post("/<alert_id>/status")
def advance_alert_status_route(alert_id: str):
    from ..services.alert_service import advance_alert_status

    body = request.get_json(silent=True) or {}
    to_status = body.get("status") if isinstance(body, dict) else None
    if not to_status:
        return {"error": "status is required"}, 400

    try:
        alert = advance_alert_status(alert_id, to_status, user_id=_user_id_from_body())
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except StoreError:
        current_app.logger.exception("Failed to move alert status")
        return {"error": "Alert status update failed"}, 503

    return {"alert": alert.to_dict()}


@alerts_bp.post("/check-all")
def check_all_alerts_route():
    """Reconciliation sweep: create alerts missing for products below threshold."""
    from ..services.reconciliation_service import reconcile_all

    try:
        return reconcile_all()
    except StoreError:
        current_app.logger.exception("Reconciliation sweep failed")
        return {"error": "Reconciliation failed"}, 503


@alerts_bp.post("/collapse-duplicates")
def collapse_duplicates_route():
    from ..services.reconciliation_service import collapse_duplicate_alerts

    try:
        return collapse_duplicate_alerts()
    except StoreError:
        current_app.logger.exception("Duplicate alert collapse failed")
        return {"error": "Duplicate collapse failed"}, 503


@alerts_bp.post("/process-queue")
def process_queue_route():
    """Drain visible alert requests; failures stay queued for redelivery."""
    from ..services.alert_consumer import drain_queue
    from ..services.queue_service import QueueError

    max_batches = request.args.get("max_batches", default=10, type=int)
    try:
        return drain_queue(max_batches=max(1, min(max_batches, 100)))
    except QueueError:
        current_app.logger.exception("Alert queue processing failed")
        return {"error": "Alert queue processing failed"}, 503
