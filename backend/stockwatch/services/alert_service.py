# Overview: Alert Lifecycle Manager; owns alert state transitions, acknowledgment and listing.

"""
Alert Lifecycle Service

================================================================================
PURPOSE: Move alerts forward through NEW -> (PROCESSING -> SENT ->) ACKNOWLEDGED
================================================================================

STATE MACHINE:
    NEW -> PROCESSING -> SENT -> ACKNOWLEDGED

    NEW:          Active alert. At most one per product.
    PROCESSING:   Picked up for notification.
    SENT:         Notification handed off.
    ACKNOWLEDGED: Terminal. Immutable history.

RULES:
1. Status only moves forward; any non-terminal state may jump to ACKNOWLEDGED.
2. ACKNOWLEDGED is terminal: alerts are never reopened or deleted. A new stock
   drop after acknowledgment creates a new alert.
3. Acknowledging an ACKNOWLEDGED alert is a no-op that returns the record
   unchanged (same acknowledged_at), never an error.
4. Leaving NEW clears active_key so the product may hold a new active alert.

create_alert() is the low-level escape hatch. It does NOT apply the
one-active-alert-per-product rule; use with care.

================================================================================
"""

from __future__ import annotations
from typing import Literal

from flask import current_app

from ..models import Alert, ALERT_STATUSES
from ..validation import ValidationError, ConflictError, require_text, enforce_rules_alert_create
from .ledger_store import get_store
from .alert_evaluator import build_alert


AlertStatus = Literal["NEW", "PROCESSING", "SENT", "ACKNOWLEDGED"]

STATUS_ORDER = {status: index for index, status in enumerate(ALERT_STATUSES)}
TERMINAL_STATUS = "ACKNOWLEDGED"
SYSTEM_USER = "system"


class AlertLifecycleError(ConflictError):
    """
    Raised when an invalid alert transition is attempted.

    This is a domain error, not a technical error.
    """
    pass


def validate_status(status: str) -> None:
    if status not in STATUS_ORDER:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(ALERT_STATUSES)}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check if a state transition is valid according to the lifecycle rules.

    Valid: any strictly forward move (NEW -> SENT skips PROCESSING, which a
    notifier without a claim step needs), including X -> ACKNOWLEDGED.
    Invalid: backward moves and anything out of ACKNOWLEDGED.
    Same-state is allowed and treated as a no-op by callers.
    """
    validate_status(from_status)
    validate_status(to_status)

    if from_status == to_status:
        return True
    if from_status == TERMINAL_STATUS:
        return False
    return STATUS_ORDER[to_status] > STATUS_ORDER[from_status]


def get_alert(alert_id: str) -> Alert:
    alert_id = require_text(alert_id, "alert_id")
    return get_store().require("alerts", alert_id, label="Alert")


def list_alerts(status: str | None = None) -> list[Alert]:
    """All alerts (or those in one status), newest first."""
    filters = None
    if status:
        validate_status(status)
        filters = {"status": status}
    return get_store().scan(
        "alerts",
        filters,
        order_by=[Alert.created_at.desc(), Alert.alert_id.desc()],
    )


def acknowledge_alert(alert_id: str, user_id: str | None = None) -> Alert:
    """
    Acknowledge an alert (any non-terminal state -> ACKNOWLEDGED).

    Idempotent: an already acknowledged alert is returned unchanged.
    """
    store = get_store()
    alert = get_alert(alert_id)

    if alert.status == TERMINAL_STATUS:
        return alert

    alert.status = TERMINAL_STATUS
    alert.active_key = None
    alert.acknowledged_at = store.now()
    alert.acknowledged_by = (user_id or "").strip() or SYSTEM_USER
    store.put("alerts", alert)
    store.commit()

    current_app.logger.info("Alert %s acknowledged by %s", alert.alert_id, alert.acknowledged_by)
    return alert


def advance_alert_status(alert_id: str, to_status: AlertStatus, *, user_id: str | None = None) -> Alert:
    """Move an alert forward; ACKNOWLEDGED goes through acknowledge_alert()."""
    validate_status(to_status)
    if to_status == TERMINAL_STATUS:
        return acknowledge_alert(alert_id, user_id=user_id)

    store = get_store()
    alert = get_alert(alert_id)

    if alert.status == to_status:
        return alert
    if not can_transition(alert.status, to_status):
        raise AlertLifecycleError(
            f"Cannot move alert from {alert.status} to {to_status}. "
            "Alert status only moves forward."
        )

    alert.status = to_status
    alert.active_key = None
    store.put("alerts", alert)
    store.commit()
    return alert


def create_alert(
    *,
    product_id: str,
    threshold,
    current_stock,
    location_id: str | None = None,
    alert_type: str | None = None,
    status: str | None = None,
    metadata: dict | None = None,
) -> Alert:
    """
    Directly persist an alert. Bypasses the active-alert dedup rule.

    Use with care: this is the only path that can create a second NEW alert
    for a product. The reconciliation collapse pass repairs such duplicates.
    """
    patch = {
        "alert_type": alert_type,
        "status": status,
        "threshold": threshold,
        "current_stock": current_stock,
    }
    enforce_rules_alert_create(patch)

    store = get_store()
    alert = build_alert(
        product_id=require_text(product_id, "product_id"),
        location_id=(location_id or "").strip() or current_app.config.get("DEFAULT_LOCATION_ID", "main"),
        threshold=patch["threshold"],
        current_stock=patch["current_stock"],
        alert_type=patch["alert_type"],
        status=patch["status"],
        metadata={"source": "manual", **(metadata or {})},
        store=store,
    )
    if alert.status == TERMINAL_STATUS:
        alert.acknowledged_at = alert.created_at
        alert.acknowledged_by = SYSTEM_USER
    store.put("alerts", alert)
    store.commit()
    return alert
