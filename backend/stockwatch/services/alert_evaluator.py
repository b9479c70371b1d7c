# Overview: Alert Evaluator; decides on every stock mutation whether a LOW alert must exist.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..models import Alert
from .ledger_store import ConditionalPutFailed, StoreError, get_store
"""
Alert Evaluation Rules (authoritative)

- current_stock >= min_threshold: no alert condition (equal is NOT below).
- current_stock <  min_threshold:
    1. look up the product's active alert (status NEW)
    2. found -> return it unchanged
    3. not found -> create exactly one LOW alert snapshotting threshold and stock
- Check-then-act has no cross-request lock. With ALERT_DEDUP_STRATEGY
  "conditional" the insert carries active_key=product_id under a unique
  constraint, so a concurrent loser gets ConditionalPutFailed and returns the
  winner's alert. With "best_effort" two racing writers may both insert; the
  reconciliation collapse pass repairs that.
- Persistence errors propagate. Callers on the stock-mutation path swallow
  them; alerting never blocks inventory correctness.
"""

DEDUP_CONDITIONAL = "conditional"
DEDUP_BEST_EFFORT = "best_effort"

DISPATCH_SYNC = "sync"
DISPATCH_QUEUE = "queue"


@dataclass
class EvaluationResult:
    alert: Alert | None
    created: bool = False

    @property
    def reason(self) -> str:
        if self.alert is None:
            return "not below threshold"
        return "created" if self.created else "active alert exists"


@dataclass
class DispatchResult:
    mode: str
    alert: Alert | None = None
    created: bool = False
    message_id: str | None = None
    fell_back: bool = False

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "alert": self.alert.to_dict() if self.alert is not None else None,
            "created": self.created,
            "message_id": self.message_id,
            "fell_back": self.fell_back,
        }


def is_below_threshold(current_stock: int, min_threshold: int) -> bool:
    return current_stock < min_threshold


def dedup_strategy() -> str:
    return current_app.config.get("ALERT_DEDUP_STRATEGY", DEDUP_CONDITIONAL)


def find_active_alert(product_id: str, *, store=None) -> Alert | None:
    """Oldest NEW alert for the product, if any."""
    store = store or get_store()
    rows = store.scan(
        "alerts",
        {"product_id": product_id, "status": "NEW"},
        order_by=[Alert.created_at.asc(), Alert.alert_id.asc()],
        limit=1,
    )
    return rows[0] if rows else None


def build_alert(
    *,
    product_id: str,
    location_id: str,
    threshold: int,
    current_stock: int,
    alert_type: str = "LOW",
    status: str = "NEW",
    metadata: dict | None = None,
    store=None,
) -> Alert:
    """Construct (but do not persist) an Alert with a fresh id and created_at = now."""
    store = store or get_store()
    return Alert(
        alert_id=store.generate_id(),
        product_id=product_id,
        location_id=location_id,
        alert_type=alert_type,
        threshold=threshold,
        current_stock=current_stock,
        status=status,
        created_at=store.now(),
        alert_metadata=metadata or None,
    )


def persist_active_alert(alert: Alert, *, store=None) -> EvaluationResult:
    """
    Insert a NEW alert honoring the configured dedup strategy and commit.

    Returns the stored alert, or the concurrent winner's alert when a
    conditional put loses.
    """
    store = store or get_store()
    conditional = dedup_strategy() == DEDUP_CONDITIONAL and getattr(store, "supports_conditional_put", False)
    if conditional:
        alert.active_key = alert.product_id

    try:
        store.put("alerts", alert, conditional=conditional)
        store.commit()
    except ConditionalPutFailed:
        winner = find_active_alert(alert.product_id, store=store)
        if winner is None:
            raise StoreError(f"active alert for product {alert.product_id} vanished after conflict")
        current_app.logger.info(
            "Alert for product %s already created concurrently (%s)",
            alert.product_id,
            winner.alert_id,
        )
        return EvaluationResult(alert=winner, created=False)

    return EvaluationResult(alert=alert, created=True)


def evaluate_with_outcome(
    product_id: str,
    location_id: str,
    current_stock: int,
    min_threshold: int,
    *,
    source: str = "sync",
    request_id: str | None = None,
    product_name: str | None = None,
    alert_type: str = "LOW",
) -> EvaluationResult:
    if not is_below_threshold(current_stock, min_threshold):
        return EvaluationResult(alert=None)

    store = get_store()
    existing = find_active_alert(product_id, store=store)
    if existing is not None:
        return EvaluationResult(alert=existing, created=False)

    metadata = {"source": source}
    if product_name:
        metadata["product_name"] = product_name
    if request_id:
        metadata["request_id"] = request_id

    alert = build_alert(
        product_id=product_id,
        location_id=location_id,
        threshold=min_threshold,
        current_stock=current_stock,
        alert_type=alert_type,
        metadata=metadata,
        store=store,
    )
    result = persist_active_alert(alert, store=store)
    if result.created:
        current_app.logger.info(
            "Created %s alert %s for product %s (stock %s < threshold %s, source=%s)",
            alert_type,
            alert.alert_id,
            product_id,
            current_stock,
            min_threshold,
            source,
        )
    return result


def evaluate(
    product_id: str,
    location_id: str,
    current_stock: int,
    min_threshold: int,
    **kwargs,
) -> Alert | None:
    """Return the product's active alert when stock is below threshold, else None."""
    return evaluate_with_outcome(product_id, location_id, current_stock, min_threshold, **kwargs).alert


def dispatch_alert_evaluation(
    *,
    product_id: str,
    location_id: str,
    current_stock: int,
    min_threshold: int,
    product_name: str | None = None,
) -> DispatchResult:
    """
    Second phase of a stock mutation: evaluate inline or enqueue.

    Queue mode only enqueues when the LOW condition holds. A failed send falls
    back to synchronous evaluation rather than dropping the alert.
    """
    mode = current_app.config.get("ALERT_DISPATCH_MODE", DISPATCH_SYNC)

    if mode == DISPATCH_QUEUE:
        if not is_below_threshold(current_stock, min_threshold):
            return DispatchResult(mode=mode)

        from .queue_service import QueueError, get_queue, build_alert_request

        store = get_store()
        request_id = store.generate_id()
        message = build_alert_request(
            product_id=product_id,
            location_id=location_id,
            current_stock=current_stock,
            min_threshold=min_threshold,
            request_id=request_id,
        )
        try:
            message_id = get_queue().send(message, group_key=product_id, dedup_key=request_id)
            return DispatchResult(mode=mode, message_id=message_id)
        except QueueError:
            current_app.logger.warning(
                "Alert queue send failed for product %s; evaluating synchronously",
                product_id,
                exc_info=True,
            )
            result = evaluate_with_outcome(
                product_id,
                location_id,
                current_stock,
                min_threshold,
                source="sync-fallback",
                request_id=request_id,
                product_name=product_name,
            )
            return DispatchResult(mode=mode, alert=result.alert, created=result.created, fell_back=True)

    result = evaluate_with_outcome(
        product_id,
        location_id,
        current_stock,
        min_threshold,
        source="sync",
        product_name=product_name,
    )
    return DispatchResult(mode=DISPATCH_SYNC, alert=result.alert, created=result.created)
