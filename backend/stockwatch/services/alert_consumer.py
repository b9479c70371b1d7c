# Overview: Queue Consumer; applies the evaluator rule to ALERT_REQUEST messages in batches.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..models import ALERT_TYPES
from ..validation import ValidationError, coerce_int, require_text
from .ledger_store import get_store
from .alert_evaluator import evaluate_with_outcome, find_active_alert
from .queue_service import ALERT_REQUEST, get_queue
"""
Consumer Semantics (authoritative)

- Each message is processed independently. One message failing never blocks
  or fails the others in its batch; the BatchResult lists failed message ids
  so only that subset is retried.
- Idempotent under redelivery: dedup is by the one-NEW-alert-per-product rule,
  not by request_id. A redelivered request after a successful create finds the
  active alert and is skipped.
- Non ALERT_REQUEST message types are skipped with a warning.
"""


@dataclass
class MessageOutcome:
    message_id: str | None
    status: str  # "created" | "skipped" | "failed"
    alert_id: str | None = None
    reason: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "status": self.status,
            "alert_id": self.alert_id,
            "reason": self.reason,
            "error": self.error,
        }


@dataclass
class BatchResult:
    outcomes: list[MessageOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[MessageOutcome]:
        return [o for o in self.outcomes if o.status != "failed"]

    @property
    def failed(self) -> list[MessageOutcome]:
        return [o for o in self.outcomes if o.status == "failed"]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def batch_item_failures(self) -> list[dict]:
        """Partial-batch response: the ids the caller should redeliver."""
        return [{"item_identifier": o.message_id} for o in self.failed]

    def to_dict(self) -> dict:
        return {
            "processed": len(self.outcomes),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "batch_item_failures": self.batch_item_failures(),
        }


def parse_alert_request(payload) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("alert request payload must be an object")

    alert_type = payload.get("alert_type") or "LOW"
    if alert_type not in ALERT_TYPES:
        raise ValidationError(f"alert_type must be one of: {', '.join(ALERT_TYPES)}")

    return {
        "product_id": require_text(payload.get("product_id"), "product_id"),
        "location_id": (payload.get("location_id") or "").strip()
        or current_app.config.get("DEFAULT_LOCATION_ID", "main"),
        "current_stock": coerce_int(payload.get("current_stock"), "current_stock"),
        "min_threshold": coerce_int(payload.get("min_threshold"), "min_threshold"),
        "alert_type": alert_type,
        "request_id": payload.get("request_id"),
    }


def _lookup_product_name(product_id: str) -> str:
    try:
        product = get_store().get("products", product_id)
    except Exception:
        current_app.logger.warning("Could not fetch product details for %s", product_id, exc_info=True)
        return "Unknown Product"
    return product.name if product is not None else "Unknown Product"


def process_alert_request(payload, *, message_id: str | None = None) -> MessageOutcome:
    """Evaluate one alert request; skips when an active alert already exists."""
    request = parse_alert_request(payload)

    existing = find_active_alert(request["product_id"])
    if existing is not None:
        return MessageOutcome(
            message_id=message_id,
            status="skipped",
            alert_id=existing.alert_id,
            reason="active alert exists",
        )

    result = evaluate_with_outcome(
        request["product_id"],
        request["location_id"],
        request["current_stock"],
        request["min_threshold"],
        source="queue",
        request_id=request["request_id"],
        product_name=_lookup_product_name(request["product_id"]),
        alert_type=request["alert_type"],
    )
    return MessageOutcome(
        message_id=message_id,
        status="created" if result.created else "skipped",
        alert_id=result.alert.alert_id if result.alert is not None else None,
        reason=result.reason,
    )


def process_message(message: dict, *, message_id: str | None = None) -> MessageOutcome:
    message_type = message.get("type") if isinstance(message, dict) else None
    if message_type == ALERT_REQUEST:
        return process_alert_request(message.get("payload"), message_id=message_id)

    current_app.logger.warning("Skipping queue message %s of type %r", message_id, message_type)
    return MessageOutcome(message_id=message_id, status="skipped", reason=f"unsupported message type {message_type!r}")


def process_batch(messages) -> BatchResult:
    """
    Process a batch of (message_id, body) pairs.

    Never raises for a single message; failures are collected in the result.
    """
    result = BatchResult()
    for message_id, body in messages:
        try:
            outcome = process_message(body, message_id=message_id)
        except Exception as exc:
            get_store().rollback()
            current_app.logger.exception("Failed to process alert queue message %s", message_id)
            outcome = MessageOutcome(message_id=message_id, status="failed", error=str(exc))
        result.outcomes.append(outcome)

    if result.has_failures:
        current_app.logger.warning(
            "Alert batch finished with %s of %s messages failed",
            len(result.failed),
            len(result.outcomes),
        )
    return result


def drain_queue(*, max_batches: int = 10, batch_size: int | None = None, queue=None) -> dict:
    """
    Receive and process batches until the queue has nothing visible.

    Successes are acked; failures are released for redelivery.
    """
    queue = queue or get_queue()
    batch_size = batch_size or current_app.config.get("QUEUE_BATCH_SIZE", 10)
    retry_delay = current_app.config.get("QUEUE_RETRY_DELAY_SECONDS", 30)

    totals = {"batches": 0, "processed": 0, "created": 0, "skipped": 0, "failed": 0}
    failures: list[dict] = []

    for _ in range(max_batches):
        # Snapshot ids and bodies; a per-message rollback expires the rows
        messages = [(m.message_id, m.payload()) for m in queue.receive(batch_size)]
        if not messages:
            break

        batch = process_batch(messages)
        totals["batches"] += 1
        for outcome in batch.outcomes:
            totals["processed"] += 1
            totals[outcome.status] += 1
            if outcome.status == "failed":
                queue.release(outcome.message_id, outcome.error, delay_seconds=retry_delay)
                failures.append(outcome.to_dict())
            else:
                queue.ack(outcome.message_id)

    return {**totals, "failures": failures}
