# Overview: Durable alert-request queue (at-least-once, FIFO per product group).

from __future__ import annotations

import json
from datetime import timedelta

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..models import AlertQueueMessage
from .ledger_store import StoreError, get_store
"""
Alert Dispatch Queue Semantics (authoritative)

- send() is durable once it returns. dedup_key suppresses a second send of the
  same key inside QUEUE_DEDUP_WINDOW_SECONDS and returns the first message id.
- receive() hands out visible messages oldest first and marks them IN_FLIGHT
  for QUEUE_VISIBILITY_TIMEOUT_SECONDS. A message that is not acked in time is
  delivered again (at-least-once, never exactly-once).
- A group_key never has more than one message in flight, so messages for one
  product are processed in send order. Different groups are unordered.
- release() makes a failed message visible again after delay_seconds. Later
  messages in its group wait for it. Once a message has been received
  QUEUE_MAX_RECEIVES times it is parked as DEAD.
"""

ALERT_REQUEST = "ALERT_REQUEST"


class QueueError(Exception):
    """Enqueue or consume operation failed."""


def build_alert_request(
    *,
    product_id: str,
    location_id: str,
    current_stock: int,
    min_threshold: int,
    request_id: str,
    alert_type: str = "LOW",
) -> dict:
    return {
        "type": ALERT_REQUEST,
        "payload": {
            "product_id": product_id,
            "location_id": location_id,
            "current_stock": current_stock,
            "min_threshold": min_threshold,
            "alert_type": alert_type,
            "request_id": request_id,
        },
    }


class AlertQueue:
    def __init__(
        self,
        store,
        *,
        visibility_timeout: int = 60,
        max_receives: int = 5,
        dedup_window: int = 300,
    ):
        self.store = store
        self.visibility_timeout = visibility_timeout
        self.max_receives = max_receives
        self.dedup_window = dedup_window

    @property
    def session(self):
        return self.store.session

    def _fail(self, action: str, exc: Exception) -> QueueError:
        self.store.rollback()
        return QueueError(f"queue {action} failed: {exc}")

    def send(self, message: dict, group_key: str | None = None, dedup_key: str | None = None) -> str:
        if not isinstance(message, dict) or not message.get("type"):
            raise QueueError("message must be a dict with a 'type'")

        now = self.store.now()
        try:
            if dedup_key:
                cutoff = now - timedelta(seconds=self.dedup_window)
                duplicate = (
                    self.session.query(AlertQueueMessage)
                    .filter(
                        AlertQueueMessage.dedup_key == dedup_key,
                        AlertQueueMessage.created_at >= cutoff,
                    )
                    .first()
                )
                if duplicate is not None:
                    return duplicate.message_id

            row = AlertQueueMessage(
                message_id=self.store.generate_id(),
                message_type=message["type"],
                body=json.dumps(message, sort_keys=True),
                group_key=group_key,
                dedup_key=dedup_key,
                status="PENDING",
                receive_count=0,
                visible_at=now,
                created_at=now,
                updated_at=now,
            )
            self.session.add(row)
            self.session.commit()
        except (SQLAlchemyError, StoreError, TypeError) as exc:
            raise self._fail("send", exc) from exc
        return row.message_id

    def receive(self, max_messages: int = 10) -> list[AlertQueueMessage]:
        now = self.store.now()
        try:
            # A group is blocked while any undone message in it is invisible:
            # in flight, or released with a delay.
            busy_groups = {
                group
                for (group,) in self.session.query(AlertQueueMessage.group_key).filter(
                    or_(
                        AlertQueueMessage.status == "PENDING",
                        AlertQueueMessage.status == "IN_FLIGHT",
                    ),
                    AlertQueueMessage.visible_at > now,
                    AlertQueueMessage.group_key.isnot(None),
                )
            }

            candidates = (
                self.session.query(AlertQueueMessage)
                .filter(
                    or_(
                        AlertQueueMessage.status == "PENDING",
                        AlertQueueMessage.status == "IN_FLIGHT",
                    ),
                    AlertQueueMessage.visible_at <= now,
                )
                .order_by(AlertQueueMessage.created_at.asc(), AlertQueueMessage.message_id.asc())
                .all()
            )

            batch: list[AlertQueueMessage] = []
            for row in candidates:
                if row.group_key is not None and row.group_key in busy_groups:
                    continue
                if row.receive_count >= self.max_receives:
                    row.status = "DEAD"
                    row.updated_at = now
                    current_app.logger.warning(
                        "Alert queue message %s exceeded %s receives; parked as DEAD",
                        row.message_id,
                        self.max_receives,
                    )
                    continue
                if len(batch) >= max_messages:
                    break

                row.status = "IN_FLIGHT"
                row.receive_count += 1
                row.visible_at = now + timedelta(seconds=self.visibility_timeout)
                row.updated_at = now
                batch.append(row)
                if row.group_key is not None:
                    busy_groups.add(row.group_key)

            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("receive", exc) from exc
        return batch

    def _get(self, message_id: str) -> AlertQueueMessage:
        row = self.session.get(AlertQueueMessage, message_id)
        if row is None:
            raise QueueError(f"message {message_id} not found")
        return row

    def ack(self, message_id: str) -> None:
        try:
            row = self._get(message_id)
            row.status = "DONE"
            row.updated_at = self.store.now()
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("ack", exc) from exc

    def release(self, message_id: str, error: str | None = None, *, delay_seconds: int = 0) -> None:
        now = self.store.now()
        try:
            row = self._get(message_id)
            row.last_error = error
            row.updated_at = now
            if row.receive_count >= self.max_receives:
                row.status = "DEAD"
            else:
                row.status = "PENDING"
                row.visible_at = now + timedelta(seconds=delay_seconds)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("release", exc) from exc

    def stats(self) -> dict:
        counts = {"PENDING": 0, "IN_FLIGHT": 0, "DONE": 0, "DEAD": 0}
        try:
            rows = (
                self.session.query(AlertQueueMessage.status, func.count(AlertQueueMessage.message_id))
                .group_by(AlertQueueMessage.status)
                .all()
            )
        except SQLAlchemyError as exc:
            raise self._fail("stats", exc) from exc
        for status, count in rows:
            counts[status] = int(count)
        return counts


def get_queue() -> AlertQueue:
    config = current_app.config
    return AlertQueue(
        get_store(),
        visibility_timeout=config.get("QUEUE_VISIBILITY_TIMEOUT_SECONDS", 60),
        max_receives=config.get("QUEUE_MAX_RECEIVES", 5),
        dedup_window=config.get("QUEUE_DEDUP_WINDOW_SECONDS", 300),
    )
