from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


ALERT_TYPES = ("LOW", "HIGH")
ALERT_STATUSES = ("NEW", "PROCESSING", "SENT", "ACKNOWLEDGED")


class Alert(db.Model):
    """
    A stock alert for one product.

    ACTIVE ALERT: status == "NEW". At most one active alert per product_id.

    active_key holds the product_id while the alert is NEW and was created
    through the deduplicating path; it is cleared on any transition out of NEW.
    The unique constraint on it (NULLs allowed) turns a concurrent duplicate
    insert into an IntegrityError instead of a second active alert.

    Alerts are never deleted or reopened. A new stock drop after
    acknowledgment produces a new Alert row.
    """
    __tablename__ = "alerts"
    __table_args__ = (
        db.UniqueConstraint("active_key", name="uq_alerts_active_key"),
        db.Index("ix_alerts_product_created", "product_id", "created_at"),
        db.Index("ix_alerts_status_created", "status", "created_at"),
    )

    alert_id = db.Column(db.String(32), primary_key=True)
    product_id = db.Column(db.String(32), nullable=False)
    location_id = db.Column(db.String(64), nullable=False, default="main")

    alert_type = db.Column(db.String(16), nullable=False, default="LOW")

    # Snapshots taken at creation time
    threshold = db.Column(db.Integer, nullable=False)
    current_stock = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="NEW")
    active_key = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    acknowledged_by = db.Column(db.String(64), nullable=True)

    # "metadata" is reserved on declarative classes
    alert_metadata = db.Column("metadata", db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == "NEW"

    def __repr__(self) -> str:
        return f"<Alert alert_id={self.alert_id!r} product_id={self.product_id!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "alert_id": self.alert_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "alert_type": self.alert_type,
            "threshold": self.threshold,
            "current_stock": self.current_stock,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "acknowledged_at": to_utc_z(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "metadata": self.alert_metadata,
        }


QUEUE_STATUSES = ("PENDING", "IN_FLIGHT", "DONE", "DEAD")


class AlertQueueMessage(db.Model):
    """
    Durable alert-request queue backed by the ledger database.

    Delivery is at-least-once: a received message stays IN_FLIGHT until it is
    acked (DONE) or its visibility timeout lapses, after which it is delivered
    again. group_key gives FIFO-per-product ordering: a group never has more
    than one message in flight.
    """
    __tablename__ = "alert_queue_messages"
    __table_args__ = (
        db.Index("ix_alert_queue_status_visible", "status", "visible_at"),
        db.Index("ix_alert_queue_group", "group_key", "status"),
        db.Index("ix_alert_queue_dedup", "dedup_key", "created_at"),
    )

    message_id = db.Column(db.String(32), primary_key=True)
    message_type = db.Column(db.String(32), nullable=False)
    body = db.Column(db.Text, nullable=False)

    group_key = db.Column(db.String(64), nullable=True)
    dedup_key = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    receive_count = db.Column(db.Integer, nullable=False, default=0)
    visible_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def payload(self) -> dict:
        return json.loads(self.body)

    def __repr__(self) -> str:
        return f"<AlertQueueMessage message_id={self.message_id!r} type={self.message_type} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "message_type": self.message_type,
            "body": self.payload(),
            "group_key": self.group_key,
            "dedup_key": self.dedup_key,
            "status": self.status,
            "receive_count": self.receive_count,
            "visible_at": to_utc_z(self.visible_at),
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
        }
