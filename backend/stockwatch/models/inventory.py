from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    min_threshold is the trigger value compared against stock: an Inventory row
    with current_stock strictly below it is in the LOW alert condition.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("min_threshold >= 1", name="ck_products_min_threshold_positive"),
        db.Index("ix_products_category", "category"),
        db.Index("ix_products_sku", "sku"),
    )

    product_id = db.Column(db.String(32), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(128), nullable=True)
    sku = db.Column(db.String(64), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    min_threshold = db.Column(db.Integer, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product product_id={self.product_id!r} name={self.name!r} min_threshold={self.min_threshold}>"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "sku": self.sku,
            "image_url": self.image_url,
            "min_threshold": self.min_threshold,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Inventory(db.Model):
    """
    Current stock of one product at one location.

    This row is the source of truth for stock; InventoryHistory is audit only.
    current_stock is never negative (enforced in the service and by a CHECK).
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_inventory_stock_non_negative"),
    )

    product_id = db.Column(db.String(32), db.ForeignKey("products.product_id"), primary_key=True)
    location_id = db.Column(db.String(64), primary_key=True, default="main")

    current_stock = db.Column(db.Integer, nullable=False, default=0)

    # Optimistic locking: concurrent adjusters on the same row raise StaleDataError
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("inventory_rows", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Inventory product_id={self.product_id!r} location_id={self.location_id!r} current_stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "current_stock": self.current_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryHistory(db.Model):
    """
    Append-only record of a stock mutation.

    stock_before/stock_after equal Inventory.current_stock immediately
    before/after the mutation that produced the entry. Rows are never updated
    or deleted.
    """
    __tablename__ = "inventory_history"
    __table_args__ = (
        db.Index("ix_inventory_history_product_ts", "product_id", "timestamp"),
        db.Index("ix_inventory_history_location_ts", "location_id", "timestamp"),
    )

    history_id = db.Column(db.String(32), primary_key=True)
    product_id = db.Column(db.String(32), db.ForeignKey("products.product_id"), nullable=False)
    location_id = db.Column(db.String(64), nullable=False, default="main")

    change_amount = db.Column(db.Integer, nullable=False)
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    user_id = db.Column(db.String(64), nullable=True)

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return (
            f"<InventoryHistory history_id={self.history_id!r} product_id={self.product_id!r} "
            f"{self.stock_before}->{self.stock_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "history_id": self.history_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "change_amount": self.change_amount,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "reason": self.reason,
            "user_id": self.user_id,
            "timestamp": to_utc_z(self.timestamp),
        }
