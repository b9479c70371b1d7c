# Overview: Stock Adjuster; applies signed stock deltas, records history, then dispatches alerting.

from __future__ import annotations

from flask import current_app

from ..models import Inventory, InventoryHistory
from ..time_utils import to_utc_z
from ..validation import ValidationError, check_int_range, coerce_int, require_text
from .ledger_store import NotFoundError, get_store
from .concurrency import run_with_retry
from .alert_evaluator import dispatch_alert_evaluation
"""
Stock Invariants (authoritative)

- Inventory.current_stock is the source of truth and never negative.
- An adjustment that would drive stock below zero is rejected with
  NegativeStockError before anything is written: no inventory write, no
  history entry.
- A missing Inventory row is treated as stock 0 and the adjustment inserts it.
- Every accepted mutation appends exactly one InventoryHistory entry whose
  stock_before/stock_after equal the row value immediately before/after it.
  History is append-only.
- A zero change_amount is accepted; it still writes the row and a history
  entry with stock_before == stock_after.

Two-phase flow:
  1. commit the stock mutation (inventory row + history) - operation of record
  2. dispatch alert evaluation (inline or via the alert queue)
  A failure in phase 2 is logged and swallowed; it never fails or rolls back
  phase 1. Missed alerts are backfilled by the reconciliation sweep.
"""

SYSTEM_USER = "system"


class NegativeStockError(ValueError):
    """Adjustment would make on-hand stock negative."""


def _default_location() -> str:
    return current_app.config.get("DEFAULT_LOCATION_ID", "main")


def _apply_stock_change(
    *,
    product_id: str,
    location_id: str,
    change_amount: int,
    reason: str,
    user_id: str | None,
    target_stock: int | None = None,
):
    """
    Read-modify-write of one inventory row plus its history entry, committed.

    When target_stock is given the delta is derived from the current value
    (absolute set); otherwise change_amount is applied.
    """
    store = get_store()

    def _op():
        product = store.get("products", product_id)
        if product is None:
            raise NotFoundError("Product not found")

        row = store.get("inventory", (product_id, location_id), for_update=True)
        previous_stock = row.current_stock if row is not None else 0

        delta = (target_stock - previous_stock) if target_stock is not None else change_amount
        new_stock = previous_stock + delta
        if new_stock < 0:
            raise NegativeStockError("Stock adjustment would result in negative inventory")
        check_int_range(new_stock, "current_stock")

        now = store.now()
        if row is None:
            row = Inventory(
                product_id=product_id,
                location_id=location_id,
                current_stock=new_stock,
                created_at=now,
                updated_at=now,
            )
        else:
            row.current_stock = new_stock
            row.updated_at = now
        store.put("inventory", row)

        entry = InventoryHistory(
            history_id=store.generate_id(),
            product_id=product_id,
            location_id=location_id,
            change_amount=delta,
            stock_before=previous_stock,
            stock_after=new_stock,
            reason=reason,
            user_id=user_id or SYSTEM_USER,
            timestamp=now,
        )
        store.put("inventory_history", entry)
        store.commit()

        return product, previous_stock, new_stock, delta, now

    try:
        return run_with_retry(_op)
    except (NotFoundError, NegativeStockError, ValidationError):
        # releases the row lock; nothing was written
        store.rollback()
        raise


def _dispatch_after_commit(product, location_id: str, current_stock: int) -> dict | None:
    try:
        result = dispatch_alert_evaluation(
            product_id=product.product_id,
            location_id=location_id,
            current_stock=current_stock,
            min_threshold=product.min_threshold,
            product_name=product.name,
        )
    except Exception:
        get_store().rollback()
        current_app.logger.exception(
            "Alert evaluation failed for product %s at %s; stock change kept",
            product.product_id,
            location_id,
        )
        return None
    return result.to_dict()


def adjust_stock(
    *,
    product_id: str,
    change_amount,
    reason,
    location_id: str | None = None,
    user_id: str | None = None,
) -> dict:
    """
    Apply a signed delta to a product's stock at a location.

    Returns previous_stock/current_stock/change_amount, the pair the alert
    evaluator consumes, plus the outcome of the alert dispatch (None when
    alerting failed).
    """
    product_id = require_text(product_id, "product_id")
    change_amount = coerce_int(change_amount, "change_amount")
    reason = require_text(reason, "reason")
    location_id = (location_id or "").strip() or _default_location()

    product, previous_stock, new_stock, delta, updated_at = _apply_stock_change(
        product_id=product_id,
        location_id=location_id,
        change_amount=change_amount,
        reason=reason,
        user_id=user_id,
    )

    alert = _dispatch_after_commit(product, location_id, new_stock)

    return {
        "product_id": product_id,
        "location_id": location_id,
        "previous_stock": previous_stock,
        "current_stock": new_stock,
        "change_amount": delta,
        "updated_at": to_utc_z(updated_at),
        "alert": alert,
    }


def set_stock(
    *,
    product_id: str,
    current_stock,
    reason=None,
    location_id: str | None = None,
    user_id: str | None = None,
) -> dict:
    """
    Set a product's stock to an absolute value.

    Recorded in history as the equivalent delta; alerting follows the same
    two-phase flow as adjust_stock().
    """
    product_id = require_text(product_id, "product_id")
    target = coerce_int(current_stock, "current_stock")
    if target < 0:
        raise ValidationError("current_stock must be >= 0")
    reason = require_text(reason, "reason") if reason is not None else "Stock count"
    location_id = (location_id or "").strip() or _default_location()

    product, previous_stock, new_stock, delta, updated_at = _apply_stock_change(
        product_id=product_id,
        location_id=location_id,
        change_amount=0,
        reason=reason,
        user_id=user_id,
        target_stock=target,
    )

    alert = _dispatch_after_commit(product, location_id, new_stock)

    return {
        "product_id": product_id,
        "location_id": location_id,
        "previous_stock": previous_stock,
        "current_stock": new_stock,
        "change_amount": delta,
        "updated_at": to_utc_z(updated_at),
        "alert": alert,
    }


def get_inventory_item(product_id: str, location_id: str | None = None) -> Inventory:
    location_id = location_id or _default_location()
    return get_store().require("inventory", (product_id, location_id), label="Inventory item")


def list_inventory(*, product_id: str | None = None) -> list[Inventory]:
    filters = {"product_id": product_id} if product_id else None
    return get_store().scan(
        "inventory",
        filters,
        order_by=[Inventory.product_id.asc(), Inventory.location_id.asc()],
    )


def get_inventory_history(
    product_id: str,
    *,
    location_id: str | None = None,
    limit: int = 200,
) -> list[InventoryHistory]:
    """History entries for a product, newest first, optionally for one location."""
    filters = {"product_id": product_id}
    if location_id:
        filters["location_id"] = location_id
    return get_store().scan(
        "inventory_history",
        filters,
        order_by=[InventoryHistory.timestamp.desc(), InventoryHistory.history_id.desc()],
        limit=limit,
    )
