# Overview: Reconciliation sweep; backfills alerts missed by the per-request evaluation path.

from __future__ import annotations

from collections import defaultdict

from flask import current_app

from ..models import Alert
from .ledger_store import StoreError, get_store
from .alert_evaluator import (
    DEDUP_CONDITIONAL,
    build_alert,
    dedup_strategy,
    is_below_threshold,
    persist_active_alert,
)
"""
Reconciliation Invariants (authoritative)

- Operator-invoked maintenance, not a hot path: three full scans (products,
  inventory, alerts) per run.
- For each product below threshold with no NEW alert in the loaded alert set,
  create one using the evaluator's construction.
- Fixed point: a second run with no intervening stock change creates nothing.
- Products without an inventory row are skipped, unless
  RECONCILE_MISSING_INVENTORY_AS_ZERO is set, in which case they count as
  stock 0 at the default location.
- A failure on one product is logged and reported; the sweep continues.

Duplicate collapse:
- Under the best-effort dedup strategy (or via create_alert()) a product can
  briefly hold several NEW alerts. collapse_duplicate_alerts() keeps the oldest
  and acknowledges the others, recording collapsed_into in their metadata.
"""

COLLAPSE_USER = "system:dedup-collapse"


def _location_sort_key(default_location: str):
    def _key(row):
        return (row.location_id != default_location, row.location_id)
    return _key


def reconcile_all() -> dict:
    """
    Scan everything and create the alerts missing relative to current stock.

    Returns created_count, created_alerts (product_id, product_name, alert_id,
    location_id, current_stock, threshold) and failed (product_id, error).
    """
    store = get_store()
    config = current_app.config
    default_location = config.get("DEFAULT_LOCATION_ID", "main")
    missing_as_zero = bool(config.get("RECONCILE_MISSING_INVENTORY_AS_ZERO", False))

    products = store.scan("products")
    inventory_rows = store.scan("inventory")
    alerts = store.scan("alerts")

    rows_by_product = defaultdict(list)
    for row in inventory_rows:
        rows_by_product[row.product_id].append(row)

    active_products = {alert.product_id for alert in alerts if alert.status == "NEW"}

    # Snapshot plain values; a rollback after a failed product expires ORM state
    candidates = []
    for product in products:
        rows = sorted(rows_by_product.get(product.product_id, []), key=_location_sort_key(default_location))
        stock_levels = [(row.location_id, row.current_stock) for row in rows]
        if not stock_levels:
            if not missing_as_zero:
                continue
            stock_levels = [(default_location, 0)]
        candidates.append((product.product_id, product.name, product.min_threshold, stock_levels))

    created = []
    failed = []
    for product_id, product_name, threshold, stock_levels in candidates:
        if product_id in active_products:
            continue

        below = [
            (location_id, stock)
            for location_id, stock in stock_levels
            if is_below_threshold(stock, threshold)
        ]
        if not below:
            continue
        location_id, current_stock = below[0]

        try:
            alert = build_alert(
                product_id=product_id,
                location_id=location_id,
                threshold=threshold,
                current_stock=current_stock,
                metadata={"source": "reconciliation", "product_name": product_name},
                store=store,
            )
            result = persist_active_alert(alert, store=store)
        except StoreError as exc:
            store.rollback()
            current_app.logger.exception("Reconciliation failed to create alert for %s", product_name)
            failed.append({"product_id": product_id, "product_name": product_name, "error": str(exc)})
            continue

        active_products.add(product_id)
        if not result.created:
            continue

        created.append({
            "product_id": product_id,
            "product_name": product_name,
            "alert_id": result.alert.alert_id,
            "location_id": location_id,
            "current_stock": current_stock,
            "threshold": threshold,
        })

    current_app.logger.info(
        "Reconciliation scanned %s products: created %s alerts, %s failures",
        len(products),
        len(created),
        len(failed),
    )
    return {
        "message": f"Created {len(created)} alerts",
        "created_count": len(created),
        "created_alerts": created,
        "failed": failed,
    }


def collapse_duplicate_alerts() -> dict:
    """Acknowledge all but the oldest NEW alert of every product."""
    store = get_store()
    active = store.scan(
        "alerts",
        {"status": "NEW"},
        order_by=[Alert.created_at.asc(), Alert.alert_id.asc()],
    )

    by_product = defaultdict(list)
    for alert in active:
        by_product[alert.product_id].append(alert)

    collapsed = []
    now = store.now()
    for product_id, product_alerts in by_product.items():
        keeper, duplicates = product_alerts[0], product_alerts[1:]
        for duplicate in duplicates:
            duplicate.status = "ACKNOWLEDGED"
            duplicate.active_key = None
            duplicate.acknowledged_at = now
            duplicate.acknowledged_by = COLLAPSE_USER
            duplicate.alert_metadata = {**(duplicate.alert_metadata or {}), "collapsed_into": keeper.alert_id}
            store.put("alerts", duplicate)
            collapsed.append({
                "product_id": product_id,
                "alert_id": duplicate.alert_id,
                "kept_alert_id": keeper.alert_id,
            })
        if duplicates and keeper.active_key is None and dedup_strategy() == DEDUP_CONDITIONAL:
            # duplicates were flushed without active_key, so the keeper can take it
            keeper.active_key = product_id
            store.put("alerts", keeper)

    if collapsed:
        store.commit()
        current_app.logger.info("Collapsed %s duplicate active alerts", len(collapsed))

    return {"collapsed_count": len(collapsed), "collapsed": collapsed}
