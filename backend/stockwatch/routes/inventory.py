# backend/stockwatch/routes/inventory.py
"""
Inventory routes: stock adjustments, absolute stock sets, reads and history.

Adjustments commit the stock change first and evaluate alerts second; the
response carries the alert outcome (null when alerting failed, which never
fails the request).
"""
from flask import Blueprint, current_app, request

from ..models import Inventory, InventoryHistory
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    enforce_rules_stock_adjustment,
    enforce_rules_stock_set,
)
from ..services.ledger_store import NotFoundError, StoreError
from ..services.inventory_service import NegativeStockError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STOCK_ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "location_id", "change_amount", "reason", "user_id"},
    required_on_create={"product_id", "change_amount", "reason"},
)

STOCK_SET_POLICY = ModelValidationPolicy(
    writable_fields={"current_stock", "reason", "user_id"},
    required_on_create={"current_stock"},
    extra_fields={"reason", "user_id"},
)


@inventory_bp.get("")
def list_inventory_route():
    from ..services.inventory_service import list_inventory

    rows = list_inventory(product_id=request.args.get("product_id"))
    return {"items": [r.to_dict() for r in rows], "count": len(rows)}


@inventory_bp.post("/adjust")
def adjust_stock_route():
    """
    Apply a signed change to a product's stock.

    Body: product_id, change_amount, reason, optional location_id and user_id.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=InventoryHistory,
            payload=payload,
            policy=STOCK_ADJUST_POLICY,
            partial=False,
        )
        enforce_rules_stock_adjustment(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.inventory_service import adjust_stock

    try:
        result = adjust_stock(
            product_id=patch["product_id"],
            location_id=patch.get("location_id"),
            change_amount=patch["change_amount"],
            reason=patch["reason"],
            user_id=patch.get("user_id"),
        )
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except (NegativeStockError, ValidationError) as e:
        return {"error": str(e)}, 400
    except StoreError:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Stock adjustment failed"}, 503

    return {"message": "Stock adjusted successfully", "inventory": result}, 200


@inventory_bp.get("/<product_id>/locations/<location_id>")
def get_inventory_item_route(product_id: str, location_id: str):
    from ..services.inventory_service import get_inventory_item

    try:
        return get_inventory_item(product_id, location_id).to_dict()
    except NotFoundError as e:
        return {"error": str(e)}, 404


@inventory_bp.put("/<product_id>/locations/<location_id>")
def set_stock_route(product_id: str, location_id: str):
    """Set stock to an absolute value (stock count)."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=Inventory,
            payload=payload,
            policy=STOCK_SET_POLICY,
            partial=False,
        )
        enforce_rules_stock_set(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.inventory_service import set_stock

    try:
        result = set_stock(
            product_id=product_id,
            location_id=location_id,
            current_stock=patch["current_stock"],
            reason=patch.get("reason"),
            user_id=patch.get("user_id"),
        )
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except (NegativeStockError, ValidationError) as e:
        return {"error": str(e)}, 400
    except StoreError:
        current_app.logger.exception("Failed to set stock")
        return {"error": "Stock update failed"}, 503

    return {"message": "Stock updated successfully", "inventory": result}, 200


@inventory_bp.get("/<product_id>/history")
def inventory_history_route(product_id: str):
    """History for a product, newest first. Optional location_id and limit."""
    from ..services.inventory_service import get_inventory_history

    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 1000))
    rows = get_inventory_history(
        product_id,
        location_id=request.args.get("location_id"),
        limit=limit,
    )
    return {"items": [r.to_dict() for r in rows], "count": len(rows)}
