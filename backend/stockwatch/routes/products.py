# backend/stockwatch/routes/products.py
"""
Product catalog routes.

min_threshold is the LOW-alert trigger. POST accepts an optional
initial_stock (and location_id) applied as a regular stock adjustment.
"""
from flask import Blueprint, current_app, request

from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)
from ..services.ledger_store import NotFoundError, StoreError

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id", "name", "description", "category", "sku", "image_url",
        "min_threshold", "initial_stock", "location_id",
    },
    required_on_create={"name", "description", "min_threshold"},
    extra_fields={"initial_stock", "location_id"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "category", "sku", "image_url", "min_threshold"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products.

    Query params:
    - category: str (optional)
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    from ..services.products_service import list_products as list_products_service

    return list_products_service(
        category=request.args.get("category"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.products_service import create_product

    try:
        result = create_product(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except StoreError:
        current_app.logger.exception("Failed to create product")
        return {"error": "Product creation failed"}, 503

    return result, 201


@products_bp.get("/<product_id>")
def get_product_route(product_id: str):
    from ..services.products_service import get_product

    try:
        return get_product(product_id).to_dict()
    except NotFoundError as e:
        return {"error": str(e)}, 404


@products_bp.delete("/<product_id>")
def delete_product_route(product_id: str):
    """
    Delete a product.

    Refused with 409 once the product has stock, history or alerts.
    """
    from ..services.products_service import delete_product

    try:
        delete_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except StoreError:
        current_app.logger.exception("Failed to delete product")
        return {"error": "Product deletion failed"}, 503

    return {"message": "Product deleted successfully", "product_id": product_id}, 200


@products_bp.patch("/<product_id>")
def update_product_route(product_id: str):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.products_service import update_product

    try:
        product = update_product(product_id, patch)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ValidationError as e:
        return {"error": str(e)}, 400
    except StoreError:
        current_app.logger.exception("Failed to update product")
        return {"error": "Product update failed"}, 503

    return {"message": "Product updated successfully", "product": product.to_dict()}
