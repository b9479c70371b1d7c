# backend/stockwatch/services/products_service.py
"""
Products Service

Product catalog records consumed by the alert core: name for operator-facing
summaries and min_threshold as the LOW trigger value. Changing min_threshold
does not retro-actively evaluate stock; the next stock mutation or the
reconciliation sweep does.
"""
from __future__ import annotations

from ..models import Product
from ..validation import ConflictError, ValidationError, enforce_rules_product
from .ledger_store import get_store
from .inventory_service import adjust_stock

PRODUCT_MUTABLE_FIELDS = {"name", "description", "category", "sku", "image_url", "min_threshold"}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def list_products(
    *,
    category: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional category filter and pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    store = get_store()
    filters = {"category": category} if category else None
    products = store.scan("products", filters, order_by=[Product.name.asc(), Product.product_id.asc()])

    if page is None:
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = len(products)
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    window = products[(page - 1) * per_page: page * per_page]

    return {
        "items": [p.to_dict() for p in window],
        "count": len(window),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: str) -> Product:
    return get_store().require("products", product_id, label="Product")


def create_product(*, patch: dict, user_id: str | None = None) -> dict:
    """
    Create a product from a validated patch dict.

    An optional initial_stock is applied through adjust_stock() so it gets a
    history entry and alert evaluation like any other stock change.
    """
    patch = dict(patch)
    for field in ("name", "description", "min_threshold"):
        if patch.get(field) is None:
            raise ValidationError(f"{field} is required")
    enforce_rules_product(patch)

    store = get_store()
    product_id = patch.pop("product_id", None) or store.generate_id()
    initial_stock = patch.pop("initial_stock", None)
    location_id = patch.pop("location_id", None)

    if store.get("products", product_id) is not None:
        raise ConflictError(f"Product {product_id} already exists")

    now = store.now()
    product = Product(product_id=product_id, created_at=now, updated_at=now)
    apply_product_patch(product, patch)
    store.put("products", product)
    store.commit()

    result = {"product": product.to_dict(), "inventory": None}
    if initial_stock is not None:
        result["inventory"] = adjust_stock(
            product_id=product_id,
            location_id=location_id,
            change_amount=initial_stock,
            reason="Initial stock",
            user_id=user_id,
        )
    return result


def delete_product(product_id: str) -> None:
    """
    Hard-delete a product that nothing references yet.

    Stock rows, history entries and alerts are never removed, so a product
    with any of them raises ConflictError and stays.
    """
    store = get_store()
    get_product(product_id)

    for table, label in (
        ("inventory", "inventory"),
        ("inventory_history", "stock history"),
        ("alerts", "alerts"),
    ):
        if store.scan(table, {"product_id": product_id}, limit=1):
            raise ConflictError(f"Product {product_id} has {label} and cannot be deleted")

    store.delete("products", product_id)
    store.commit()


def update_product(product_id: str, patch: dict) -> Product:
    patch = dict(patch)
    patch.pop("product_id", None)
    if not any(k in PRODUCT_MUTABLE_FIELDS for k in patch):
        raise ValidationError("No fields to update provided")
    enforce_rules_product(patch)

    store = get_store()
    product = get_product(product_id)
    apply_product_patch(product, patch)
    product.updated_at = store.now()
    store.put("products", product)
    store.commit()
    return product
