# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/billing/routes/products.py
"""
Product catalog routes.

Reads are public. Writes require an admin or manager. Stock is never
edited here; use POST /api/v1/inventory/adjustments.
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import BillingError
from ..decorators import require_auth, require_role, current_user_id
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services.catalog_service import CatalogService, ProductPatch
from ..services.inventory_service import InventoryService
from ..validation import PayloadValidator, pagination_args, pagination_meta


products_bp = Blueprint("products", __name__, url_prefix="/api/v1/products")


@products_bp.get("")
def list_products_route():
    """
    Query params:
    - search: matches name, SKU or barcode
    - categoryId: int
    - isActive: "true" to hide inactive products
    - lowStock: "true" for stock at or below minStockLevel
    - page, limit
    """
    try:
        page, limit = pagination_args(request.args, default_limit=50)
        v = PayloadValidator(request.args.to_dict())
        category_id = v.integer("categoryId")
        v.raise_if_errors("Invalid filters")

        products, total = CatalogService(db.session).list_products(
            search=request.args.get("search") or None,
            category_id=category_id,
            active_only=request.args.get("isActive", "").lower() == "true",
            low_stock=request.args.get("lowStock", "").lower() == "true",
            page=page,
            limit=limit,
        )
        return jsonify({
            "data": [p.to_dict() for p in products],
            "pagination": pagination_meta(page, limit, total),
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/low-stock")
def low_stock_products_route():
    """Active products at or below their own minStockLevel."""
    try:
        products = InventoryService(db.session).low_stock()
        return jsonify({"data": [p.to_dict() for p in products]}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list low stock products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = CatalogService(db.session).get_product(product_id)
        return jsonify({"data": product.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_product_route():
    try:
        product = CatalogService(db.session).create_product(
            request.get_json(silent=True), actor_id=current_user_id()
        )
        return jsonify({"message": "Product created successfully", "data": product.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_product_route(product_id: int):
    try:
        patch = ProductPatch.from_payload(request.get_json(silent=True))
        product = CatalogService(db.session).update_product(product_id, patch)
        return jsonify({"message": "Product updated successfully", "data": product.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_product_route(product_id: int):
    """Deletes, or deactivates when sales or stock history reference the product."""
    try:
        deleted = CatalogService(db.session).delete_product(product_id)
        message = "Product deleted successfully" if deleted else "Product has history and was deactivated"
        return jsonify({"message": message, "deleted": deleted}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
