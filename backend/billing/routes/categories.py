# Overview: Flask API routes for product categories.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import BillingError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services.category_service import CategoryService


categories_bp = Blueprint("categories", __name__, url_prefix="/api/v1/categories")


def _active_only() -> bool:
    return request.args.get("isActive", "").lower() == "true"


@categories_bp.get("")
def category_tree_route():
    """Categories as a nested tree, siblings sorted by name."""
    try:
        return jsonify({"data": CategoryService(db.session).tree(active_only=_active_only())}), 200
    except Exception:
        current_app.logger.exception("Failed to load category tree")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.get("/flat")
def category_list_route():
    try:
        categories = CategoryService(db.session).list_flat(active_only=_active_only())
        return jsonify({"data": [c.to_dict() for c in categories]}), 200
    except Exception:
        current_app.logger.exception("Failed to list categories")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.get("/<int:category_id>")
def get_category_route(category_id: int):
    try:
        category = CategoryService(db.session).get(category_id)
        return jsonify({"data": category.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.post("")
@require_auth
def create_category_route():
    try:
        category = CategoryService(db.session).create(request.get_json(silent=True))
        return jsonify({"message": "Category created successfully", "data": category.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.put("/<int:category_id>")
@require_auth
def update_category_route(category_id: int):
    """Rename, move or (de)activate. Moving under a descendant is rejected."""
    try:
        category = CategoryService(db.session).update(category_id, request.get_json(silent=True))
        return jsonify({"message": "Category updated successfully", "data": category.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_category_route(category_id: int):
    try:
        CategoryService(db.session).delete(category_id)
        return jsonify({"message": "Category deleted successfully"}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete category")
        return jsonify({"error": "Internal server error"}), 500
