# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/billing/routes/inventory.py
"""
Inventory ledger routes.

Every stock movement has a row in inventory_transactions. Manual
adjustments are the only way to change stock outside of sales.
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import BillingError
from ..decorators import require_auth, current_user_id
from ..models.inventory import VALID_TRANSACTION_TYPES
from ..services.inventory_service import InventoryService
from ..validation import MAX_QUANTITY, PayloadValidator


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/v1/inventory")


@inventory_bp.get("/transactions")
def list_transactions_route():
    """Query params: productId, type (sale|return|adjustment), limit (max 500)."""
    try:
        v = PayloadValidator(request.args.to_dict())
        product_id = v.integer("productId")
        tx_type = v.string("type", choices=VALID_TRANSACTION_TYPES)
        limit = v.integer("limit", minimum=1, default=100)
        v.raise_if_errors("Invalid filters")

        rows = InventoryService(db.session).list_transactions(
            product_id=product_id,
            transaction_type=tx_type or None,
            limit=min(limit, 500),
        )
        return jsonify({"data": [row.to_dict() for row in rows]}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list inventory transactions")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
def low_stock_route():
    """Products at or below their minStockLevel, or at or below ?threshold=N."""
    try:
        v = PayloadValidator(request.args.to_dict())
        threshold = v.integer("threshold", minimum=0)
        v.raise_if_errors("Invalid filters")

        products = InventoryService(db.session).low_stock(threshold)
        return jsonify({"data": [p.to_dict() for p in products]}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list low stock products")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjustments")
@require_auth
def create_adjustment_route():
    """Signed adjustment: {productId, quantity, notes?}. Negative quantities cannot drive stock below zero."""
    try:
        v = PayloadValidator(request.get_json(silent=True))
        product_id = v.integer("productId", required=True)
        quantity = v.integer("quantity", required=True, minimum=-MAX_QUANTITY, maximum=MAX_QUANTITY)
        notes = v.string("notes")
        v.raise_if_errors()

        service = InventoryService(db.session)
        tx = service.adjust(product_id, quantity, actor_id=current_user_id(), notes=notes)
        product = service.catalog.get_product(product_id)
        db.session.refresh(product)
        return jsonify({
            "message": "Stock adjusted successfully",
            "data": tx.to_dict(),
            "product": product.to_dict(),
        }), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/reconcile")
def reconcile_route():
    """Products whose stock counter disagrees with the sum of their ledger rows."""
    try:
        issues = InventoryService(db.session).reconcile()
        return jsonify({
            "consistent": not issues,
            "data": [issue.to_dict() for issue in issues],
        }), 200
    except Exception:
        current_app.logger.exception("Failed to reconcile inventory")
        return jsonify({"error": "Internal server error"}), 500
