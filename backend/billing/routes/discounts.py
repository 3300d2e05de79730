# Overview: Flask API routes for discounts and the stateless discount preview.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import BillingError
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..money import money_str
from ..services.discount_service import DiscountPatch, DiscountService
from ..validation import PayloadValidator


discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/v1/discounts")


@discounts_bp.get("")
def list_discounts_route():
    try:
        active_only = request.args.get("isActive", "").lower() == "true"
        discounts = DiscountService(db.session).list(
            active_only=active_only,
            search=request.args.get("search") or None,
        )
        return jsonify({"data": [d.to_dict() for d in discounts]}), 200
    except Exception:
        current_app.logger.exception("Failed to list discounts")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.get("/<int:discount_id>")
def get_discount_route(discount_id: int):
    try:
        discount = DiscountService(db.session).get(discount_id)
        return jsonify({"data": discount.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load discount")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.post("/apply")
def apply_discount_route():
    """
    Preview a discount: {code | discountId, amount} -> {discountAmount}.

    Read-only: usedCount is never touched here.
    """
    try:
        v = PayloadValidator(request.get_json(silent=True))
        code = v.string("code", max_length=64)
        discount_id = v.integer("discountId")
        amount = v.money("amount", required=True)
        if not code and discount_id is None:
            v.add("code", "Either code or discountId is required")
        v.raise_if_errors()

        discount, discount_amount = DiscountService(db.session).preview(
            amount=amount, code=code, discount_id=discount_id
        )
        return jsonify({
            "data": {
                "discount": discount.to_dict(),
                "discountAmount": money_str(discount_amount),
                "finalAmount": money_str(amount - discount_amount),
            }
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply discount")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_discount_route():
    try:
        patch = DiscountPatch.from_payload(request.get_json(silent=True), creating=True)
        discount = DiscountService(db.session).create(patch)
        return jsonify({"message": "Discount created successfully", "data": discount.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create discount")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.put("/<int:discount_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_discount_route(discount_id: int):
    try:
        patch = DiscountPatch.from_payload(request.get_json(silent=True))
        discount = DiscountService(db.session).update(discount_id, patch)
        return jsonify({"message": "Discount updated successfully", "data": discount.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update discount")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.delete("/<int:discount_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_discount_route(discount_id: int):
    """Deletes, or deactivates when sales already reference the discount."""
    try:
        deleted = DiscountService(db.session).delete(discount_id)
        message = "Discount deleted successfully" if deleted else "Discount is in use and was deactivated"
        return jsonify({"message": message, "deleted": deleted}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete discount")
        return jsonify({"error": "Internal server error"}), 500
