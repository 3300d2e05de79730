# Overview: Flask API routes for customers.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import BillingError
from ..decorators import optional_auth, require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services.customer_service import CustomerPatch, CustomerService
from ..services.sales_service import SaleFilters, SalesService
from ..validation import pagination_args, pagination_meta


customers_bp = Blueprint("customers", __name__, url_prefix="/api/v1/customers")


@customers_bp.get("")
def list_customers_route():
    try:
        page, limit = pagination_args(request.args, default_limit=50)
        customers, total = CustomerService(db.session).list(
            search=request.args.get("search") or None,
            include_inactive=request.args.get("includeInactive", "").lower() == "true",
            page=page,
            limit=limit,
        )
        return jsonify({
            "data": [c.to_dict() for c in customers],
            "pagination": pagination_meta(page, limit, total),
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    """Customer with their most recent sales."""
    try:
        customer = CustomerService(db.session).get(customer_id)
        sales, _ = SalesService(db.session).list(SaleFilters(customer_id=customer_id), page=1, limit=50)
        return jsonify({
            "data": dict(customer.to_dict(), sales=[s.to_dict(include_items=False) for s in sales]),
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("")
@optional_auth
def create_customer_route():
    """Staff mode: customers can be added at the till without a session."""
    try:
        customer = CustomerService(db.session).create(request.get_json(silent=True))
        return jsonify({"message": "Customer created successfully", "data": customer.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/sales")
def customer_sales_route(customer_id: int):
    try:
        page, limit = pagination_args(request.args)
        CustomerService(db.session).get(customer_id)
        sales, total = SalesService(db.session).list(
            SaleFilters(customer_id=customer_id), page=page, limit=limit
        )
        return jsonify({
            "data": [s.to_dict(include_items=False) for s in sales],
            "pagination": pagination_meta(page, limit, total),
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list customer sales")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    try:
        patch = CustomerPatch.from_payload(request.get_json(silent=True))
        customer = CustomerService(db.session).update(customer_id, patch)
        return jsonify({"message": "Customer updated successfully", "data": customer.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_customer_route(customer_id: int):
    """Deletes, or deactivates when the customer already has sales."""
    try:
        deleted = CustomerService(db.session).delete(customer_id)
        message = "Customer deleted successfully" if deleted else "Customer has sales and was deactivated"
        return jsonify({"message": message, "deleted": deleted}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"error": "Internal server error"}), 500
