# Overview: Flask API routes for sales, sale payments and returns.

# backend/billing/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import BillingError
from ..decorators import require_auth, optional_auth, current_user_id
from ..services.payment_service import PaymentService
from ..services.return_service import ReturnRequest, ReturnService
from ..services.sale_builder import SaleRequest
from ..services.sale_coordinator import SalePatch, TransactionCoordinator
from ..services.sales_service import SaleFilters, SalesService
from ..validation import pagination_args, pagination_meta


sales_bp = Blueprint("sales", __name__, url_prefix="/api/v1/sales")


def _coordinator() -> TransactionCoordinator:
    return TransactionCoordinator(db.session, invoice_prefix=current_app.config["INVOICE_PREFIX"])


@sales_bp.get("")
def list_sales_route():
    """List sales, newest first. Filters: startDate, endDate, customerId, paymentStatus, createdBy."""
    try:
        page, limit = pagination_args(request.args)
        filters = SaleFilters.from_args(request.args)
        sales, total = SalesService(db.session).list(filters, page=page, limit=limit)
        return jsonify({
            "data": [sale.to_dict(include_items=False) for sale in sales],
            "pagination": pagination_meta(page, limit, total),
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = SalesService(db.session).get(sale_id)
        return jsonify({"data": sale.to_dict(include_items=True, include_payments=True)}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("")
@optional_auth
def create_sale_route():
    """
    Create and commit a sale.

    Staff mode: an anonymous caller is allowed; createdBy is then null.
    """
    try:
        sale_request = SaleRequest.from_payload(request.get_json(silent=True))
        sale = _coordinator().create_sale(sale_request, actor_id=current_user_id())
        return jsonify({
            "message": "Sale created successfully",
            "data": sale.to_dict(include_items=True, include_payments=True),
        }), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.put("/<int:sale_id>")
@require_auth
def update_sale_route(sale_id: int):
    """Amend customer, notes, payment method, items or flat discount of an unpaid sale."""
    try:
        patch = SalePatch.from_payload(request.get_json(silent=True))
        sale = _coordinator().amend(sale_id, patch, actor_id=current_user_id())
        return jsonify({
            "message": "Sale updated successfully",
            "data": sale.to_dict(include_items=True, include_payments=True),
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_auth
def cancel_sale_route(sale_id: int):
    """Cancel: restore un-returned stock and reverse payments."""
    try:
        sale = ReturnService(db.session).cancel(sale_id, actor_id=current_user_id())
        return jsonify({
            "message": "Sale cancelled successfully",
            "data": sale.to_dict(include_items=True, include_payments=True),
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/returns")
@require_auth
def create_return_route(sale_id: int):
    """Partial return: {items: [{saleItemId, quantity}], refundMethod, notes?}"""
    try:
        return_request = ReturnRequest.from_payload(request.get_json(silent=True))
        sale_return = ReturnService(db.session).process_return(
            sale_id, return_request, actor_id=current_user_id()
        )
        sale = SalesService(db.session).get(sale_id)
        return jsonify({
            "message": "Return processed successfully",
            "data": sale_return.to_dict(),
            "sale": sale.to_dict(include_items=True, include_payments=True),
        }), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process return")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>/payments")
def list_sale_payments_route(sale_id: int):
    try:
        payments = PaymentService(db.session).list_for_sale(sale_id)
        return jsonify({"data": [payment.to_dict() for payment in payments]}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sale payments")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/payments")
@require_auth
def create_payment_route():
    """Record a payment; rejected if it would exceed what is still owed."""
    try:
        payment = PaymentService(db.session).record_payment(
            request.get_json(silent=True), actor_id=current_user_id()
        )
        sale = SalesService(db.session).get(payment.sale_id)
        return jsonify({
            "message": "Payment recorded successfully",
            "data": payment.to_dict(),
            "sale": sale.to_dict(include_items=False),
        }), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500
