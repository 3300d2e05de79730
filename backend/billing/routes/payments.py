# Overview: Flask API routes for the card/UPI payment gateway handshake.

# backend/billing/routes/payments.py
"""
Gateway routes.

create-order opens a gateway order for a sale's outstanding balance;
verify checks the signature the hosted checkout returns. Recording the
money against the sale stays with POST /api/v1/sales/payments.
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import BillingError, ConflictError
from ..decorators import require_auth
from ..money import ZERO
from ..services.payment_gateway import PaymentRef, gateway_from_config
from ..services.payment_service import net_paid
from ..services.sales_service import SalesService
from ..validation import PayloadValidator


payments_bp = Blueprint("payments", __name__, url_prefix="/api/v1/payments")


@payments_bp.post("/create-order")
@require_auth
def create_order_route():
    """
    {amount, currency?} or {saleId, currency?}; with saleId the amount
    defaults to what the sale still owes.
    """
    try:
        v = PayloadValidator(request.get_json(silent=True))
        sale_id = v.integer("saleId")
        amount = v.money("amount", positive=True)
        currency = v.string("currency", max_length=3) or current_app.config["DEFAULT_CURRENCY"]
        if sale_id is None and amount is None:
            v.add("amount", "amount or saleId is required")
        v.raise_if_errors()

        if sale_id is not None:
            sale = SalesService(db.session).get(sale_id)
            if sale.is_cancelled:
                raise ConflictError(f"Sale {sale_id} is cancelled")
            outstanding = sale.amount_due - net_paid(db.session, sale_id)
            if outstanding <= ZERO:
                raise ConflictError(f"Sale {sale_id} has no outstanding balance")
            if amount is None:
                amount = outstanding
            elif amount > outstanding:
                raise ConflictError("Amount exceeds remaining balance", field="amount")

        order = gateway_from_config(current_app.config).create_order(amount, currency)
        current_app.logger.info("Gateway order %s opened for %s %s", order.order_id, order.amount, order.currency)
        return jsonify({"data": dict(order.to_dict(), saleId=sale_id)}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create gateway order")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/verify")
def verify_payment_route():
    """{orderId, paymentId, signature} -> {verified}. 400 on a bad signature."""
    try:
        v = PayloadValidator(request.get_json(silent=True))
        order_id = v.string("orderId", required=True)
        payment_id = v.string("paymentId", required=True)
        signature = v.string("signature", required=True)
        v.raise_if_errors()

        ref = PaymentRef(order_id=order_id, payment_id=payment_id)
        if not gateway_from_config(current_app.config).verify_payment(ref, signature):
            current_app.logger.warning("Gateway signature mismatch for order %s", order_id)
            return jsonify({"error": "Payment verification failed", "verified": False}), 400

        return jsonify({"verified": True, "orderId": order_id, "paymentId": payment_id}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return jsonify({"error": "Internal server error"}), 500
