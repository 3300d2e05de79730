# Overview: Card/UPI gateway boundary and the local HMAC-signing adapter.

from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

from ..money import money_str, quantize, require_positive


@dataclass(frozen=True)
class OrderRef:
    order_id: str
    amount: Decimal
    currency: str
    key_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "amount": money_str(self.amount),
            # Gateways take the smallest currency unit
            "amountMinor": int(quantize(self.amount) * 100),
            "currency": self.currency,
            "keyId": self.key_id,
        }


@dataclass(frozen=True)
class PaymentRef:
    """What the checkout hands back: the order and the gateway payment id."""

    order_id: str
    payment_id: str


class PaymentGateway(ABC):
    """External payment capability. The sale engine never calls it directly."""

    @abstractmethod
    def create_order(self, amount: Decimal, currency: str) -> OrderRef:
        raise NotImplementedError

    @abstractmethod
    def verify_payment(self, ref: PaymentRef, signature: str) -> bool:
        raise NotImplementedError


class HmacPaymentGateway(PaymentGateway):
    """
    Local adapter: issues order ids itself and checks signatures computed as
    HMAC-SHA256(key_secret, "<order_id>|<payment_id>"), the scheme hosted
    checkouts use for their callbacks.
    """

    def __init__(self, key_id: str, key_secret: str):
        if not key_secret:
            raise ValueError("key_secret is required")
        self.key_id = key_id
        self._secret = key_secret.encode("utf-8")

    def create_order(self, amount: Decimal, currency: str) -> OrderRef:
        amount = require_positive(quantize(amount))
        order_id = f"order_{int(time.time() * 1000)}_{secrets.token_hex(6)}"
        return OrderRef(order_id=order_id, amount=amount, currency=currency.upper(), key_id=self.key_id)

    def sign(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify_payment(self, ref: PaymentRef, signature: str) -> bool:
        if not (ref.order_id and ref.payment_id and signature):
            return False
        return hmac.compare_digest(self.sign(ref.order_id, ref.payment_id), signature)


def gateway_from_config(config) -> PaymentGateway:
    return HmacPaymentGateway(
        key_id=config.get("PAYMENT_GATEWAY_KEY_ID"),
        key_secret=config.get("PAYMENT_GATEWAY_KEY_SECRET"),
    )
