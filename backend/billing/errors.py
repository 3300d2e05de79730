# Overview: Domain error taxonomy shared by services and routes.

"""
Billing error hierarchy.

Every error a service raises on purpose derives from BillingError and
carries the HTTP status the routes answer with, plus a list of
{field, message} entries for per-field reporting. Anything that is not a
BillingError is an unexpected failure and is rendered as an opaque 500.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for expected, client-visible failures."""

    status_code = 400

    def __init__(self, message: str, errors: list[dict] | None = None, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        if errors is None:
            errors = [{"field": field, "message": message}] if field else []
        self.errors = errors

    def to_dict(self) -> dict:
        return {"error": self.message, "errors": self.errors}


# =============================================================================
# 400 - INPUT PROBLEMS
# =============================================================================

class ValidationError(BillingError):
    """400-level input problem."""


class InvalidAmount(ValidationError):
    """Money or quantity arithmetic that would go negative where it must not."""


class EmptyCart(ValidationError):
    def __init__(self, message: str = "At least one item is required"):
        super().__init__(message, field="items")


class InvalidQuantity(ValidationError):
    pass


class InvalidItem(ValidationError):
    """A return references a line that does not belong to the sale."""


class DiscountRejected(ValidationError):
    """The discount evaluator refused the discount; `reason` names the rule."""

    def __init__(self, message: str, reason, *, field: str | None = "discountCode"):
        super().__init__(message, field=field)
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason.value
        return data


# =============================================================================
# 401 / 403 - AUTH
# =============================================================================

class Unauthorized(BillingError):
    status_code = 401


class Forbidden(BillingError):
    status_code = 403


# =============================================================================
# 404
# =============================================================================

class NotFound(BillingError):
    status_code = 404


# =============================================================================
# 409 - STATE CONFLICTS
# =============================================================================

class ConflictError(BillingError):
    """409-level business rule conflict (duplicate key, invalid transition)."""

    status_code = 409


class InsufficientStock(ConflictError):
    def __init__(self, product_id: int, requested: int, available: int | None = None, *, field: str | None = None):
        message = f"Insufficient stock for product {product_id}"
        if available is not None:
            message += f": requested {requested}, available {available}"
        super().__init__(message, field=field)
        self.product_id = product_id
        self.requested = requested
        self.available = available


class DiscountUsageExceeded(ConflictError):
    def __init__(self, discount_id: int):
        super().__init__("Discount usage limit reached", field="discountCode")
        self.discount_id = discount_id


class AlreadyCancelled(ConflictError):
    def __init__(self, sale_id: int):
        super().__init__(f"Sale {sale_id} is already cancelled")
        self.sale_id = sale_id


class OverReturn(ConflictError):
    pass
