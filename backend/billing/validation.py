from __future__ import annotations

from dataclasses import fields
from datetime import date
from decimal import Decimal
from typing import Any

from .errors import InvalidAmount, ValidationError
from .money import to_money
from .time_utils import parse_iso_date

# Upper bound for any counted quantity (cart lines, returns, stock levels)
MAX_QUANTITY = 1_000_000
# Ids and counters are stored in 32-bit INTEGER columns
MAX_INTEGER = 2**31 - 1


class _Unset:
    """Marker for "field not supplied" in patch payloads (distinct from null)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class Patch:
    """
    Base for typed partial updates.

    Subclasses are dataclasses whose fields default to UNSET. Only supplied
    fields are written; there is no string-assembled UPDATE anywhere.
    """

    def changes(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def apply_to(self, obj) -> None:
        for name, value in self.changes().items():
            setattr(obj, name, value)


class PayloadValidator:
    """
    Reads and coerces fields from a JSON payload, collecting per-field errors.

    Each accessor returns `default` when the key is absent (pass UNSET to
    build patches). Call raise_if_errors() once all fields are read.
    """

    def __init__(self, payload: Any, *, prefix: str = ""):
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        self.payload = payload
        self.prefix = prefix
        self.errors: list[dict] = []

    def _name(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def add(self, key: str, message: str) -> None:
        self.errors.append({"field": self._name(key), "message": message})

    def has(self, key: str) -> bool:
        return key in self.payload

    def _missing(self, key: str, required: bool, default):
        if required:
            self.add(key, f"{key} is required")
        return default

    def integer(self, key: str, *, required: bool = False, minimum: int | None = None,
                maximum: int = MAX_INTEGER, nullable: bool = True, default=None):
        if key not in self.payload:
            return self._missing(key, required, default)
        value = self.payload[key]
        if value is None:
            if required or not nullable:
                self.add(key, f"{key} cannot be null")
            return None

        # Strict: reject bools, floats and scientific notation
        if isinstance(value, bool) or isinstance(value, float):
            self.add(key, f"{key} must be an integer")
            return default
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or not stripped.lstrip("-").isdigit():
                self.add(key, f"{key} must be an integer")
                return default
            try:
                value = int(stripped)
            except ValueError:
                self.add(key, f"{key} must be an integer")
                return default
        if not isinstance(value, int):
            self.add(key, f"{key} must be an integer")
            return default

        if minimum is not None and value < minimum:
            self.add(key, f"{key} must be >= {minimum}")
        elif value > maximum:
            self.add(key, f"{key} must be <= {maximum}")
        return value

    def money(self, key: str, *, required: bool = False, positive: bool = False,
              nullable: bool = True, default=None) -> Decimal | None:
        if key not in self.payload:
            return self._missing(key, required, default)
        value = self.payload[key]
        if value is None:
            if required or not nullable:
                self.add(key, f"{key} cannot be null")
            return None
        try:
            amount = to_money(value, field=self._name(key))
        except InvalidAmount as e:
            self.add(key, e.message.replace(self._name(key), key, 1))
            return default
        if positive and amount <= 0:
            self.add(key, f"{key} must be greater than 0")
        return amount

    def percentage(self, key: str, *, required: bool = False, default=None) -> Decimal | None:
        amount = self.money(key, required=required, nullable=False, default=default)
        if isinstance(amount, Decimal) and amount > 100:
            self.add(key, f"{key} must be between 0 and 100")
        return amount

    def string(self, key: str, *, required: bool = False, max_length: int | None = None,
               choices=None, nullable: bool = True, default=None) -> str | None:
        if key not in self.payload:
            return self._missing(key, required, default)
        value = self.payload[key]
        if value is None:
            if required or not nullable:
                self.add(key, f"{key} cannot be null")
            return None
        if not isinstance(value, str):
            self.add(key, f"{key} must be a string")
            return default
        value = value.strip()
        if required and not value:
            self.add(key, f"{key} cannot be blank")
            return default
        if max_length is not None and len(value) > max_length:
            self.add(key, f"{key} exceeds max length {max_length}")
        if choices is not None and value not in choices:
            self.add(key, f"{key} must be one of: {', '.join(sorted(choices))}")
        return value

    def boolean(self, key: str, *, default=None) -> bool | None:
        if key not in self.payload:
            return default
        value = self.payload[key]
        if not isinstance(value, bool):
            self.add(key, f"{key} must be true or false")
            return default
        return value

    def date(self, key: str, *, default=None) -> date | None:
        if key not in self.payload:
            return default
        value = self.payload[key]
        if value is None:
            return None
        if not isinstance(value, str):
            self.add(key, f"{key} must be a date (YYYY-MM-DD)")
            return default
        try:
            return parse_iso_date(value)
        except ValueError:
            self.add(key, f"{key} must be a date (YYYY-MM-DD)")
            return default

    def list(self, key: str, *, default=None) -> list | None:
        if key not in self.payload:
            return default
        value = self.payload[key]
        if not isinstance(value, list):
            self.add(key, f"{key} must be a list")
            return default
        return value

    def child(self, value: Any, prefix: str) -> "PayloadValidator":
        """Validator for a nested object that reports into this one's error list."""
        if not isinstance(value, dict):
            self.errors.append({"field": f"{self.prefix}{prefix.rstrip('.')}", "message": "must be an object"})
            value = {}
        child = PayloadValidator(value, prefix=f"{self.prefix}{prefix}")
        child.errors = self.errors
        return child

    def raise_if_errors(self, message: str = "Validation failed") -> None:
        if self.errors:
            raise ValidationError(message, list(self.errors))


def pagination_args(args, *, default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """(page, limit) from query args; page is 1-based."""
    v = PayloadValidator(args.to_dict() if hasattr(args, "to_dict") else dict(args))
    page = v.integer("page", minimum=1, default=1)
    limit = v.integer("limit", minimum=1, default=default_limit)
    v.raise_if_errors("Invalid pagination parameters")
    return page, min(limit, max_limit)


def pagination_meta(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": (total + limit - 1) // limit if limit else 0,
    }
