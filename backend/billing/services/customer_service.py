# Overview: Service-layer operations for customers.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import exists, func, or_, select
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFound
from ..models import Customer, Sale
from ..validation import UNSET, Patch, PayloadValidator
from .concurrency import unit_of_work


def _check_email(v: PayloadValidator, email) -> None:
    if email and "@" not in email:
        v.add("email", "email must be a valid email address")


@dataclass
class CustomerPatch(Patch):
    first_name: str = UNSET
    last_name: str | None = UNSET
    email: str | None = UNSET
    phone: str | None = UNSET
    address: str | None = UNSET
    is_active: bool = UNSET

    @classmethod
    def from_payload(cls, payload) -> "CustomerPatch":
        v = PayloadValidator(payload)
        patch = cls(
            first_name=v.string("firstName", nullable=False, max_length=128, default=UNSET),
            last_name=v.string("lastName", max_length=128, default=UNSET),
            email=v.string("email", max_length=255, default=UNSET),
            phone=v.string("phone", max_length=32, default=UNSET),
            address=v.string("address", default=UNSET),
            is_active=v.boolean("isActive", default=UNSET),
        )
        if patch.first_name == "":
            v.add("firstName", "firstName cannot be blank")
        _check_email(v, patch.email)
        v.raise_if_errors()
        # Blank optional strings clear the column
        for name in ("last_name", "email", "phone", "address"):
            if getattr(patch, name) == "":
                setattr(patch, name, None)
        return patch


class CustomerService:
    def __init__(self, session):
        self.session = session

    def get(self, customer_id: int) -> Customer:
        customer = self.session.get(Customer, customer_id)
        if customer is None:
            raise NotFound(f"Customer {customer_id} not found")
        return customer

    def exists(self, customer_id: int) -> bool:
        return self.session.get(Customer, customer_id) is not None

    def list(self, *, search: str | None = None, include_inactive: bool = False,
             page: int = 1, limit: int = 50) -> tuple[list[Customer], int]:
        query = select(Customer)
        if not include_inactive:
            query = query.where(Customer.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                Customer.first_name.ilike(pattern),
                Customer.last_name.ilike(pattern),
                Customer.email.ilike(pattern),
                Customer.phone.ilike(pattern),
            ))
        total = self.session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        rows = self.session.execute(
            query.order_by(Customer.id.desc()).offset((page - 1) * limit).limit(limit)
        ).scalars()
        return list(rows), total

    def create(self, payload) -> Customer:
        v = PayloadValidator(payload)
        first_name = v.string("firstName", required=True, max_length=128)
        last_name = v.string("lastName", max_length=128)
        email = v.string("email", max_length=255)
        phone = v.string("phone", max_length=32)
        address = v.string("address")
        _check_email(v, email)
        v.raise_if_errors()

        with unit_of_work(self.session):
            customer = Customer(
                first_name=first_name,
                last_name=last_name or None,
                email=email or None,
                phone=phone or None,
                address=address or None,
            )
            self.session.add(customer)
            try:
                self.session.flush()
            except IntegrityError:
                raise ConflictError("Customer with this email already exists", field="email")
        return customer

    def update(self, customer_id: int, patch: CustomerPatch) -> Customer:
        customer = self.get(customer_id)
        with unit_of_work(self.session):
            patch.apply_to(customer)
            try:
                self.session.flush()
            except IntegrityError:
                raise ConflictError("Customer with this email already exists", field="email")
        return customer

    def delete(self, customer_id: int) -> bool:
        """
        Remove a customer with no sales; one with sales is only deactivated
        so their invoices keep pointing at a real row. True if removed.
        """
        customer = self.get(customer_id)
        has_sales = self.session.execute(
            select(exists().where(Sale.customer_id == customer_id))
        ).scalar()
        with unit_of_work(self.session):
            if has_sales:
                customer.is_active = False
            else:
                self.session.delete(customer)
        return not has_sales
