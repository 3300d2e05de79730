# Overview: Read projections over committed sales.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import func, select

from ..errors import NotFound
from ..models import Sale
from ..models.sales import VALID_PAYMENT_STATUSES
from ..validation import PayloadValidator


@dataclass(frozen=True)
class SaleFilters:
    start_date: date | None = None
    end_date: date | None = None
    customer_id: int | None = None
    payment_status: str | None = None
    created_by: int | None = None

    @classmethod
    def from_args(cls, args) -> "SaleFilters":
        v = PayloadValidator(args.to_dict() if hasattr(args, "to_dict") else dict(args))
        filters = cls(
            start_date=v.date("startDate"),
            end_date=v.date("endDate"),
            customer_id=v.integer("customerId"),
            payment_status=v.string("paymentStatus", choices=VALID_PAYMENT_STATUSES) or None,
            created_by=v.integer("createdBy"),
        )
        v.raise_if_errors("Invalid filters")
        return filters


class SalesService:
    def __init__(self, session):
        self.session = session

    def get(self, sale_id: int) -> Sale:
        sale = self.session.get(Sale, sale_id)
        if sale is None:
            raise NotFound(f"Sale {sale_id} not found")
        return sale

    def list(self, filters: SaleFilters, *, page: int = 1, limit: int = 20) -> tuple[list[Sale], int]:
        query = select(Sale)
        if filters.start_date:
            query = query.where(Sale.sale_date >= datetime.combine(filters.start_date, time.min))
        if filters.end_date:
            # endDate is inclusive
            query = query.where(Sale.sale_date < datetime.combine(filters.end_date + timedelta(days=1), time.min))
        if filters.customer_id is not None:
            query = query.where(Sale.customer_id == filters.customer_id)
        if filters.payment_status:
            query = query.where(Sale.payment_status == filters.payment_status)
        if filters.created_by is not None:
            query = query.where(Sale.created_by == filters.created_by)

        total = self.session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        rows = self.session.execute(
            query.order_by(Sale.sale_date.desc(), Sale.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return list(rows), total
