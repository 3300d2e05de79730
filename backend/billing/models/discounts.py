from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_iso_date, to_utc_z


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
VALID_DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)


class Discount(db.Model):
    """
    Order-level discount.

    used_count is incremented only when a sale using the discount commits,
    by a conditional UPDATE that also enforces usage_limit. Previews never
    touch it.
    """
    __tablename__ = "discounts"
    __table_args__ = (
        db.CheckConstraint("value > 0", name="ck_discounts_value_positive"),
        db.CheckConstraint("used_count >= 0", name="ck_discounts_used_count_non_negative"),
        db.CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="ck_discounts_usage_within_limit",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=True, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)
    value = db.Column(db.Numeric(12, 2), nullable=False)
    min_purchase_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    max_discount_amount = db.Column(db.Numeric(12, 2), nullable=True)

    # Inclusive calendar-date window
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "type": self.discount_type,
            "value": money_str(self.value),
            "minPurchaseAmount": money_str(self.min_purchase_amount),
            "maxDiscountAmount": money_str(self.max_discount_amount),
            "startDate": to_iso_date(self.start_date),
            "endDate": to_iso_date(self.end_date),
            "usageLimit": self.usage_limit,
            "usedCount": self.used_count,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }
