from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy.orm import Session

from hall_booking.core.logging_config import get_logger
from hall_booking.models.coupon import Coupon
from hall_booking.models.enums import DiscountType
from hall_booking.utils.pricing import money, ZERO

logger = get_logger("booking")


@dataclass
class CouponPreview:
    valid: bool
    discount: Decimal = ZERO
    reason: str | None = None


class CouponResolver(Protocol):
    def resolve(self, db: Session, code: str, amount: Decimal, branch_id: int, at: datetime) -> CouponPreview:
        ...


class DatabaseCouponResolver:
    """Looks coupons up in the coupons table."""

    def resolve(self, db: Session, code: str, amount: Decimal, branch_id: int, at: datetime) -> CouponPreview:
        coupon = db.query(Coupon).filter(Coupon.code == code.strip().upper()).first()
        if not coupon:
            return CouponPreview(False, reason="NOT_FOUND")
        if not coupon.is_active:
            return CouponPreview(False, reason="INACTIVE")
        if (coupon.starts_at and coupon.starts_at > at) or (coupon.ends_at and coupon.ends_at < at):
            return CouponPreview(False, reason="OUT_OF_SCHEDULE")
        if coupon.branch_id is not None and coupon.branch_id != branch_id:
            return CouponPreview(False, reason="WRONG_BRANCH")
        if amount < money(coupon.min_amount):
            return CouponPreview(False, reason="BELOW_MINIMUM")

        if coupon.discount_type == DiscountType.PERCENTAGE:
            discount = money(amount * money(coupon.discount_value) / 100)
        else:
            discount = money(coupon.discount_value)

        return CouponPreview(True, discount=min(discount, amount))


_resolver: CouponResolver = DatabaseCouponResolver()


def get_coupon_resolver() -> CouponResolver:
    return _resolver


def set_coupon_resolver(resolver: CouponResolver):
    global _resolver
    _resolver = resolver
