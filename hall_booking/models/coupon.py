from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, ForeignKey
from hall_booking.db.session import Base
from hall_booking.models.enums import DiscountType, db_enum


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)

    discount_type = Column(db_enum(DiscountType, "discounttype"), nullable=False, default=DiscountType.PERCENTAGE)
    discount_value = Column(Numeric(10, 2), nullable=False)
    min_amount = Column(Numeric(10, 2), nullable=False, default=0)

    # NULL = valid in every branch
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True)

    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
