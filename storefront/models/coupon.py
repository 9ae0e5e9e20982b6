# storefront/models/coupon.py
from sqlalchemy import Boolean, CheckConstraint, Column, Integer, Numeric, String
from storefront.database import Base


# Percentage discount code; managed by admins, only read during checkout
class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False, index=True)  # Stored upper-case
    is_active = Column(Boolean, nullable=False, default=True)
    discount_percentage = Column(
        Numeric(5, 2),
        CheckConstraint("discount_percentage >= 0 AND discount_percentage <= 100"),
        nullable=False,
    )
