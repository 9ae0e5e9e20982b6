# storefront/models/tax.py
from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, func
from storefront.database import Base


# Single-row tax configuration; rate is a fraction (0.03 == 3%)
class TaxConfig(Base):
    __tablename__ = "tax_config"

    id = Column(Integer, primary_key=True, index=True)
    rate = Column(Numeric(6, 4), CheckConstraint("rate >= 0 AND rate <= 1"), nullable=False, default=0.03)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
