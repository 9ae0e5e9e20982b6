# storefront/models/wallet.py
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, func
from sqlalchemy.orm import relationship
from storefront.database import Base


# Single-row loyalty configuration: point value and spend-based reward tiers
class WalletConfig(Base):
    __tablename__ = "wallet_config"

    id = Column(Integer, primary_key=True, index=True)
    rupees_per_point = Column(Numeric(10, 2), CheckConstraint("rupees_per_point > 0"), nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    reward_rules = relationship(
        "RewardRule",
        back_populates="config",
        cascade="all, delete-orphan",
        order_by="RewardRule.min_spend.desc()",
    )


class RewardRule(Base):
    __tablename__ = "reward_rules"

    id = Column(Integer, primary_key=True, index=True)
    config_id = Column(Integer, ForeignKey("wallet_config.id"), nullable=False)
    min_spend = Column(Numeric(12, 2), CheckConstraint("min_spend >= 1"), unique=True, nullable=False)
    points_awarded = Column(Integer, CheckConstraint("points_awarded >= 1"), nullable=False)

    config = relationship("WalletConfig", back_populates="reward_rules")
