# storefront/models/users.py
from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from storefront.database import Base


# Represents a customer or admin account together with its loyalty wallet
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=True)
    role = Column(String, nullable=False, default="customer")
    full_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    # Loyalty points; redeemed at checkout and accrued from reward rules
    wallet_balance = Column(Integer, CheckConstraint("wallet_balance >= 0"), nullable=False, default=0)

    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan", order_by="Address.id")
    cart_items = relationship("CartItem", back_populates="user", cascade="all, delete-orphan", order_by="CartItem.id")

    @property
    def is_admin(self) -> bool:
        return (self.role or "").upper() == "ADMIN"


# A saved delivery address; copied onto the order at checkout
class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    street = Column(String, nullable=False)
    city = Column(String, nullable=False)
    state = Column(String, nullable=False)
    postal_code = Column(String, nullable=False)
    country = Column(String, nullable=False, default="India")
    type = Column(String, nullable=False, default="Home")
    is_default = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="addresses")
