# storefront/models/cart.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import relationship
from storefront.database import Base


# A single line (product or product variant + quantity) in a user's cart
class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    sku_variant = Column(String, nullable=True)  # Set only for variant products
    quantity = Column(Integer, nullable=False, default=1)

    # Unit price at the moment of addition; display only, checkout re-prices
    price_snapshot = Column(Numeric(12, 2), nullable=False)
    image = Column(String, nullable=True)
    user_input = Column(String, nullable=True)  # Free-text personalisation

    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="cart_items")
    product = relationship("Product")

    __table_args__ = (
        # One line per product/variant in the same cart
        UniqueConstraint("user_id", "product_id", "sku_variant", name="uq_cartitem_user_product_sku"),
    )
