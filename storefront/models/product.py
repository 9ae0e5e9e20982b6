# storefront/models/product.py
from sqlalchemy import Boolean, CheckConstraint, Column, Float, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from storefront.database import Base


# Model Product
# A catalog entry. Simple products keep stock on the row itself; products with
# variants keep stock only on their variants and the product-level counter is
# never decremented for them.
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    slug = Column(String, nullable=False, index=True)
    description = Column(String)

    # Selling price and optional promotional price
    price = Column(Numeric(12, 2), CheckConstraint("price >= 0"), nullable=False)
    sale_price = Column(Numeric(12, 2), nullable=True)

    stock_quantity = Column(Integer, CheckConstraint("stock_quantity >= 0"), nullable=False, default=0)
    min_order_quantity = Column(Integer, nullable=False, default=1)

    # Services and digital goods are never handed to the carrier
    is_service = Column(Boolean, nullable=False, default=False)

    # Packaging attributes used to size the shipment (kg / cm)
    weight = Column(Float, nullable=True)
    length = Column(Float, nullable=True)
    breadth = Column(Float, nullable=True)
    height = Column(Float, nullable=True)

    image_url = Column(String, nullable=True)

    variants = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan", order_by="ProductVariant.id"
    )

    @property
    def tracks_variants(self) -> bool:
        return bool(self.variants)

    def variant_by_sku(self, sku):
        return next((v for v in self.variants if v.sku == sku), None)


# A purchasable configuration of a product (size/colour) with its own price and stock
class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    sku = Column(String, unique=True, nullable=False, index=True)
    size = Column(String, nullable=True)
    color = Column(String, nullable=True)

    price = Column(Numeric(12, 2), CheckConstraint("price >= 0"), nullable=False)
    sale_price = Column(Numeric(12, 2), nullable=True)
    stock_quantity = Column(Integer, CheckConstraint("stock_quantity >= 0"), nullable=False, default=0)

    weight = Column(Float, nullable=True)
    length = Column(Float, nullable=True)
    breadth = Column(Float, nullable=True)
    height = Column(Float, nullable=True)

    image_url = Column(String, nullable=True)

    product = relationship("Product", back_populates="variants")
