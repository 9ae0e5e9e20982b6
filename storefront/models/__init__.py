from storefront.models.users import Address, User
from storefront.models.product import Product, ProductVariant
from storefront.models.cart import CartItem
from storefront.models.order import Order, OrderItem
from storefront.models.coupon import Coupon
from storefront.models.wallet import RewardRule, WalletConfig
from storefront.models.tax import TaxConfig
from storefront.models.log import Log

__all__ = [
    "Address",
    "CartItem",
    "Coupon",
    "Log",
    "Order",
    "OrderItem",
    "Product",
    "ProductVariant",
    "RewardRule",
    "TaxConfig",
    "User",
    "WalletConfig",
]
