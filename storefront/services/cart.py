"""Cart lines resolved against the live catalog.

A cart row either points at a simple product or at one variant of a product.
``resolve_line`` turns a ``CartItem`` into one of two explicit line types so
pricing, stock checks and order snapshots never have to branch on whether a
SKU happens to be set.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy.orm import Session, selectinload

from storefront.models.cart import CartItem
from storefront.models.product import Product, ProductVariant
from storefront.services.errors import InsufficientStock, NotFoundError, ValidationError
from storefront.services.pricing import to_decimal


def _first_price(*candidates) -> Decimal:
    for value in candidates:
        if value is not None:
            return to_decimal(value)
    return Decimal("0")


@dataclass(frozen=True)
class SimpleLine:
    cart_item_id: Optional[int]
    product: Product
    quantity: int
    user_input: Optional[str] = None

    sku = None

    @property
    def unit_price(self) -> Decimal:
        return _first_price(self.product.sale_price, self.product.price)

    @property
    def available_stock(self) -> int:
        return self.product.stock_quantity or 0

    @property
    def is_service(self) -> bool:
        return bool(self.product.is_service)

    @property
    def image(self) -> Optional[str]:
        return self.product.image_url

    @property
    def size(self) -> Optional[str]:
        return None

    @property
    def color(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class VariantLine:
    cart_item_id: Optional[int]
    product: Product
    variant: ProductVariant
    quantity: int
    user_input: Optional[str] = None

    @property
    def sku(self) -> str:
        return self.variant.sku

    @property
    def unit_price(self) -> Decimal:
        return _first_price(self.variant.sale_price, self.variant.price)

    @property
    def available_stock(self) -> int:
        return self.variant.stock_quantity or 0

    @property
    def is_service(self) -> bool:
        return bool(self.product.is_service)

    @property
    def image(self) -> Optional[str]:
        return self.variant.image_url or self.product.image_url

    @property
    def size(self) -> Optional[str]:
        return self.variant.size

    @property
    def color(self) -> Optional[str]:
        return self.variant.color


LineItem = Union[SimpleLine, VariantLine]


def resolve_line(
    product: Optional[Product],
    sku: Optional[str],
    quantity: int,
    *,
    cart_item_id: Optional[int] = None,
    user_input: Optional[str] = None,
) -> LineItem:
    """Build a typed line for ``product`` (and ``sku`` if given).

    Raises ``NotFoundError`` if the product or the variant is gone and
    ``ValidationError`` if a variant product is referenced without a SKU.
    """
    if product is None:
        raise NotFoundError("Product no longer exists.", cart_item_id=cart_item_id)

    if sku:
        variant = product.variant_by_sku(sku)
        if variant is None:
            raise NotFoundError(
                f"Variant {sku} of '{product.name}' no longer exists.",
                product_id=product.id,
                sku=sku,
            )
        return VariantLine(cart_item_id, product, variant, quantity, user_input)

    if product.tracks_variants:
        raise ValidationError(f"Select a variant of '{product.name}'.", product_id=product.id)
    return SimpleLine(cart_item_id, product, quantity, user_input)


def line_from_cart_item(item: CartItem) -> LineItem:
    return resolve_line(
        item.product,
        item.sku_variant,
        item.quantity,
        cart_item_id=item.id,
        user_input=item.user_input,
    )


def load_cart_items(db: Session, user_id: int) -> List[CartItem]:
    # populate_existing refreshes rows already in the identity map so prices
    # and stock come from this transaction, not from an earlier read
    return (
        db.query(CartItem)
        .options(selectinload(CartItem.product).selectinload(Product.variants))
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.id)
        .populate_existing()
        .all()
    )


def load_cart_lines(db: Session, user_id: int) -> List[LineItem]:
    return [line_from_cart_item(item) for item in load_cart_items(db, user_id)]


def check_line(line: LineItem) -> None:
    """Validate a line against product minimums and currently visible stock."""
    minimum = line.product.min_order_quantity or 1
    if line.quantity < 1:
        raise ValidationError("Quantity must be at least 1.", product_id=line.product.id)
    if line.quantity < minimum:
        raise ValidationError(
            f"Minimum order quantity for '{line.product.name}' is {minimum}.",
            product_id=line.product.id,
            minimum=minimum,
        )
    if line.quantity > line.available_stock:
        raise InsufficientStock(
            f"Only {line.available_stock} left of '{line.product.name}'.",
            product_id=line.product.id,
            sku=line.sku,
            available=line.available_stock,
        )
