# storefront/routes/cart.py
import logging
from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from storefront.database import get_db
from storefront.utils.tokenJWT import get_current_user
from storefront.utils.audit import write_log
from storefront.models.users import User
from storefront.models.product import Product
from storefront.models.cart import CartItem
from storefront.schemas.cart import CartAddItem, CartUpdateItem, CartOut, CartItemOut
from storefront.services.cart import LineItem, check_line, line_from_cart_item, load_cart_items, resolve_line
from storefront.services.errors import NotFoundError, StorefrontError
from storefront.services.pricing import money, price_cart
from storefront.services.settings_store import load_tax_settings, shipping_settings

router = APIRouter(prefix="/cart", tags=["Cart"])
logger = logging.getLogger(__name__)


def _cart_to_out(db: Session, user_id: int) -> CartOut:
    items_out: List[CartItemOut] = []
    lines: List[LineItem] = []

    for item in load_cart_items(db, user_id):
        try:
            line = line_from_cart_item(item)
        except StorefrontError as e:
            # Product or variant removed from the catalog; checkout will reject it
            logger.warning("Cart item %s of user %s is stale: %s", item.id, user_id, e.message)
            continue
        lines.append(line)
        items_out.append(CartItemOut(
            id=item.id,
            product_id=item.product_id,
            name=line.product.name,
            sku_variant=line.sku,
            size=line.size,
            color=line.color,
            image=item.image or line.image,
            quantity=line.quantity,
            unit_price=money(line.unit_price),
            line_total=money(line.unit_price * line.quantity),
            is_service=line.is_service,
        ))

    # Display quote only; checkout prices again inside its own transaction
    quote = price_cart(lines, tax=load_tax_settings(db), shipping=shipping_settings())
    return CartOut(
        items=items_out,
        subtotal=money(quote.subtotal),
        shipping=money(quote.shipping),
        tax=money(quote.tax),
        total=money(quote.grand_total),
    )


def _own_item(db: Session, user_id: int, item_id: int) -> CartItem:
    item = db.query(CartItem).filter(CartItem.id == item_id, CartItem.user_id == user_id).first()
    if not item:
        raise NotFoundError("Cart item not found", cart_item_id=item_id)
    return item


@router.get("", response_model=CartOut)
def get_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _cart_to_out(db, current_user.id)


@router.post("/add", response_model=CartOut, status_code=status.HTTP_200_OK)
def add_to_cart(
    payload: CartAddItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    product = db.query(Product).filter(Product.id == payload.product_id).first()
    if not product:
        raise NotFoundError("Product not found", product_id=payload.product_id)

    sku = payload.sku_variant or None
    item = db.query(CartItem).filter(
        CartItem.user_id == current_user.id,
        CartItem.product_id == product.id,
        CartItem.sku_variant.is_(None) if sku is None else CartItem.sku_variant == sku,
    ).first()

    quantity = payload.quantity + (item.quantity if item else 0)
    line = resolve_line(product, sku, quantity, user_input=payload.user_input)
    # Validate minimum quantity and stock for the combined quantity
    check_line(line)

    if item:
        item.quantity = quantity
        item.price_snapshot = money(line.unit_price)
        if payload.user_input:
            item.user_input = payload.user_input
    else:
        item = CartItem(
            user_id=current_user.id,
            product_id=product.id,
            sku_variant=sku,
            quantity=quantity,
            price_snapshot=money(line.unit_price),
            image=line.image,
            user_input=payload.user_input,
        )
        db.add(item)

    write_log(
        db,
        user_id=current_user.id,
        action="CART_ADD",
        resource="cart",
        status="SUCCESS",
        ip=request.client.host if request.client else None,
        meta={"product_id": product.id, "sku_variant": sku, "qty": payload.quantity},
    )
    db.commit()
    return _cart_to_out(db, current_user.id)


@router.put("/items/{item_id}", response_model=CartOut)
def update_cart_item(
    item_id: int,
    payload: CartUpdateItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    item = _own_item(db, current_user.id, item_id)

    # Validate stock and minimums for the new quantity
    check_line(resolve_line(item.product, item.sku_variant, payload.quantity))
    item.quantity = payload.quantity

    write_log(
        db,
        user_id=current_user.id,
        action="CART_UPDATE",
        resource="cart",
        status="SUCCESS",
        ip=request.client.host if request.client else None,
        meta={"item_id": item_id, "qty": payload.quantity},
    )
    db.commit()
    return _cart_to_out(db, current_user.id)


@router.delete("/items/{item_id}", response_model=CartOut)
def delete_cart_item(
    item_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    item = _own_item(db, current_user.id, item_id)
    db.delete(item)

    write_log(
        db,
        user_id=current_user.id,
        action="CART_DELETE",
        resource="cart",
        status="SUCCESS",
        ip=request.client.host if request.client else None,
        meta={"item_id": item_id},
    )
    db.commit()
    return _cart_to_out(db, current_user.id)
