from decimal import Decimal

from storefront.models.cart import CartItem
from storefront.models.order import Order, OrderItem, OrderStatus, PaymentMethod


def put_in_cart(db, user, product, quantity, sku=None, price_snapshot=None, user_input=None):
    item = CartItem(
        user_id=user.id,
        product_id=product.id,
        sku_variant=sku,
        quantity=quantity,
        price_snapshot=price_snapshot if price_snapshot is not None else product.price,
        user_input=user_input,
    )
    db.add(item)
    db.commit()
    return item


def make_order(db, user, status=OrderStatus.PROCESSING, payment_method=PaymentMethod.COD, items=None, **extra):
    """Insert a committed order directly, bypassing checkout."""
    order = Order(
        user_id=user.id,
        status=status.value,
        items_price=Decimal("1000"),
        shipping_price=Decimal("90"),
        tax_price=Decimal("30"),
        total_price=Decimal("1120"),
        payment_method=payment_method.value,
        **extra,
    )
    order.items = items or [OrderItem(product_id=1, product_name="Clay Mug", quantity=2, unit_price=Decimal("500"))]
    db.add(order)
    db.commit()
    return order


def fresh(session_factory, model, ident):
    """Load a row through a new session so nothing cached leaks in."""
    with session_factory() as s:
        obj = s.get(model, ident)
        if obj is not None:
            s.expunge(obj)
        return obj
