"""Order ledger operations: lookups, authorization and status changes.

Status is always changed with ``UPDATE ... WHERE status = :expected`` so two
requests acting on the same order cannot both win.
"""

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.attributes import set_committed_value

from storefront.models.order import Order, OrderEvent, OrderStatus, next_status
from storefront.models.users import User
from storefront.services.errors import Forbidden, InvalidTransition, NotFoundError
from storefront.utils.audit import write_log

logger = logging.getLogger(__name__)


def get_order(db: Session, order_id: int) -> Order:
    order = (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.id == order_id)
        .populate_existing()
        .first()
    )
    if order is None:
        raise NotFoundError(f"Order {order_id} not found.", order_id=order_id)
    return order


def get_order_for(db: Session, order_id: int, user: User) -> Order:
    order = get_order(db, order_id)
    if order.user_id != user.id and not user.is_admin:
        raise Forbidden("You are not allowed to access this order.", order_id=order_id, user_id=user.id)
    return order


def compare_and_set_status(db: Session, order: Order, expected, new, **values) -> bool:
    """Move ``order`` from ``expected`` to ``new`` if nobody changed it first.

    Extra column ``values`` are written in the same statement. On success the
    loaded instance is updated in place; nothing is committed.
    """
    expected, new = OrderStatus(expected), OrderStatus(new)
    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == expected.value)
        .values(status=new.value, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    set_committed_value(order, "status", new.value)
    for key, value in values.items():
        set_committed_value(order, key, value)
    return True


def transition(db: Session, order: Order, event, **values) -> OrderStatus:
    current = OrderStatus(order.status)
    target = next_status(current, event)
    if not compare_and_set_status(db, order, current, target, **values):
        raise InvalidTransition(
            f"Order {order.id} changed state while processing {OrderEvent(event).value}.",
            order_id=order.id,
            event=OrderEvent(event).value,
        )
    logger.info("Order %s: %s -> %s", order.id, current.value, target.value)
    return target


def apply_event(db: Session, order_id: int, event, actor: Optional[User] = None) -> Order:
    """Apply an externally reported event (payment or delivery confirmation) and commit."""
    order = get_order(db, order_id)
    previous = order.status
    try:
        target = transition(db, order, event)
        write_log(
            db,
            user_id=actor.id if actor else None,
            order_id=order.id,
            action="ORDER_STATUS_CHANGE",
            resource="orders",
            meta={"from": previous, "to": target.value, "event": OrderEvent(event).value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return order


def confirm_delivery(db: Session, order_id: int, actor: Optional[User] = None) -> Order:
    return apply_event(db, order_id, OrderEvent.DELIVERY_CONFIRMED, actor)
