"""Order cancellation and refund.

The refund is requested first. If it fails nothing else happens, so stock is
never returned for an order whose money is still captured. Status, stock,
wallet points and cancellation details are then written in one transaction.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.models.order import Order, OrderStatus
from storefront.models.users import User
from storefront.services.errors import ExternalServiceError, OrderNotCancellable, StorefrontError
from storefront.services.inventory import requests_for_order, restore_stock
from storefront.services.ledger import compare_and_set_status, get_order_for
from storefront.services.pricing import money, to_minor_units
from storefront.services.wallet import claw_back_points, credit_points
from storefront.utils.audit import write_log

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Cancelled by request"


def _refund_values(refund, now) -> dict:
    return {
        "refund_id": refund.refund_id,
        "refund_amount": money(Decimal(refund.amount) / 100),
        "refund_status": refund.status,
        "refunded_at": now,
    }


def _keep_refund_record(db: Session, order_id: int, values: dict) -> None:
    # The money went back even though the cancellation did not go through;
    # record it so a retry does not ask the gateway again
    db.execute(
        update(Order)
        .where(Order.id == order_id, Order.refund_id.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()


async def cancel_order(
    db: Session,
    order_id: int,
    requesting_user: User,
    reason: Optional[str] = None,
    gateway=None,
    ip: Optional[str] = None,
) -> Order:
    order = get_order_for(db, order_id, requesting_user)
    observed = OrderStatus(order.status)
    if not order.can_cancel:
        raise OrderNotCancellable(
            f"Order is already {observed.value.lower()} and cannot be cancelled.",
            order_id=order.id,
            status=observed.value,
        )

    now = datetime.now(timezone.utc)
    refund_values = {}
    if order.payment_captured and not order.refund_id:
        if gateway is None:
            raise ExternalServiceError("No payment gateway available for the refund.", order_id=order.id)
        amount = to_minor_units(order.total_price)
        payment_id = order.payment_id
        # Do not hold the read transaction open across the gateway call
        db.rollback()
        refund = await gateway.refund(payment_id, amount)
        refund_values = _refund_values(refund, now)
        logger.info("Refund %s (%s) issued for order %s", refund.refund_id, refund.status, order_id)

    values = dict(
        refund_values,
        cancelled_by="Admin" if requesting_user.is_admin else "User",
        cancellation_reason=reason or DEFAULT_REASON,
        cancelled_at=now,
    )
    try:
        if not compare_and_set_status(db, order, observed, OrderStatus.CANCELLED, **values):
            db.rollback()
            if refund_values:
                _keep_refund_record(db, order_id, refund_values)
            raise OrderNotCancellable("Order changed state while it was being cancelled.", order_id=order_id)

        restore_stock(db, requests_for_order(order))
        credit_points(db, order.user_id, order.points_redeemed or 0)
        claw_back_points(db, order.user_id, order.points_awarded or 0)

        write_log(
            db,
            user_id=requesting_user.id,
            order_id=order.id,
            action="ORDER_CANCELLED",
            resource="orders",
            ip=ip,
            meta={
                "reason": values["cancellation_reason"],
                "previous_status": observed.value,
                "refund_id": refund_values.get("refund_id"),
            },
        )
        db.commit()
    except StorefrontError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Cancellation of order %s failed in the data store", order_id)
        raise ExternalServiceError("Could not cancel the order, please try again.", order_id=order_id) from e

    logger.info("Order %s cancelled by %s (%s)", order_id, values["cancelled_by"], observed.value)
    return order
