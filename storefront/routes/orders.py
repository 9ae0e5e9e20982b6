# storefront/routes/orders.py
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session, selectinload

from storefront.config import settings
from storefront.database import get_db, get_session_factory
from storefront.models.order import Order, OrderEvent, OrderStatus
from storefront.models.users import User
from storefront.schemas.order import (
    CancelOrderPayload,
    OrderCreatePayload,
    OrderResponse,
    OrdersPage,
    OrderStatusPatch,
    PaymentIntentPayload,
    PaymentIntentResponse,
    ShipOrderResponse,
    order_to_out,
)
from storefront.services.cancellation import cancel_order
from storefront.services.checkout import PaymentProof, create_payment_intent, place_order, run_post_commit
from storefront.services.errors import ValidationError
from storefront.services.fulfillment import ship_order
from storefront.services.ledger import apply_event, get_order, get_order_for
from storefront.utils.carrier_client import get_carrier
from storefront.utils.notifications import get_notifier
from storefront.utils.payment_client import get_gateway
from storefront.utils.tokenJWT import get_current_user, require_admin

router = APIRouter(prefix="/orders", tags=["Orders"])
logger = logging.getLogger(__name__)

# Admin status changes that map onto an external event. Checkout never leaves
# an order Pending, so payment confirmation is not offered; shipping goes
# through /ship and cancellation through /cancel.
STATUS_EVENTS = {
    OrderStatus.DELIVERED.value: OrderEvent.DELIVERY_CONFIRMED,
}


def _client_ip(request: Request):
    return request.client.host if request.client else None


@router.post("/payment-intent", response_model=PaymentIntentResponse)
async def start_payment(
    payload: PaymentIntentPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway=Depends(get_gateway),
):
    intent = await create_payment_intent(
        db,
        current_user,
        gateway,
        coupon_code=payload.coupon_code,
        points_to_redeem=payload.points_to_redeem,
    )
    return PaymentIntentResponse(
        gateway_order_id=intent.gateway_order_id,
        amount=intent.amount,
        currency=intent.currency,
        key_id=settings.PAYMENT_KEY_ID or None,
        total_price=intent.total,
    )


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreatePayload,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway=Depends(get_gateway),
    carrier=Depends(get_carrier),
    notifier=Depends(get_notifier),
    session_factory=Depends(get_session_factory),
):
    proof = None
    if payload.payment is not None:
        proof = PaymentProof(
            gateway_order_id=payload.payment.gateway_order_id,
            payment_id=payload.payment.payment_id,
            signature=payload.payment.signature,
        )

    result = place_order(
        db,
        current_user,
        payment_method=payload.payment_method,
        address_id=payload.address_id,
        coupon_code=payload.coupon_code,
        points_to_redeem=payload.points_to_redeem,
        payment_proof=proof,
        client_total=payload.amount,
        gateway=gateway,
        ip=_client_ip(request),
    )

    # Runs after the response is sent; failures there never affect the order
    background_tasks.add_task(run_post_commit, result.post_commit, session_factory, carrier, notifier)
    return order_to_out(result.order)


@router.get("", response_model=OrdersPage)
def list_orders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    q = db.query(Order).options(selectinload(Order.items))
    if not current_user.is_admin:
        q = q.filter(Order.user_id == current_user.id)
    orders = q.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return OrdersPage(items=[order_to_out(o) for o in orders], total=len(orders))


@router.get("/{order_id}", response_model=OrderResponse)
def get_order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return order_to_out(get_order_for(db, order_id, current_user))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel(
    order_id: int,
    request: Request,
    payload: Optional[CancelOrderPayload] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway=Depends(get_gateway),
):
    order = await cancel_order(
        db,
        order_id,
        current_user,
        reason=payload.reason if payload else None,
        gateway=gateway,
        ip=_client_ip(request),
    )
    return order_to_out(order)


@router.patch("/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: int,
    payload: OrderStatusPatch,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    event = STATUS_EVENTS.get(payload.status)
    if event is None:
        raise ValidationError(
            f"Status {payload.status!r} cannot be set directly.",
            allowed=sorted(STATUS_EVENTS),
        )
    return order_to_out(apply_event(db, order_id, event, current_user))


@router.post("/{order_id}/ship", response_model=ShipOrderResponse)
async def retry_shipment(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    carrier=Depends(get_carrier),
):
    order = get_order(db, order_id)
    owner = db.get(User, order.user_id)
    step = await ship_order(db, order_id, owner.email if owner else "", carrier)
    db.refresh(order)
    logger.info("Admin %s retried fulfillment of order %s: %s", current_user.id, order_id, step.value)
    return ShipOrderResponse(order_id=order_id, step=step.value, status=order.status)
