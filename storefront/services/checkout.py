"""Checkout orchestration.

``place_order`` turns the caller's cart into an order inside one database
transaction: live prices and stock are read inside it, stock and wallet
points are moved with conditional updates, and the cart is emptied. Either
all of it commits or none of it is visible. Work that talks to the carrier or
sends notifications runs afterwards in ``run_post_commit`` and can never undo
the order.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Settings, settings as default_settings
from storefront.models.cart import CartItem
from storefront.models.order import Order, OrderItem, PaymentMethod, initial_status
from storefront.models.users import Address, User
from storefront.schemas.order import order_to_out
from storefront.services.cart import LineItem, check_line, load_cart_lines
from storefront.services.errors import (
    ExternalServiceError,
    NotFoundError,
    PaymentVerificationFailed,
    StorefrontError,
    ValidationError,
)
from storefront.services.fulfillment import ship_order
from storefront.services.inventory import requests_for_lines, reserve_stock
from storefront.services.pricing import PriceBreakdown, money, price_cart, reward_points_for, to_minor_units
from storefront.services.settings_store import (
    find_active_coupon,
    load_tax_settings,
    load_wallet_settings,
    shipping_settings,
)
from storefront.services.wallet import credit_points, redeem_points
from storefront.utils.audit import write_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentProof:
    gateway_order_id: str
    payment_id: str
    signature: str


@dataclass(frozen=True)
class Quote:
    lines: List[LineItem]
    breakdown: PriceBreakdown
    points_awarded: int

    @property
    def total(self) -> Decimal:
        return money(self.breakdown.grand_total)


@dataclass(frozen=True)
class PostCommitPlan:
    order_id: int
    email: str
    has_physical_items: bool
    has_service_items: bool


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    breakdown: PriceBreakdown
    post_commit: PostCommitPlan


@dataclass(frozen=True)
class PaymentIntentResult:
    gateway_order_id: str
    amount: int
    currency: str
    total: Decimal


def quote_cart(
    db: Session,
    user: User,
    coupon_code: Optional[str] = None,
    points_to_redeem: int = 0,
    cfg: Settings = default_settings,
) -> Quote:
    """Price the user's current cart from live catalog rows. Writes nothing."""
    lines = load_cart_lines(db, user.id)
    if not lines:
        raise ValidationError("Your cart is empty.")
    for line in lines:
        check_line(line)

    wallet = load_wallet_settings(db, cfg)
    breakdown = price_cart(
        lines,
        coupon=find_active_coupon(db, coupon_code, strict=cfg.COUPON_STRICT),
        points_to_redeem=points_to_redeem,
        wallet_balance=user.wallet_balance or 0,
        wallet=wallet,
        tax=load_tax_settings(db),
        shipping=shipping_settings(cfg),
    )
    return Quote(lines=lines, breakdown=breakdown, points_awarded=reward_points_for(money(breakdown.grand_total), wallet))


async def create_payment_intent(
    db: Session,
    user: User,
    gateway,
    coupon_code: Optional[str] = None,
    points_to_redeem: int = 0,
    cfg: Settings = default_settings,
) -> PaymentIntentResult:
    """Open a gateway order for the server-computed cart total."""
    quote = quote_cart(db, user, coupon_code, points_to_redeem, cfg)
    # Release the read transaction before waiting on the gateway
    db.rollback()

    amount = to_minor_units(quote.breakdown.grand_total)
    intent = await gateway.create_payment_intent(amount, cfg.CURRENCY, receipt=f"user-{user.id}")
    logger.info("Gateway order %s opened for user %s (%s %s)", intent.gateway_order_id, user.id, amount, cfg.CURRENCY)
    return PaymentIntentResult(
        gateway_order_id=intent.gateway_order_id,
        amount=intent.amount,
        currency=intent.currency,
        total=quote.total,
    )


def _verify_payment(method: PaymentMethod, proof: Optional[PaymentProof], gateway) -> None:
    if method is not PaymentMethod.GATEWAY:
        return
    if proof is None:
        raise PaymentVerificationFailed("Payment details are required for online payment.")
    if gateway is None or not gateway.verify_signature(proof.gateway_order_id, proof.payment_id, proof.signature):
        logger.warning("Rejected payment signature for gateway order %s", proof.gateway_order_id)
        raise PaymentVerificationFailed(
            "Payment verification failed.",
            gateway_order_id=proof.gateway_order_id,
            payment_id=proof.payment_id,
        )


def _resolve_address(db: Session, user_id: int, address_id: Optional[int], required: bool) -> Optional[Address]:
    if address_id is None:
        if required:
            raise ValidationError("A shipping address is required for physical items.")
        return None
    address = db.query(Address).filter(Address.id == address_id, Address.user_id == user_id).first()
    if address is None:
        raise NotFoundError(f"Address {address_id} not found.", address_id=address_id)
    return address


def _order_item(line: LineItem) -> OrderItem:
    return OrderItem(
        product_id=line.product.id,
        product_name=line.product.name,
        quantity=line.quantity,
        unit_price=money(line.unit_price),
        sku_variant=line.sku,
        size=line.size,
        color=line.color,
        image=line.image,
        user_input=line.user_input,
        is_service=line.is_service,
    )


def place_order(
    db: Session,
    user: User,
    *,
    payment_method,
    address_id: Optional[int] = None,
    coupon_code: Optional[str] = None,
    points_to_redeem: int = 0,
    payment_proof: Optional[PaymentProof] = None,
    client_total=None,
    gateway=None,
    ip: Optional[str] = None,
    cfg: Settings = default_settings,
) -> CheckoutResult:
    """Commit the user's cart as an order, or change nothing at all."""
    try:
        method = PaymentMethod(payment_method)
    except ValueError:
        raise ValidationError(f"Unsupported payment method {payment_method!r}.") from None

    # Checked before the first query so a forged proof never touches the database
    _verify_payment(method, payment_proof, gateway)

    try:
        buyer = db.query(User).filter(User.id == user.id).populate_existing().one()

        if payment_proof is not None and method is PaymentMethod.GATEWAY:
            reused = db.query(Order.id).filter(Order.payment_id == payment_proof.payment_id).first()
            if reused is not None:
                raise ValidationError("This payment has already been used for an order.", order_id=reused.id)

        quote = quote_cart(db, buyer, coupon_code, points_to_redeem, cfg)
        breakdown = quote.breakdown
        has_physical = any(not line.is_service for line in quote.lines)
        has_service = any(line.is_service for line in quote.lines)
        address = _resolve_address(db, buyer.id, address_id, required=has_physical)

        total = money(breakdown.grand_total)
        if client_total is not None and money(client_total) != total:
            logger.debug("Ignoring client total %s for user %s; server total is %s", client_total, buyer.id, total)

        reserve_stock(db, requests_for_lines(quote.lines))

        order = Order(
            user_id=buyer.id,
            status=initial_status(method).value,
            items_price=money(breakdown.subtotal),
            coupon_discount=money(breakdown.coupon_discount),
            wallet_discount=money(breakdown.wallet_discount),
            discount_amount=money(breakdown.total_discount),
            coupon_code=breakdown.coupon_code,
            shipping_price=money(breakdown.shipping),
            tax_price=money(breakdown.tax),
            total_price=total,
            points_redeemed=breakdown.points_redeemed,
            points_awarded=quote.points_awarded,
            payment_method=method.value,
            payment_id=payment_proof.payment_id if method is PaymentMethod.GATEWAY else None,
            gateway_order_id=payment_proof.gateway_order_id if method is PaymentMethod.GATEWAY else None,
        )
        if address is not None:
            order.shipping_full_name = address.full_name
            order.shipping_phone = address.phone
            order.shipping_street = address.street
            order.shipping_city = address.city
            order.shipping_state = address.state
            order.shipping_postal_code = address.postal_code
            order.shipping_country = address.country
        order.items = [_order_item(line) for line in quote.lines]
        db.add(order)
        db.flush()

        redeem_points(db, buyer.id, breakdown.points_redeemed)
        credit_points(db, buyer.id, quote.points_awarded)

        db.query(CartItem).filter(CartItem.user_id == buyer.id).delete(synchronize_session="fetch")

        write_log(
            db,
            user_id=buyer.id,
            order_id=order.id,
            action="ORDER_PLACED",
            resource="orders",
            ip=ip,
            meta={
                "total": str(total),
                "payment_method": method.value,
                "items": len(quote.lines),
                "points_redeemed": breakdown.points_redeemed,
                "points_awarded": quote.points_awarded,
            },
        )
        db.commit()
    except StorefrontError:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        if method is PaymentMethod.GATEWAY:
            # A concurrent checkout committed the same payment first
            logger.warning("Payment %s was claimed by another order", payment_proof.payment_id)
            raise ValidationError(
                "This payment has already been used for an order.",
                payment_id=payment_proof.payment_id,
            ) from e
        logger.exception("Checkout for user %s violated a constraint", user.id)
        raise ExternalServiceError("Could not save the order, please try again.") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Checkout for user %s failed in the data store", user.id)
        raise ExternalServiceError("Could not save the order, please try again.") from e

    logger.info("Order %s placed by user %s: %s (%s)", order.id, buyer.id, total, method.value)
    return CheckoutResult(
        order=order,
        breakdown=breakdown,
        post_commit=PostCommitPlan(
            order_id=order.id,
            email=buyer.email,
            has_physical_items=has_physical,
            has_service_items=has_service,
        ),
    )


async def run_post_commit(plan: PostCommitPlan, session_factory, carrier, notifier) -> None:
    """Best-effort follow-up for a committed order; every step fails on its own."""
    db = session_factory()
    try:
        if plan.has_physical_items:
            try:
                await ship_order(db, plan.order_id, plan.email, carrier)
            except Exception:
                logger.exception("Fulfillment of order %s failed", plan.order_id)

        try:
            summary = order_to_out(db.get(Order, plan.order_id)).model_dump(mode="json")
        except Exception:
            logger.exception("Could not load order %s for notifications", plan.order_id)
            return

        try:
            await notifier.send_order_confirmation(plan.email, summary)
        except Exception:
            logger.exception("Order confirmation for order %s failed", plan.order_id)

        if plan.has_service_items:
            try:
                await notifier.send_admin_service_notice(summary)
            except Exception:
                logger.exception("Service notice for order %s failed", plan.order_id)
    finally:
        db.close()
