# storefront/models/order.py
import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import relationship
from storefront.database import Base
from storefront.services.errors import InvalidTransition


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class OrderEvent(str, enum.Enum):
    PAYMENT_CONFIRMED = "payment_confirmed"
    SHIPMENT_COMPLETED = "shipment_completed"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    CANCELLATION_REQUESTED = "cancellation_requested"


class PaymentMethod(str, enum.Enum):
    COD = "COD"
    GATEWAY = "Gateway"


# Per-order progress through the carrier workflow; each step is committed
# on its own so a retry resumes where the last attempt stopped.
class ShipmentStep(str, enum.Enum):
    NONE = "none"
    SHIPMENT_REQUESTED = "shipment_requested"
    AWB_ASSIGNED = "awb_assigned"
    PICKUP_SCHEDULED = "pickup_scheduled"


CANCELLABLE_STATES = frozenset({OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.PROCESSING})

TRANSITIONS = {
    (OrderStatus.PENDING, OrderEvent.PAYMENT_CONFIRMED): OrderStatus.PAID,
    (OrderStatus.PAID, OrderEvent.SHIPMENT_COMPLETED): OrderStatus.SHIPPED,
    (OrderStatus.PROCESSING, OrderEvent.SHIPMENT_COMPLETED): OrderStatus.SHIPPED,
    (OrderStatus.SHIPPED, OrderEvent.DELIVERY_CONFIRMED): OrderStatus.DELIVERED,
    **{(state, OrderEvent.CANCELLATION_REQUESTED): OrderStatus.CANCELLED for state in CANCELLABLE_STATES},
}


def next_status(current, event) -> OrderStatus:
    current, event = OrderStatus(current), OrderEvent(event)
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransition(
            f"Cannot apply {event.value} to an order in {current.value} state",
            status=current.value,
            event=event.value,
        ) from None


def initial_status(payment_method) -> OrderStatus:
    # COD has no payment event to wait for, gateway orders arrive already verified
    if PaymentMethod(payment_method) is PaymentMethod.COD:
        return OrderStatus.PROCESSING
    return OrderStatus.PAID


# A committed, priced purchase. Items are frozen copies of the catalog at
# checkout time; only status, shipment, refund and cancellation fields change.
class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    status = Column(String(20), nullable=False, index=True, default=OrderStatus.PROCESSING.value)

    # Pricing snapshot
    items_price = Column(Numeric(12, 2), nullable=False)
    shipping_price = Column(Numeric(12, 2), nullable=False, default=0)
    tax_price = Column(Numeric(12, 2), nullable=False, default=0)
    coupon_discount = Column(Numeric(12, 2), nullable=False, default=0)
    wallet_discount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    coupon_code = Column(String, nullable=True)
    total_price = Column(Numeric(12, 2), nullable=False)
    points_redeemed = Column(Integer, nullable=False, default=0)
    points_awarded = Column(Integer, nullable=False, default=0)

    # Payment details
    payment_method = Column(String(20), nullable=False, default=PaymentMethod.COD.value)
    # One captured payment settles at most one order
    payment_id = Column(String, unique=True, index=True, nullable=True)
    gateway_order_id = Column(String, nullable=True)

    # Shipping address, copied from the user's address book
    shipping_full_name = Column(String, nullable=True)
    shipping_phone = Column(String, nullable=True)
    shipping_street = Column(String, nullable=True)
    shipping_city = Column(String, nullable=True)
    shipping_state = Column(String, nullable=True)
    shipping_postal_code = Column(String, nullable=True)
    shipping_country = Column(String, nullable=True)

    # Carrier integration details
    shipment_step = Column(String(30), nullable=False, default=ShipmentStep.NONE.value)
    carrier_order_id = Column(String, nullable=True)
    carrier_shipment_id = Column(String, nullable=True)
    tracking_number = Column(String, nullable=True)
    courier = Column(String, nullable=True)
    tracking_url = Column(String, nullable=True)
    pickup_status = Column(String, nullable=True)

    # Refund details
    refund_id = Column(String, nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)
    refund_status = Column(String, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation details
    cancelled_by = Column(String(10), nullable=True)
    cancellation_reason = Column(String, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")

    @property
    def has_physical_items(self) -> bool:
        return any(not it.is_service for it in self.items)

    @property
    def has_service_items(self) -> bool:
        return any(it.is_service for it in self.items)

    @property
    def can_cancel(self) -> bool:
        return OrderStatus(self.status) in CANCELLABLE_STATES

    @property
    def payment_captured(self) -> bool:
        return PaymentMethod(self.payment_method) is PaymentMethod.GATEWAY and bool(self.payment_id)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)

    # Plain id, not a live reference: the catalog may change or drop the product
    product_id = Column(Integer, nullable=False)
    product_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)

    sku_variant = Column(String, nullable=True)
    size = Column(String, nullable=True)
    color = Column(String, nullable=True)
    image = Column(String, nullable=True)
    user_input = Column(String, nullable=True)
    is_service = Column(Boolean, nullable=False, default=False)

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self):
        return self.unit_price * self.quantity
