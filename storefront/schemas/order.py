from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    sku_variant: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None
    user_input: Optional[str] = None
    is_service: bool = False

    class Config:
        from_attributes = True


class ShippingAddressOut(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class ShipmentOut(BaseModel):
    step: str
    carrier_order_id: Optional[str] = None
    shipment_id: Optional[str] = None
    tracking_number: Optional[str] = None
    courier: Optional[str] = None
    tracking_url: Optional[str] = None
    pickup_status: Optional[str] = None


class RefundOut(BaseModel):
    refund_id: Optional[str] = None
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    refunded_at: Optional[datetime] = None


class CancellationOut(BaseModel):
    cancelled_by: Optional[str] = None
    reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None


# Output schema representing the full order details
class OrderResponse(BaseModel):
    id: int
    user_id: int
    status: str
    payment_method: str
    payment_id: Optional[str] = None
    items_price: Decimal
    coupon_discount: Decimal
    wallet_discount: Decimal
    discount_amount: Decimal
    coupon_code: Optional[str] = None
    shipping_price: Decimal
    tax_price: Decimal
    total_price: Decimal
    points_redeemed: int
    points_awarded: int
    created_at: Optional[datetime] = None
    items: List[OrderItemOut]
    shipping_address: ShippingAddressOut
    shipment: ShipmentOut
    refund: Optional[RefundOut] = None
    cancellation: Optional[CancellationOut] = None


# Schema for order lists
class OrdersPage(BaseModel):
    items: List[OrderResponse]
    total: int


# Gateway proof sent back by the checkout widget after a successful payment
class PaymentProofIn(BaseModel):
    gateway_order_id: str
    payment_id: str
    signature: str


# Input schema for placing an order from the current cart
class OrderCreatePayload(BaseModel):
    payment_method: str = Field(pattern="^(COD|Gateway)$")
    address_id: Optional[int] = None
    coupon_code: Optional[str] = None
    points_to_redeem: int = Field(default=0, ge=0)
    payment: Optional[PaymentProofIn] = None
    # Accepted for older clients; the server always recomputes the total
    amount: Optional[Decimal] = None


# Input schema for requesting a gateway order before payment
class PaymentIntentPayload(BaseModel):
    coupon_code: Optional[str] = None
    points_to_redeem: int = Field(default=0, ge=0)


# Response schema for a created gateway order
class PaymentIntentResponse(BaseModel):
    gateway_order_id: str
    amount: int
    currency: str
    key_id: Optional[str] = None
    total_price: Decimal


# Schema for updating order status (admin)
class OrderStatusPatch(BaseModel):
    status: str


class CancelOrderPayload(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ShipOrderResponse(BaseModel):
    order_id: int
    step: str
    status: str


# Map Order model to OrderResponse schema
def order_to_out(order) -> OrderResponse:
    refund = None
    if order.refund_id or order.refund_status:
        refund = RefundOut(
            refund_id=order.refund_id,
            amount=order.refund_amount,
            status=order.refund_status,
            refunded_at=order.refunded_at,
        )
    cancellation = None
    if order.cancelled_at:
        cancellation = CancellationOut(
            cancelled_by=order.cancelled_by,
            reason=order.cancellation_reason,
            cancelled_at=order.cancelled_at,
        )

    return OrderResponse(
        id=order.id,
        user_id=order.user_id,
        status=order.status,
        payment_method=order.payment_method,
        payment_id=order.payment_id,
        items_price=order.items_price,
        coupon_discount=order.coupon_discount,
        wallet_discount=order.wallet_discount,
        discount_amount=order.discount_amount,
        coupon_code=order.coupon_code,
        shipping_price=order.shipping_price,
        tax_price=order.tax_price,
        total_price=order.total_price,
        points_redeemed=order.points_redeemed or 0,
        points_awarded=order.points_awarded or 0,
        created_at=order.created_at,
        items=[
            OrderItemOut(
                product_id=it.product_id,
                product_name=it.product_name,
                quantity=it.quantity,
                unit_price=it.unit_price,
                line_total=it.line_total,
                sku_variant=it.sku_variant,
                size=it.size,
                color=it.color,
                image=it.image,
                user_input=it.user_input,
                is_service=bool(it.is_service),
            )
            for it in order.items
        ],
        shipping_address=ShippingAddressOut(
            full_name=order.shipping_full_name,
            phone=order.shipping_phone,
            street=order.shipping_street,
            city=order.shipping_city,
            state=order.shipping_state,
            postal_code=order.shipping_postal_code,
            country=order.shipping_country,
        ),
        shipment=ShipmentOut(
            step=order.shipment_step or "none",
            carrier_order_id=order.carrier_order_id,
            shipment_id=order.carrier_shipment_id,
            tracking_number=order.tracking_number,
            courier=order.courier,
            tracking_url=order.tracking_url,
            pickup_status=order.pickup_status,
        ),
        refund=refund,
        cancellation=cancellation,
    )
