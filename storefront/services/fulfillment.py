"""Fulfillment bridge between committed orders and the shipping carrier.

Each order walks ``none -> shipment_requested -> awb_assigned ->
pickup_scheduled`` and the identifiers returned by every step are committed
before the next call is made. A failed or interrupted run therefore leaves
whatever tracking data it obtained, and the next run continues from the last
committed step. The order becomes Shipped only once pickup is scheduled.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Settings, settings as default_settings
from storefront.models.order import Order, OrderEvent, OrderStatus, PaymentMethod, ShipmentStep
from storefront.models.product import Product
from storefront.services.errors import ExternalServiceError, InvalidTransition, ValidationError
from storefront.services.ledger import get_order, transition
from storefront.utils.audit import write_log

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT_KG = 0.1
DEFAULT_DIMENSION_CM = 10.0
# Parcel weight assumed for a rate check when the caller gives none
DEFAULT_QUOTE_WEIGHT_KG = 0.5

SHIPPABLE_STATES = frozenset({OrderStatus.PAID, OrderStatus.PROCESSING})


@dataclass(frozen=True)
class PackageSpec:
    weight: float
    length: float
    breadth: float
    height: float


def load_catalog(db: Session, items: Iterable) -> Dict[int, Product]:
    ids = {item.product_id for item in items}
    if not ids:
        return {}
    return {p.id: p for p in db.query(Product).filter(Product.id.in_(ids)).all()}


def package_dimensions(items: Iterable, catalog: Dict[int, Product]) -> PackageSpec:
    """Aggregate parcel: summed weight, largest length/breadth/height.

    Variant attributes win over the product's; anything missing falls back to
    a small default so the carrier always gets a valid parcel.
    """
    weight = 0.0
    length = breadth = height = 0.0
    for item in items:
        if item.is_service:
            continue
        source = catalog.get(item.product_id)
        if source is not None and item.sku_variant:
            source = source.variant_by_sku(item.sku_variant) or source

        weight += (getattr(source, "weight", None) or DEFAULT_WEIGHT_KG) * item.quantity
        length = max(length, getattr(source, "length", None) or DEFAULT_DIMENSION_CM)
        breadth = max(breadth, getattr(source, "breadth", None) or DEFAULT_DIMENSION_CM)
        height = max(height, getattr(source, "height", None) or DEFAULT_DIMENSION_CM)
    return PackageSpec(weight=round(weight, 3), length=length, breadth=breadth, height=height)


def build_shipment_payload(order: Order, email: str, package: PackageSpec, pickup_location: str) -> dict:
    names = (order.shipping_full_name or "").split()
    first_name = names[0] if names else ""
    last_name = " ".join(names[1:]) or first_name
    physical = [item for item in order.items if not item.is_service]

    return {
        "order_id": str(order.id),
        "order_date": order.created_at.strftime("%Y-%m-%d %H:%M") if order.created_at else None,
        "pickup_location": pickup_location,
        "billing_customer_name": first_name,
        "billing_last_name": last_name,
        "billing_address": order.shipping_street,
        "billing_city": order.shipping_city,
        "billing_pincode": order.shipping_postal_code,
        "billing_state": order.shipping_state,
        "billing_country": order.shipping_country,
        "billing_email": email,
        "billing_phone": order.shipping_phone,
        "shipping_is_billing": True,
        "order_items": [
            {
                "name": item.product_name,
                "sku": item.sku_variant or str(item.product_id),
                "units": item.quantity,
                "selling_price": float(item.unit_price),
            }
            for item in physical
        ],
        "payment_method": "COD" if order.payment_method == PaymentMethod.COD.value else "Prepaid",
        "sub_total": float(order.items_price),
        "length": package.length,
        "breadth": package.breadth,
        "height": package.height,
        "weight": package.weight,
    }


def _shippable(order: Order) -> bool:
    return OrderStatus(order.status) in SHIPPABLE_STATES


def _record_step(db: Session, order: Order, step: ShipmentStep, **meta) -> ShipmentStep:
    order.shipment_step = step.value
    write_log(db, user_id=order.user_id, order_id=order.id, action="SHIPMENT_STEP", resource="orders", meta={"step": step.value, **meta})
    db.commit()
    return step


async def ship_order(db: Session, order_id: int, email: str, carrier) -> ShipmentStep:
    """Advance one order through the carrier workflow as far as it will go.

    Returns the last committed step. Carrier failures are logged and end the
    run early; only a missing order raises.
    """
    order = get_order(db, order_id)
    step = ShipmentStep(order.shipment_step or ShipmentStep.NONE.value)

    if not order.has_physical_items:
        logger.info("Order %s has nothing to ship", order_id)
        return step
    if not _shippable(order):
        logger.info("Order %s is %s; fulfillment skipped at step %s", order_id, order.status, step.value)
        return step

    try:
        if step is ShipmentStep.NONE and _shippable(order):
            package = package_dimensions(order.items, load_catalog(db, order.items))
            payload = build_shipment_payload(order, email, package, carrier.pickup_location)
            created = await carrier.create_shipment(payload)
            if not created.get("shipment_id"):
                raise ExternalServiceError("Carrier accepted the order but returned no shipment id.")
            carrier_order_id = created.get("carrier_order_id")
            order.carrier_order_id = str(carrier_order_id) if carrier_order_id is not None else None
            order.carrier_shipment_id = str(created["shipment_id"])
            step = _record_step(db, order, ShipmentStep.SHIPMENT_REQUESTED, shipment_id=order.carrier_shipment_id)

        if step is ShipmentStep.SHIPMENT_REQUESTED and _shippable(order):
            awb = await carrier.assign_waybill(order.carrier_shipment_id)
            if not awb.get("tracking_number"):
                raise ExternalServiceError(f"No waybill assigned: {awb.get('message') or 'empty response'}")
            order.tracking_number = awb["tracking_number"]
            order.courier = awb.get("courier_name")
            order.tracking_url = awb.get("tracking_url")
            step = _record_step(db, order, ShipmentStep.AWB_ASSIGNED, tracking_number=order.tracking_number)

        if step is ShipmentStep.AWB_ASSIGNED and _shippable(order):
            pickup = await carrier.schedule_pickup(order.carrier_shipment_id)
            order.pickup_status = pickup.get("status") or "requested"
            if order.pickup_status != "scheduled":
                logger.warning("Pickup for order %s was queued with status %s", order_id, order.pickup_status)
            step = _record_step(db, order, ShipmentStep.PICKUP_SCHEDULED, pickup_status=order.pickup_status)

        if step is ShipmentStep.PICKUP_SCHEDULED and _shippable(order):
            transition(db, order, OrderEvent.SHIPMENT_COMPLETED)
            write_log(db, user_id=order.user_id, order_id=order.id, action="ORDER_SHIPPED", resource="orders", meta={"tracking_number": order.tracking_number})
            db.commit()
            logger.info("Order %s shipped with %s (%s)", order_id, order.courier, order.tracking_number)

    except ExternalServiceError as e:
        db.rollback()
        logger.error("Fulfillment of order %s stopped after step %s: %s", order_id, step.value, e.message)
    except InvalidTransition:
        db.rollback()
        logger.warning("Order %s changed state during fulfillment; leaving it at step %s", order_id, step.value)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not persist fulfillment step for order %s after %s", order_id, step.value)

    return step


async def fulfill_in_background(session_factory, order_id: int, email: str, carrier) -> None:
    db = session_factory()
    try:
        await ship_order(db, order_id, email, carrier)
    except Exception:
        logger.exception("Fulfillment of order %s failed", order_id)
    finally:
        db.close()


async def track_order(order: Order, carrier) -> dict:
    if not order.carrier_shipment_id and not order.tracking_number:
        return {
            "order_id": order.id,
            "status": "awaiting_shipment",
            "history": [],
            "message": "Your order is being processed and has not been handed to the courier yet.",
        }

    tracking = await carrier.track(shipment_id=order.carrier_shipment_id, tracking_number=order.tracking_number)
    return {
        "order_id": order.id,
        "status": tracking.get("status"),
        "history": tracking.get("history") or [],
        "tracking_number": order.tracking_number,
        "courier": order.courier,
        "tracking_url": tracking.get("tracking_url") or order.tracking_url,
    }


async def quote_delivery(carrier, delivery_postcode: Optional[str], weight=None, cfg: Settings = default_settings) -> dict:
    """Check whether a courier serves ``delivery_postcode`` and at what rate.

    A postcode nobody serves is not an error: the quote comes back with
    ``available`` False and no price.
    """
    postcode = (delivery_postcode or "").strip()
    if not postcode:
        raise ValidationError("Delivery pincode is required.")
    weight = DEFAULT_QUOTE_WEIGHT_KG if weight is None else weight
    if weight <= 0:
        raise ValidationError("Parcel weight must be positive.", weight=weight)
    if not cfg.CARRIER_PICKUP_POSTCODE:
        raise ExternalServiceError("Pickup pincode is not configured on the server.")

    quote = await carrier.check_serviceability(cfg.CARRIER_PICKUP_POSTCODE, postcode, weight)
    if not quote.get("available"):
        logger.info("No courier serves postcode %s", postcode)
    return {
        "delivery_postcode": postcode,
        "available": bool(quote.get("available")),
        "shipping_price": quote.get("shipping_price"),
        "courier_name": quote.get("courier_name"),
    }
