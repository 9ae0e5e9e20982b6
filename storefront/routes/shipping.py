# storefront/routes/shipping.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.database import get_db
from storefront.models.users import User
from storefront.schemas.shipping import ServiceabilityOut, ServiceabilityRequest
from storefront.services.fulfillment import quote_delivery, track_order
from storefront.services.ledger import get_order_for
from storefront.utils.carrier_client import get_carrier
from storefront.utils.tokenJWT import get_current_user

router = APIRouter(prefix="/shipping", tags=["Shipping"])


@router.post("/serviceability", response_model=ServiceabilityOut)
async def serviceability(
    payload: ServiceabilityRequest,
    current_user: User = Depends(get_current_user),
    carrier=Depends(get_carrier),
):
    return await quote_delivery(carrier, payload.delivery_postcode, payload.weight_in_kg)


@router.get("/track/{order_id}")
async def track(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    carrier=Depends(get_carrier),
):
    order = get_order_for(db, order_id, current_user)
    return await track_order(order, carrier)
