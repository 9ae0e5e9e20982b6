from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal


# Request schema for a delivery rate check
class ServiceabilityRequest(BaseModel):
    delivery_postcode: Optional[str] = None
    weight_in_kg: Optional[float] = Field(default=None, gt=0)


# Rate for the recommended courier, or no price when nobody delivers there
class ServiceabilityOut(BaseModel):
    delivery_postcode: str
    available: bool
    shipping_price: Optional[Decimal] = None
    courier_name: Optional[str] = None
