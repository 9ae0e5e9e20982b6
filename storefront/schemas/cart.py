from pydantic import BaseModel, Field
from typing import List, Optional
from decimal import Decimal

# Request schema for adding an item (optionally a specific variant) to the cart
class CartAddItem(BaseModel):
    product_id: int
    sku_variant: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    user_input: Optional[str] = Field(default=None, max_length=500)

# Request schema for updating cart item quantity
class CartUpdateItem(BaseModel):
    quantity: int = Field(ge=1)

# Response schema for a single cart line item
class CartItemOut(BaseModel):
    id: int
    product_id: int
    name: str
    sku_variant: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    is_service: bool = False

    class Config:
        from_attributes = True

# Response schema for the entire cart with a live price quote
class CartOut(BaseModel):
    items: List[CartItemOut]
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
