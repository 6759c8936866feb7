from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional
from storefront.domain.models import ServiceType, StockStatus

class VariationIn(BaseModel):
    name: str
    price: Decimal = Decimal("0")

class AddOnIn(BaseModel):
    name: str
    price: Decimal = Decimal("0")
    quantity: int = 1

class OrderLineItemIn(BaseModel):
    catalog_item_id: str
    name: str
    variation: Optional[VariationIn] = None
    add_ons: list[AddOnIn] = []
    # Effective price + variation delta + add-on prices, as shown in the cart
    unit_price: Decimal
    quantity: int

class OrderCreate(BaseModel):
    customer_name: str = ""
    contact_number: Optional[str] = None
    service_type: ServiceType
    address: Optional[str] = None
    # Preset bucket such as "15-20 min", or "custom" together with custom_pickup_time
    pickup_time: Optional[str] = None
    custom_pickup_time: Optional[str] = None
    party_size: Optional[int] = None
    dine_in_time: Optional[datetime] = None
    payment_method: str = ""
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = None
    items: list[OrderLineItemIn] = []
    total: Optional[Decimal] = None

class OrderSubmission(OrderCreate):
    """Checkout input handed to the order service; the origin address is filled in server-side."""
    origin_address: Optional[str] = None

class OrderSubmittedRead(BaseModel):
    id: str
    total: Decimal
    status: str

class OrderItemRead(BaseModel):
    id: int
    item_id: str
    name: str
    variation: Optional[dict] = None
    add_ons: list = []
    unit_price: Decimal
    quantity: int
    subtotal: Decimal
    class Config:
        from_attributes = True

class OrderRead(BaseModel):
    id: str
    customer_name: str
    contact_number: Optional[str] = None
    service_type: str
    address: Optional[str] = None
    pickup_time: Optional[str] = None
    party_size: Optional[int] = None
    dine_in_time: Optional[datetime] = None
    payment_method: str
    reference_number: Optional[str] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None
    total: Decimal
    status: str
    created_at: datetime
    items: list[OrderItemRead]
    class Config:
        from_attributes = True

class StockItemCreate(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    base_price: Decimal = Decimal("0")
    available: bool = True
    track_inventory: bool = False
    stock_quantity: int = 0
    low_stock_threshold: int = 0

class StockItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    base_price: Optional[Decimal] = None
    track_inventory: Optional[bool] = None
    stock_quantity: Optional[int] = None
    low_stock_threshold: Optional[int] = None

class AvailabilityUpdate(BaseModel):
    available: bool

class StockRecordRead(BaseModel):
    id: str
    name: str
    category: Optional[str] = None
    base_price: Decimal
    available: bool
    track_inventory: bool
    stock_quantity: int
    low_stock_threshold: int
    stock_status: StockStatus
    updated_at: Optional[datetime] = None
    class Config:
        from_attributes = True
