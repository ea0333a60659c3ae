from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional
from decimal import Decimal


class OrderItemUpsert(BaseModel):
    order_item_id: str
    sku: Optional[str] = None
    asin: Optional[str] = None
    title: Optional[str] = None
    quantity: int = 0
    item_price: Decimal = Decimal("0")
    item_tax: Decimal = Decimal("0")
    shipping_price: Decimal = Decimal("0")
    shipping_tax: Decimal = Decimal("0")
    promotion_discount: Decimal = Decimal("0")
    gift_wrap_price: Decimal = Decimal("0")


class OrderUpsert(BaseModel):
    amazon_order_id: str
    purchase_date: datetime
    last_updated_date: Optional[datetime] = None
    order_status: Optional[str] = None
    fulfillment_channel: Optional[str] = None
    total_amount: Decimal = Decimal("0")
    currency: Optional[str] = None
    number_of_items: int = 0
    marketplace_id: Optional[str] = None
    is_business_order: bool = False
    items: Optional[List[OrderItemUpsert]] = None


class InventoryUpsert(BaseModel):
    sku: str
    asin: Optional[str] = None
    fn_sku: Optional[str] = None
    title: Optional[str] = None
    marketplace_id: str
    fulfillable_qty: int = 0
    inbound_qty: int = 0
    reserved_qty: int = 0
    unfulfillable_qty: int = 0
    last_updated: Optional[datetime] = None

