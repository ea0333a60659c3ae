from pydantic import BaseModel
from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID
from decimal import Decimal

EventType = Literal['OrderRevenue', 'Fee', 'ServiceFee', 'Refund']


class FinancialEventCandidate(BaseModel):
    account_id: UUID
    event_type: EventType
    posted_date: datetime
    amount: Decimal
    amazon_order_id: Optional[str] = None
    financial_event_id: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = None
    fee_type: Optional[str] = None
    fee_category: Optional[str] = None
    marketplace_id: Optional[str] = None


class ProfitSummary(BaseModel):
    revenue: Decimal = Decimal("0")
    refunds: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    cogs: Decimal = Decimal("0")
    advertising: Decimal = Decimal("0")
    indirect_expenses: Decimal = Decimal("0")
    vat: Decimal = Decimal("0")
    promotions: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    giftwrap: Decimal = Decimal("0")
    units: int = 0
    orders: int = 0
    net_profit: Decimal = Decimal("0")
    margin: Decimal = Decimal("0")


class DailyStat(BaseModel):
    day: date
    revenue: Decimal = Decimal("0")
    refunds: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    cogs: Decimal = Decimal("0")
    advertising: Decimal = Decimal("0")
    indirect_expenses: Decimal = Decimal("0")
    vat: Decimal = Decimal("0")
    units: int = 0
    orders: int = 0
    net_profit: Decimal = Decimal("0")


class FeeSubtotal(BaseModel):
    fee_type: str
    amount: Decimal
    count: int


class CostCategory(BaseModel):
    category: str
    display_name: str
    amount: Decimal
    count: int
    percentage: Decimal
    fee_types: List[FeeSubtotal] = []


class CostBreakdown(BaseModel):
    total: Decimal = Decimal("0")
    categories: List[CostCategory] = []


class MarketplaceStat(BaseModel):
    marketplace_id: str
    revenue: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    refunds: Decimal = Decimal("0")
    net_profit: Decimal = Decimal("0")
    margin: Decimal = Decimal("0")


class ProductProfit(BaseModel):
    sku: str
    title: Optional[str] = None
    units: int = 0
    orders: int = 0
    revenue: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    refunds: Decimal = Decimal("0")
    cogs: Decimal = Decimal("0")
    vat: Decimal = Decimal("0")
    net_profit: Decimal = Decimal("0")
    margin: Decimal = Decimal("0")
