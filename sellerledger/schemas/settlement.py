"""Upstream settlement payloads.

Both settlement API generations are parsed into one tagged union,
``SettlementRecord``, discriminated by ``kind``. Field names follow the
upstream JSON so raw payloads validate without aliasing.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator
from sellerledger.utils.money import safe_decimal


class LegacyMoney(BaseModel):
    CurrencyCode: Optional[str] = None
    CurrencyAmount: Decimal = Decimal("0")

    @field_validator('CurrencyAmount', mode='before')
    @classmethod
    def _amount(cls, v):
        return safe_decimal(v)


class LegacyCharge(BaseModel):
    ChargeType: Optional[str] = None
    ChargeAmount: Optional[LegacyMoney] = None


class LegacyFee(BaseModel):
    FeeType: Optional[str] = None
    FeeAmount: Optional[LegacyMoney] = None


class LegacyShipmentItem(BaseModel):
    SellerSKU: Optional[str] = None
    OrderItemId: Optional[str] = None
    OrderAdjustmentItemId: Optional[str] = None
    QuantityShipped: Optional[int] = None
    ItemChargeList: List[LegacyCharge] = []
    ItemChargeAdjustmentList: List[LegacyCharge] = []
    ItemFeeList: List[LegacyFee] = []
    ItemFeeAdjustmentList: List[LegacyFee] = []

    @property
    def charges(self) -> List[LegacyCharge]:
        return self.ItemChargeAdjustmentList or self.ItemChargeList

    @property
    def fees(self) -> List[LegacyFee]:
        return self.ItemFeeAdjustmentList or self.ItemFeeList


class LegacyShipmentEvent(BaseModel):
    kind: Literal['shipment'] = 'shipment'
    AmazonOrderId: Optional[str] = None
    SellerOrderId: Optional[str] = None
    ShipmentId: Optional[str] = None
    MarketplaceName: Optional[str] = None
    PostedDate: Optional[str] = None
    ShipmentItemList: List[LegacyShipmentItem] = []


class LegacyRefundEvent(BaseModel):
    kind: Literal['refund'] = 'refund'
    AmazonOrderId: Optional[str] = None
    SellerOrderId: Optional[str] = None
    MarketplaceName: Optional[str] = None
    PostedDate: Optional[str] = None
    ShipmentItemAdjustmentList: List[LegacyShipmentItem] = []
    ShipmentItemList: List[LegacyShipmentItem] = []

    @property
    def items(self) -> List[LegacyShipmentItem]:
        return self.ShipmentItemAdjustmentList or self.ShipmentItemList


class LegacyServiceFeeEvent(BaseModel):
    kind: Literal['service_fee'] = 'service_fee'
    AmazonOrderId: Optional[str] = None
    SellerSKU: Optional[str] = None
    FeeDescription: Optional[str] = None
    FeeReason: Optional[str] = None
    PostedDate: Optional[str] = None
    FeeList: List[LegacyFee] = []
    FeeType: Optional[str] = None
    FeeAmount: Optional[LegacyMoney] = None

    @property
    def fees(self) -> List[LegacyFee]:
        if self.FeeList:
            return self.FeeList
        if self.FeeType or self.FeeAmount:
            return [LegacyFee(FeeType=self.FeeType, FeeAmount=self.FeeAmount)]
        return []


class TxMoney(BaseModel):
    currencyCode: Optional[str] = None
    currencyAmount: Decimal = Decimal("0")

    @field_validator('currencyAmount', mode='before')
    @classmethod
    def _amount(cls, v):
        return safe_decimal(v)


class Breakdown(BaseModel):
    breakdownType: Optional[str] = None
    breakdownAmount: Optional[TxMoney] = None
    breakdowns: List[Breakdown] = []


class RelatedIdentifier(BaseModel):
    relatedIdentifierName: Optional[str] = None
    relatedIdentifierValue: Optional[str] = None


class ItemContext(BaseModel):
    contextType: Optional[str] = None
    sku: Optional[str] = None
    asin: Optional[str] = None
    quantityShipped: Optional[int] = None


class TransactionItem(BaseModel):
    description: Optional[str] = None
    totalAmount: Optional[TxMoney] = None
    contexts: List[ItemContext] = []
    relatedIdentifiers: List[RelatedIdentifier] = []


class Transaction(BaseModel):
    kind: Literal['transaction'] = 'transaction'
    transactionId: Optional[str] = None
    transactionType: Optional[str] = None
    transactionStatus: Optional[str] = None
    postedDate: Optional[str] = None
    description: Optional[str] = None
    totalAmount: Optional[TxMoney] = None
    relatedIdentifiers: List[RelatedIdentifier] = []
    items: List[TransactionItem] = []
    breakdowns: List[Breakdown] = []
    marketplaceDetails: Optional[Dict[str, Any]] = None
    sellingPartnerMetadata: Optional[Dict[str, Any]] = None

    def related_identifier(self, name: str) -> Optional[str]:
        for identifier in self.relatedIdentifiers:
            if identifier.relatedIdentifierName == name:
                return identifier.relatedIdentifierValue
        return None

    @property
    def sku(self) -> Optional[str]:
        if not self.items:
            return None
        for context in self.items[0].contexts:
            if context.contextType == 'ProductContext' and context.sku:
                return context.sku
        return None

    @property
    def marketplace_id(self) -> Optional[str]:
        for source in (self.marketplaceDetails, self.sellingPartnerMetadata):
            if source and source.get('marketplaceId'):
                return source['marketplaceId']
        return None


Breakdown.model_rebuild()

SettlementRecord = Annotated[
    Union[LegacyShipmentEvent, LegacyRefundEvent, LegacyServiceFeeEvent, Transaction],
    Field(discriminator='kind'),
]

LEGACY_EVENT_LISTS = {
    'ShipmentEventList': 'shipment',
    'RefundEventList': 'refund',
    'ServiceFeeEventList': 'service_fee',
}


class SettlementPage(BaseModel):
    records: List[SettlementRecord] = []
    next_token: Optional[str] = None
    dropped: int = 0
