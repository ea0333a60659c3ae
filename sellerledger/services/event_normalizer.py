from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID
from pydantic import TypeAdapter, ValidationError
from sellerledger.schemas.ledger import FinancialEventCandidate
from sellerledger.schemas.settlement import (
    Breakdown, LegacyRefundEvent, LegacyServiceFeeEvent, LegacyShipmentEvent, LegacyShipmentItem,
    LEGACY_EVENT_LISTS, SettlementPage, SettlementRecord, Transaction,
)
from sellerledger.services.fee_taxonomy import FeeTaxonomy
from sellerledger.utils.dates import parse_datetime
from sellerledger.utils.logger import get_loggers
logger = get_loggers("EventNormalizer")

REVENUE_CHARGE_TYPES = frozenset(
    {'Principal', 'ShippingCharge', 'Tax', 'ShippingTax'})
DEFERRED_STATUSES = frozenset({'DEFERRED', 'DEFERRED_RELEASED'})
ZERO = Decimal("0")

_record_adapter = TypeAdapter(SettlementRecord)


def parse_legacy_events(payload: Dict[str, Any]) -> SettlementPage:
    """Turn one listFinancialEvents payload into typed records."""
    events = payload.get('FinancialEvents') or {}
    records = []
    dropped = 0
    for list_name, kind in LEGACY_EVENT_LISTS.items():
        for raw in events.get(list_name) or []:
            try:
                records.append(_record_adapter.validate_python({**raw, 'kind': kind}))
            except ValidationError as e:
                dropped += 1
                logger.warning(f"Dropping malformed {list_name} entry: {e}")
    return SettlementPage(records=records, next_token=payload.get('NextToken'), dropped=dropped)


def parse_transactions(payload: Dict[str, Any]) -> SettlementPage:
    """Turn one listTransactions payload into typed records."""
    records = []
    dropped = 0
    for raw in payload.get('transactions') or []:
        try:
            records.append(_record_adapter.validate_python({**raw, 'kind': 'transaction'}))
        except ValidationError as e:
            dropped += 1
            logger.warning(f"Dropping malformed transaction: {e}")
    return SettlementPage(records=records, next_token=payload.get('nextToken'), dropped=dropped)


class EventNormalizer:
    def __init__(self, taxonomy: FeeTaxonomy):
        self.taxonomy = taxonomy
        self._handlers = {
            LegacyShipmentEvent: self.normalize_shipment,
            LegacyRefundEvent: self.normalize_refund,
            LegacyServiceFeeEvent: self.normalize_service_fee,
            Transaction: self.normalize_transaction,
        }

    def normalize(self, account_id: UUID, record: SettlementRecord) -> List[FinancialEventCandidate]:
        handler = self._handlers.get(type(record))
        if handler is None:
            raise TypeError(f"Unsupported settlement record {type(record).__name__}")
        return handler(account_id, record)

    def normalize_many(self, account_id: UUID, records: Iterable[SettlementRecord]) -> List[FinancialEventCandidate]:
        candidates = []
        for record in records:
            candidates.extend(self.normalize(account_id, record))
        return candidates

    def _posted(self, raw: Optional[str], what: str) -> Optional[datetime]:
        posted = parse_datetime(raw)
        if posted is None:
            logger.warning(f"Dropping {what}: missing or invalid posted date {raw!r}")
        return posted

    def _fee(self, account_id: UUID, fee_type: Optional[str], amount: Decimal, posted: datetime,
             event_type: str = 'Fee', description: Optional[str] = None, **fields) -> FinancialEventCandidate:
        category = self.taxonomy.categorize(fee_type)
        return FinancialEventCandidate(
            account_id=account_id,
            event_type=event_type,
            posted_date=posted,
            amount=amount,
            fee_type=fee_type,
            fee_category=category.category,
            description=description or category.display_name,
            **fields
        )

    def normalize_shipment(self, account_id: UUID, event: LegacyShipmentEvent) -> List[FinancialEventCandidate]:
        posted = self._posted(event.PostedDate, f"shipment event {event.AmazonOrderId}")
        if posted is None:
            return []
        base_id = _legacy_base_id(event.ShipmentId, event.SellerOrderId or event.AmazonOrderId, posted)
        candidates = []
        for index, item in enumerate(event.ShipmentItemList):
            item_key = item.OrderItemId or item.SellerSKU or str(index)
            revenue, currency = _sum_charges(item)
            if revenue != ZERO:
                candidates.append(FinancialEventCandidate(
                    account_id=account_id,
                    event_type='OrderRevenue',
                    posted_date=posted,
                    amount=revenue,
                    currency=currency,
                    amazon_order_id=event.AmazonOrderId,
                    sku=item.SellerSKU,
                    financial_event_id=f"{base_id}:{item_key}:OrderRevenue" if base_id else None,
                    description=f"Order revenue {event.AmazonOrderId or ''}".strip(),
                ))
            for fee_type, (amount, fee_currency) in _sum_fees(item).items():
                if amount == ZERO:
                    continue
                candidates.append(self._fee(
                    account_id, fee_type, amount, posted,
                    currency=fee_currency,
                    amazon_order_id=event.AmazonOrderId,
                    sku=item.SellerSKU,
                    financial_event_id=f"{base_id}:{item_key}:{fee_type}" if base_id else None,
                ))
        return candidates

    def normalize_refund(self, account_id: UUID, event: LegacyRefundEvent) -> List[FinancialEventCandidate]:
        posted = self._posted(event.PostedDate, f"refund event {event.AmazonOrderId}")
        if posted is None:
            return []
        candidates = []
        for item in event.items:
            total, currency = _sum_charges(item)
            if total == ZERO:
                continue
            stable_id = f"{item.OrderAdjustmentItemId}:Refund" if item.OrderAdjustmentItemId else None
            candidates.append(FinancialEventCandidate(
                account_id=account_id,
                event_type='Refund',
                posted_date=posted,
                amount=-abs(total),
                currency=currency,
                amazon_order_id=event.AmazonOrderId,
                sku=item.SellerSKU,
                financial_event_id=stable_id,
                description=f"Refund {event.AmazonOrderId or ''}".strip(),
            ))
        return candidates

    def normalize_service_fee(self, account_id: UUID, event: LegacyServiceFeeEvent) -> List[FinancialEventCandidate]:
        posted = self._posted(event.PostedDate, "service fee event")
        if posted is None:
            return []
        candidates = []
        for fee in event.fees:
            amount = fee.FeeAmount.CurrencyAmount if fee.FeeAmount else ZERO
            if amount == ZERO:
                continue
            candidates.append(self._fee(
                account_id, fee.FeeType, -abs(amount), posted,
                event_type='ServiceFee',
                currency=fee.FeeAmount.CurrencyCode,
                amazon_order_id=event.AmazonOrderId,
                sku=event.SellerSKU,
                description=event.FeeDescription,
            ))
        return candidates

    def normalize_transaction(self, account_id: UUID, tx: Transaction) -> List[FinancialEventCandidate]:
        if tx.transactionStatus in DEFERRED_STATUSES:
            logger.debug(f"Skipping {tx.transactionStatus} transaction {tx.transactionId}")
            return []
        posted = self._posted(tx.postedDate, f"transaction {tx.transactionId}")
        if posted is None:
            return []
        common = {
            'amazon_order_id': tx.related_identifier('ORDER_ID'),
            'sku': tx.sku,
            'marketplace_id': tx.marketplace_id,
        }
        tx_id = tx.transactionId
        candidates = []
        for node in tx.breakdowns:
            if node.breakdownType == 'Sales':
                amount, currency = _node_amount(node)
                if amount == ZERO:
                    continue
                # a Sales node on a refund transaction is a Refund row, never OrderRevenue
                is_refund = (tx.transactionType or '').lower() == 'refund'
                candidates.append(FinancialEventCandidate(
                    account_id=account_id,
                    event_type='Refund' if is_refund else 'OrderRevenue',
                    posted_date=posted,
                    amount=-abs(amount) if is_refund else amount,
                    currency=currency,
                    financial_event_id=tx_id,
                    description=tx.description,
                    **common
                ))
            elif node.breakdownType == 'Expenses':
                for fee_type, (amount, currency) in _expense_fees(node).items():
                    if amount == ZERO:
                        continue
                    candidates.append(self._fee(
                        account_id, fee_type, amount, posted,
                        currency=currency,
                        financial_event_id=f"{tx_id}-{fee_type}" if tx_id else None,
                        **common
                    ))
        return candidates


def _legacy_base_id(shipment_id: Optional[str], order_id: Optional[str], posted: datetime) -> Optional[str]:
    if shipment_id:
        return shipment_id
    if order_id:
        return f"{order_id}@{posted.isoformat()}"
    return None


def _sum_charges(item: LegacyShipmentItem):
    total = ZERO
    currency = None
    for charge in item.charges:
        if charge.ChargeType not in REVENUE_CHARGE_TYPES or charge.ChargeAmount is None:
            continue
        total += charge.ChargeAmount.CurrencyAmount
        currency = currency or charge.ChargeAmount.CurrencyCode
    return total, currency


def _sum_fees(item: LegacyShipmentItem) -> Dict[str, tuple]:
    fees: Dict[str, tuple] = OrderedDict()
    for fee in item.fees:
        if fee.FeeAmount is None:
            continue
        fee_type = fee.FeeType or 'Unknown'
        amount, currency = fees.get(fee_type, (ZERO, None))
        fees[fee_type] = (amount + fee.FeeAmount.CurrencyAmount, currency or fee.FeeAmount.CurrencyCode)
    return fees


def _node_amount(node: Breakdown):
    if node.breakdownAmount is None:
        return ZERO, None
    return node.breakdownAmount.currencyAmount, node.breakdownAmount.currencyCode


def _leaves(node: Breakdown) -> Iterable[Breakdown]:
    if not node.breakdowns:
        yield node
        return
    for child in node.breakdowns:
        yield from _leaves(child)


def _expense_fees(expenses: Breakdown) -> Dict[str, tuple]:
    fees: Dict[str, tuple] = OrderedDict()

    def add(fee_type, amount, currency):
        total, cur = fees.get(fee_type, (ZERO, None))
        fees[fee_type] = (total + amount, cur or currency)

    for child in expenses.breakdowns:
        if child.breakdownType == 'AmazonFees':
            for leaf in _leaves(child):
                if leaf is child:
                    continue
                amount, currency = _node_amount(leaf)
                add(leaf.breakdownType or 'Unknown', amount, currency)
        elif child.breakdownType == 'DigitalServicesFee':
            amount, currency = _node_amount(child)
            add('DigitalServicesFee', amount, currency)
    return fees
