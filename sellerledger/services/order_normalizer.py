from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from sellerledger.schemas.commerce import OrderItemUpsert, OrderUpsert
from sellerledger.utils.dates import parse_datetime
from sellerledger.utils.money import safe_decimal
from sellerledger.utils.logger import get_loggers
logger = get_loggers("OrderNormalizer")

SALES_CHANNEL_MARKETPLACES = {
    "amazon.co.uk": "A1F83G8C2ARO7P",
    "amazon.de": "A1PA6795UKMFR9",
    "amazon.fr": "A13V1IB3VIYZZH",
    "amazon.it": "APJ6JRA9NG5V4",
    "amazon.es": "A1RKKUPIHCS9HS",
    "amazon.nl": "A1805IZSGTT6HS",
}


def net_price(gross: Decimal, tax: Decimal, is_business: bool) -> Decimal:
    """B2B prices from the marketplace are already VAT exclusive, B2C prices include VAT."""
    if is_business:
        return gross
    return gross - tax


REPORT_ITEM_KEY_SEPARATOR = "#"


def report_item_key(sku: Optional[str], occurrence: int) -> str:
    """Flat-file reports carry no OrderItemId; items are keyed by SKU and occurrence instead."""
    return f"{sku or 'unknown'}{REPORT_ITEM_KEY_SEPARATOR}{occurrence}"


def is_report_item_key(key: Optional[str]) -> bool:
    return bool(key) and REPORT_ITEM_KEY_SEPARATOR in key


def _money(value: Optional[Dict[str, Any]]) -> Decimal:
    if not value:
        return Decimal("0")
    return safe_decimal(value.get('Amount'))


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ('true', '1', 'yes')


def _int(value: Any) -> int:
    try:
        return int(safe_decimal(value))
    except (ValueError, ArithmeticError):
        return 0


def normalize_api_order(raw: Dict[str, Any]) -> Optional[OrderUpsert]:
    order_id = raw.get('AmazonOrderId')
    purchase_date = parse_datetime(raw.get('PurchaseDate'))
    if not order_id or purchase_date is None:
        logger.warning(
            f"Dropping order without id or purchase date: {order_id!r}")
        return None
    total = raw.get('OrderTotal') or {}
    return OrderUpsert(
        amazon_order_id=order_id,
        purchase_date=purchase_date,
        last_updated_date=parse_datetime(raw.get('LastUpdateDate')),
        order_status=raw.get('OrderStatus'),
        fulfillment_channel=raw.get('FulfillmentChannel'),
        total_amount=_money(total),
        currency=total.get('CurrencyCode'),
        number_of_items=_int(raw.get('NumberOfItemsShipped')) + _int(raw.get('NumberOfItemsUnshipped')),
        marketplace_id=raw.get('MarketplaceId'),
        is_business_order=_flag(raw.get('IsBusinessOrder')),
    )


def normalize_api_order_items(raw_items: Iterable[Dict[str, Any]], is_business: bool) -> List[OrderItemUpsert]:
    items = []
    for raw in raw_items:
        item_id = raw.get('OrderItemId')
        if not item_id:
            logger.warning(f"Dropping order item without id: {raw.get('SellerSKU')!r}")
            continue
        item_tax = _money(raw.get('ItemTax'))
        shipping_tax = _money(raw.get('ShippingTax'))
        items.append(OrderItemUpsert(
            order_item_id=item_id,
            sku=raw.get('SellerSKU'),
            asin=raw.get('ASIN'),
            title=raw.get('Title'),
            quantity=_int(raw.get('QuantityOrdered')),
            item_price=net_price(_money(raw.get('ItemPrice')), item_tax, is_business),
            item_tax=item_tax,
            shipping_price=net_price(_money(raw.get('ShippingPrice')), shipping_tax, is_business),
            shipping_tax=shipping_tax,
            promotion_discount=abs(_money(raw.get('PromotionDiscount'))),
            gift_wrap_price=_money(raw.get('GiftWrapPrice')),
        ))
    return items


def normalize_report_rows(rows: Iterable[Dict[str, str]]) -> List[OrderUpsert]:
    """Group flat-file report rows (one per line item) into orders with items.

    Report rows carry no order item id, so items are keyed ``<sku>#<n>`` in
    row order, which is stable across re-downloads of the same report.
    """
    grouped: Dict[str, Dict[str, Any]] = OrderedDict()
    for row in rows:
        order_id = (row.get('amazon-order-id') or '').strip()
        if not order_id:
            logger.warning("Dropping report row without amazon-order-id")
            continue
        purchase_date = parse_datetime(row.get('purchase-date'))
        if purchase_date is None:
            logger.warning(f"Dropping report row for {order_id}: bad purchase-date")
            continue
        entry = grouped.get(order_id)
        if entry is None:
            entry = grouped[order_id] = {
                'row': row,
                'purchase_date': purchase_date,
                'is_business': _flag(row.get('is-business-order')),
                'items': [],
                'sku_counts': {},
                'total': Decimal("0"),
            }
        is_business = entry['is_business']
        sku = (row.get('sku') or '').strip() or None
        n = entry['sku_counts'].get(sku, 0) + 1
        entry['sku_counts'][sku] = n
        item_price = safe_decimal(row.get('item-price'))
        item_tax = safe_decimal(row.get('item-tax'))
        shipping_price = safe_decimal(row.get('shipping-price'))
        shipping_tax = safe_decimal(row.get('shipping-tax'))
        gift_wrap = safe_decimal(row.get('gift-wrap-price'))
        promotion = abs(safe_decimal(row.get('item-promotion-discount')))
        ship_promotion = abs(safe_decimal(row.get('ship-promotion-discount')))
        entry['total'] += item_price + shipping_price + gift_wrap - promotion - ship_promotion
        entry['items'].append(OrderItemUpsert(
            order_item_id=report_item_key(sku, n),
            sku=sku,
            asin=row.get('asin') or None,
            title=row.get('product-name') or None,
            quantity=_int(row.get('quantity')),
            item_price=net_price(item_price, item_tax, is_business),
            item_tax=item_tax,
            shipping_price=net_price(shipping_price, shipping_tax, is_business),
            shipping_tax=shipping_tax,
            promotion_discount=promotion,
            gift_wrap_price=gift_wrap,
        ))
    orders = []
    for order_id, entry in grouped.items():
        row = entry['row']
        orders.append(OrderUpsert(
            amazon_order_id=order_id,
            purchase_date=entry['purchase_date'],
            last_updated_date=parse_datetime(row.get('last-updated-date')),
            order_status=row.get('order-status') or None,
            fulfillment_channel=row.get('fulfillment-channel') or None,
            total_amount=entry['total'],
            currency=row.get('currency') or None,
            number_of_items=sum(item.quantity for item in entry['items']),
            marketplace_id=_report_marketplace(row),
            is_business_order=is_business,
            items=entry['items'],
        ))
    return orders


def _report_marketplace(row: Dict[str, str]) -> Optional[str]:
    if row.get('marketplace-id'):
        return row['marketplace-id']
    channel = (row.get('sales-channel') or '').strip().lower()
    return SALES_CHANNEL_MARKETPLACES.get(channel)
