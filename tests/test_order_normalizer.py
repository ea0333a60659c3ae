from datetime import datetime
from decimal import Decimal

from sellerledger.services.order_normalizer import (
    net_price, normalize_api_order, normalize_api_order_items, normalize_report_rows,
)


def amount(value):
    return {"CurrencyCode": "EUR", "Amount": value}


def test_net_price_depends_on_order_type():
    assert net_price(Decimal("121"), Decimal("21"), is_business=False) == Decimal("100")
    assert net_price(Decimal("121"), Decimal("21"), is_business=True) == Decimal("121")


def test_normalize_api_order():
    order = normalize_api_order({
        "AmazonOrderId": "202-1234567-7654321",
        "PurchaseDate": "2024-03-10T10:15:00Z",
        "LastUpdateDate": "2024-03-11T07:00:00Z",
        "OrderStatus": "Shipped",
        "FulfillmentChannel": "AFN",
        "OrderTotal": amount("121.00"),
        "NumberOfItemsShipped": 2,
        "NumberOfItemsUnshipped": 1,
        "MarketplaceId": "A1PA6795UKMFR9",
        "IsBusinessOrder": "true",
    })
    assert order.amazon_order_id == "202-1234567-7654321"
    assert order.purchase_date == datetime(2024, 3, 10, 10, 15)
    assert order.total_amount == Decimal("121.00")
    assert order.currency == "EUR"
    assert order.number_of_items == 3
    assert order.is_business_order is True


def test_pending_order_without_total_is_zero():
    order = normalize_api_order({
        "AmazonOrderId": "202-0000000-0000001",
        "PurchaseDate": "2024-03-10T10:15:00Z",
        "OrderStatus": "Pending",
    })
    assert order.total_amount == Decimal("0")
    assert order.is_business_order is False


def test_order_without_id_or_date_is_dropped():
    assert normalize_api_order({"PurchaseDate": "2024-03-10T10:15:00Z"}) is None
    assert normalize_api_order({"AmazonOrderId": "X", "PurchaseDate": "not a date"}) is None


def test_order_items_consumer_prices_exclude_tax():
    raw = [{
        "OrderItemId": "OI-1",
        "SellerSKU": "SKU-1",
        "ASIN": "B0001",
        "QuantityOrdered": 1,
        "ItemPrice": amount("121.00"),
        "ItemTax": amount("21.00"),
        "ShippingPrice": amount("12.10"),
        "ShippingTax": amount("2.10"),
        "PromotionDiscount": amount("-5.00"),
    }, {"SellerSKU": "NO-ID"}]

    [consumer] = normalize_api_order_items(raw, is_business=False)
    assert consumer.item_price == Decimal("100.00")
    assert consumer.item_tax == Decimal("21.00")
    assert consumer.shipping_price == Decimal("10.00")
    assert consumer.promotion_discount == Decimal("5.00")

    [business] = normalize_api_order_items(raw, is_business=True)
    assert business.item_price == Decimal("121.00")
    assert business.shipping_price == Decimal("12.10")


def report_row(order_id, sku, price, tax, **extra):
    row = {
        "amazon-order-id": order_id,
        "purchase-date": "2024-03-10T10:15:00+00:00",
        "order-status": "Shipped",
        "sales-channel": "Amazon.de",
        "sku": sku,
        "asin": "B0001",
        "product-name": "Widget",
        "quantity": "1",
        "currency": "EUR",
        "item-price": price,
        "item-tax": tax,
        "shipping-price": "",
        "shipping-tax": "",
        "is-business-order": "false",
    }
    row.update(extra)
    return row


def test_report_rows_group_into_orders():
    orders = normalize_report_rows([
        report_row("ORD-1", "SKU-A", "24.00", "4.00", **{"shipping-price": "6.00", "shipping-tax": "1.00"}),
        report_row("ORD-1", "SKU-A", "24.00", "4.00", **{"item-promotion-discount": "-2.00"}),
        report_row("ORD-2", "SKU-B", "12.00", "2.00", **{"marketplace-id": "A13V1IB3VIYZZH"}),
        report_row("", "SKU-C", "1.00", "0"),
    ])

    assert [o.amazon_order_id for o in orders] == ["ORD-1", "ORD-2"]
    first = orders[0]
    assert [item.order_item_id for item in first.items] == ["SKU-A#1", "SKU-A#2"]
    assert first.total_amount == Decimal("52.00")
    assert first.number_of_items == 2
    assert first.marketplace_id == "A1PA6795UKMFR9"
    assert first.items[0].item_price == Decimal("20.00")
    assert first.items[0].shipping_price == Decimal("5.00")
    assert first.items[1].promotion_discount == Decimal("2.00")
    assert orders[1].marketplace_id == "A13V1IB3VIYZZH"
