from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from sellerledger.schemas.settlement import LegacyShipmentEvent, Transaction
from sellerledger.services.event_normalizer import EventNormalizer, parse_legacy_events, parse_transactions
from sellerledger.services.fee_taxonomy import FeeTaxonomy

ACCOUNT_ID = uuid4()


def money(amount, code="EUR"):
    return {"CurrencyCode": code, "CurrencyAmount": amount}


def tx_money(amount, code="EUR"):
    return {"currencyCode": code, "currencyAmount": amount}


def shipment_event(**overrides):
    event = {
        "AmazonOrderId": "202-1111111-1111111",
        "ShipmentId": "SHIP-1",
        "PostedDate": "2024-03-11T08:00:00Z",
        "ShipmentItemList": [{
            "SellerSKU": "SKU-1",
            "OrderItemId": "OI-1",
            "QuantityShipped": 1,
            "ItemChargeList": [
                {"ChargeType": "Principal", "ChargeAmount": money(45.0)},
                {"ChargeType": "Tax", "ChargeAmount": money(5.0)},
            ],
            "ItemFeeList": [
                {"FeeType": "Commission", "FeeAmount": money(-1.0)},
                {"FeeType": "Commission", "FeeAmount": money(-2.0)},
                {"FeeType": "FBAPerUnitFulfillmentFee", "FeeAmount": money(-6.0)},
                {"FeeType": "GiftwrapCommission", "FeeAmount": money(0)},
            ],
        }],
    }
    event.update(overrides)
    return event


def transaction(tx_id="TX-1", status="RELEASED", tx_type="Shipment", sales=20.0):
    return {
        "transactionId": tx_id,
        "transactionType": tx_type,
        "transactionStatus": status,
        "postedDate": "2024-03-12T09:30:00Z",
        "description": "Order Payment",
        "relatedIdentifiers": [{"relatedIdentifierName": "ORDER_ID", "relatedIdentifierValue": "ORD-T1"}],
        "items": [{"contexts": [{"contextType": "ProductContext", "sku": "SKU-T", "asin": "B00T"}]}],
        "marketplaceDetails": {"marketplaceId": "A1F83G8C2ARO7P"},
        "breakdowns": [
            {"breakdownType": "Sales", "breakdownAmount": tx_money(sales)},
            {"breakdownType": "Expenses", "breakdownAmount": tx_money(-5.5), "breakdowns": [
                {"breakdownType": "AmazonFees", "breakdownAmount": tx_money(-5.5), "breakdowns": [
                    {"breakdownType": "Commission", "breakdownAmount": tx_money(-3.0)},
                    {"breakdownType": "FBAPerUnitFulfillmentFee", "breakdownAmount": tx_money(-2.5)},
                ]},
                {"breakdownType": "DigitalServicesFee", "breakdownAmount": tx_money(-0.1)},
            ]},
        ],
    }


@pytest.fixture
def normalizer():
    return EventNormalizer(FeeTaxonomy.default())


def test_parse_legacy_events_builds_tagged_records():
    page = parse_legacy_events({
        "FinancialEvents": {
            "ShipmentEventList": [shipment_event()],
            "RefundEventList": [{"AmazonOrderId": "A", "PostedDate": "2024-03-11T08:00:00Z"}],
            "ServiceFeeEventList": [{"FeeType": "SubscriptionFee", "FeeAmount": money(-39.0)}],
        },
        "NextToken": "next-page",
    })
    assert [record.kind for record in page.records] == ["shipment", "refund", "service_fee"]
    assert page.next_token == "next-page"
    assert page.dropped == 0


def test_parse_drops_malformed_records():
    page = parse_legacy_events({"FinancialEvents": {
        "ShipmentEventList": [shipment_event(), {"ShipmentItemList": "not-a-list"}],
    }})
    assert len(page.records) == 1
    assert page.dropped == 1

    page = parse_transactions({"transactions": [transaction(), {"breakdowns": 42}], "nextToken": None})
    assert len(page.records) == 1
    assert page.dropped == 1
    assert isinstance(page.records[0], Transaction)


def test_shipment_produces_revenue_and_summed_fees(normalizer):
    event = LegacyShipmentEvent.model_validate(shipment_event())
    candidates = normalizer.normalize(ACCOUNT_ID, event)

    by_id = {c.financial_event_id: c for c in candidates}
    assert set(by_id) == {
        "SHIP-1:OI-1:OrderRevenue",
        "SHIP-1:OI-1:Commission",
        "SHIP-1:OI-1:FBAPerUnitFulfillmentFee",
    }
    revenue = by_id["SHIP-1:OI-1:OrderRevenue"]
    assert revenue.event_type == "OrderRevenue"
    assert revenue.amount == Decimal("50.0")
    assert revenue.posted_date == datetime(2024, 3, 11, 8, 0, 0)
    assert revenue.sku == "SKU-1"
    commission = by_id["SHIP-1:OI-1:Commission"]
    assert commission.event_type == "Fee"
    assert commission.amount == Decimal("-3.0")
    assert commission.fee_category == "referral"
    assert by_id["SHIP-1:OI-1:FBAPerUnitFulfillmentFee"].fee_category == "fba_fulfillment"


def test_shipment_without_shipment_id_keys_on_order_and_posted_date(normalizer):
    event = LegacyShipmentEvent.model_validate(shipment_event(ShipmentId=None))
    candidates = normalizer.normalize(ACCOUNT_ID, event)
    assert candidates[0].financial_event_id == "202-1111111-1111111@2024-03-11T08:00:00:OI-1:OrderRevenue"


def test_event_without_posted_date_is_dropped(normalizer):
    event = LegacyShipmentEvent.model_validate(shipment_event(PostedDate="yesterday"))
    assert normalizer.normalize(ACCOUNT_ID, event) == []


def test_refund_is_negative(normalizer):
    page = parse_legacy_events({"FinancialEvents": {"RefundEventList": [{
        "AmazonOrderId": "202-2222222-2222222",
        "PostedDate": "2024-03-15T10:00:00Z",
        "ShipmentItemAdjustmentList": [{
            "SellerSKU": "SKU-2",
            "OrderAdjustmentItemId": "ADJ-1",
            "ItemChargeAdjustmentList": [{"ChargeType": "Principal", "ChargeAmount": money(20.0)}],
        }],
    }]}})
    [candidate] = normalizer.normalize_many(ACCOUNT_ID, page.records)
    assert candidate.event_type == "Refund"
    assert candidate.amount == Decimal("-20.0")
    assert candidate.financial_event_id == "ADJ-1:Refund"


def test_service_fee_has_no_stable_id(normalizer):
    page = parse_legacy_events({"FinancialEvents": {"ServiceFeeEventList": [{
        "PostedDate": "2024-03-01T00:00:00Z",
        "FeeList": [{"FeeType": "SubscriptionFee", "FeeAmount": money(39.0)}],
    }]}})
    [candidate] = normalizer.normalize_many(ACCOUNT_ID, page.records)
    assert candidate.event_type == "ServiceFee"
    assert candidate.amount == Decimal("-39.0")
    assert candidate.financial_event_id is None
    assert candidate.amazon_order_id is None
    assert candidate.fee_category == "service"
    assert candidate.description == "Subscription Fee"


def test_released_transaction_maps_sales_and_fee_leaves(normalizer):
    page = parse_transactions({"transactions": [transaction()]})
    candidates = normalizer.normalize_many(ACCOUNT_ID, page.records)

    by_id = {c.financial_event_id: c for c in candidates}
    assert set(by_id) == {"TX-1", "TX-1-Commission", "TX-1-FBAPerUnitFulfillmentFee", "TX-1-DigitalServicesFee"}
    assert by_id["TX-1"].event_type == "OrderRevenue"
    assert by_id["TX-1"].amount == Decimal("20.0")
    assert by_id["TX-1-DigitalServicesFee"].fee_category == "service"
    for candidate in candidates:
        assert candidate.amazon_order_id == "ORD-T1"
        assert candidate.sku == "SKU-T"
        assert candidate.marketplace_id == "A1F83G8C2ARO7P"


@pytest.mark.parametrize("status", ["DEFERRED", "DEFERRED_RELEASED"])
def test_deferred_transactions_are_excluded(normalizer, status):
    page = parse_transactions({"transactions": [transaction(status=status)]})
    assert normalizer.normalize_many(ACCOUNT_ID, page.records) == []


def test_refund_transaction_sales_become_refund(normalizer):
    page = parse_transactions({"transactions": [transaction(tx_id="TX-R", tx_type="Refund", sales=20.0)]})
    candidates = normalizer.normalize_many(ACCOUNT_ID, page.records)
    refund = next(c for c in candidates if c.financial_event_id == "TX-R")
    assert refund.event_type == "Refund"
    assert refund.amount == Decimal("-20.0")
