from datetime import date
from decimal import Decimal

from sqlalchemy import select

from sellerledger.models.ledger import FinancialEvent
from sellerledger.services.ledger_aggregator import LedgerAggregator

UK = "A1F83G8C2ARO7P"
ORDER_ID = "202-5555555-5555555"


def eur(amount):
    return {"CurrencyCode": "EUR", "CurrencyAmount": amount}


async def test_order_and_settlement_reconcile_to_profit(orchestrator, fake_client, session_factory, legacy_account):
    fake_client.order_pages[UK] = [[{
        "AmazonOrderId": ORDER_ID,
        "PurchaseDate": "2024-03-10T10:00:00Z",
        "OrderStatus": "Shipped",
        "OrderTotal": {"CurrencyCode": "EUR", "Amount": "50.00"},
        "NumberOfItemsShipped": 1,
        "MarketplaceId": UK,
        "IsBusinessOrder": False,
    }]]
    fake_client.order_items = {ORDER_ID: [{
        "OrderItemId": "OI-1",
        "SellerSKU": "SKU-1",
        "QuantityOrdered": 1,
        "ItemPrice": {"CurrencyCode": "EUR", "Amount": "50.00"},
        "ItemTax": {"CurrencyCode": "EUR", "Amount": "5.00"},
    }]}
    fake_client.financial_event_pages = [{"ShipmentEventList": [{
        "AmazonOrderId": ORDER_ID,
        "ShipmentId": "SHIP-1",
        "PostedDate": "2024-03-11T08:00:00Z",
        "ShipmentItemList": [{
            "SellerSKU": "SKU-1",
            "OrderItemId": "OI-1",
            "ItemChargeList": [
                {"ChargeType": "Principal", "ChargeAmount": eur(45.0)},
                {"ChargeType": "Tax", "ChargeAmount": eur(5.0)},
            ],
            "ItemFeeList": [{"FeeType": "FBAPerUnitFulfillmentFee", "FeeAmount": eur(-6.0)}],
        }],
    }]}]

    await orchestrator.run_order_sync(legacy_account.id, days_back=30)
    await orchestrator.run_ledger_sync(legacy_account.id, days_back=30)
    rerun = await orchestrator.run_ledger_sync(legacy_account.id, days_back=30)

    assert rerun.events_created == 0
    async with session_factory() as session:
        events = (await session.scalars(select(FinancialEvent).order_by(FinancialEvent.event_type))).all()
    assert [(e.event_type, e.amount) for e in events] == [
        ("Fee", Decimal("-6.00")),
        ("OrderRevenue", Decimal("50.00")),
    ]
    assert events[0].fee_category == "fba_fulfillment"
    assert all(e.marketplace_id == UK for e in events)

    async with session_factory() as session:
        profit = await LedgerAggregator(session).get_profit(legacy_account.id, date(2024, 3, 10), date(2024, 3, 10))
    assert profit.revenue == Decimal("50.00")
    assert profit.fees == Decimal("6.00")
    assert profit.vat == Decimal("5.00")
    assert profit.net_profit == Decimal("44.00")
