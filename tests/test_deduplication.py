import asyncio
import gc
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select

from sellerledger.models.ledger import FinancialEvent
from sellerledger.schemas.ledger import FinancialEventCandidate
from sellerledger.services import deduplication
from sellerledger.services.deduplication import LedgerWriter

POSTED = datetime(2024, 3, 11, 8, 0, 0)


def candidate(account_id, **overrides):
    fields = dict(
        account_id=account_id,
        event_type="Fee",
        posted_date=POSTED,
        amount=Decimal("-6.00"),
        amazon_order_id="202-1111111-1111111",
        sku="SKU-1",
        fee_type="FBAPerUnitFulfillmentFee",
        fee_category="fba_fulfillment",
    )
    fields.update(overrides)
    return FinancialEventCandidate(**fields)


async def count_events(session_factory):
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(FinancialEvent))


async def test_stable_id_match_skips_duplicate(db, session_factory, account):
    writer = LedgerWriter()
    assert await writer.record(db, candidate(account.id, financial_event_id="TX-1-Fee")) is True
    # same id, drifted amount and date: still the same upstream fact
    again = candidate(account.id, financial_event_id="TX-1-Fee",
                      amount=Decimal("-6.50"), posted_date=POSTED + timedelta(hours=1))
    assert await writer.record(db, again) is False
    assert await count_events(session_factory) == 1


async def test_tolerance_window_collapses_near_duplicates(db, session_factory, account):
    writer = LedgerWriter()
    assert await writer.record(db, candidate(account.id)) is True
    near = candidate(account.id, posted_date=POSTED + timedelta(milliseconds=500), amount=Decimal("-6.005"))
    assert await writer.record(db, near) is False
    assert await count_events(session_factory) == 1


async def test_facts_outside_tolerance_are_kept(db, session_factory, account):
    writer = LedgerWriter()
    assert await writer.record(db, candidate(account.id)) is True
    assert await writer.record(db, candidate(account.id, amount=Decimal("-6.02"))) is True
    assert await writer.record(db, candidate(account.id, posted_date=POSTED + timedelta(seconds=2))) is True
    assert await writer.record(db, candidate(account.id, fee_type="Commission")) is True
    assert await writer.record(db, candidate(account.id, sku=None)) is True
    assert await count_events(session_factory) == 5



async def test_distinct_stable_ids_are_never_collapsed(db, session_factory, account):
    writer = LedgerWriter()
    revenue = dict(event_type="OrderRevenue", amount=Decimal("20.00"), fee_type=None, fee_category=None)
    assert await writer.record(db, candidate(account.id, financial_event_id="TX-A", **revenue)) is True
    assert await writer.record(db, candidate(account.id, financial_event_id="TX-B", **revenue)) is True
    assert await count_events(session_factory) == 2


async def test_unidentified_fact_matches_an_identified_row(db, session_factory, account):
    writer = LedgerWriter()
    assert await writer.record(db, candidate(account.id, financial_event_id="SHIP-1:OI-1:Fee")) is True
    assert await writer.record(db, candidate(account.id)) is False
    assert await count_events(session_factory) == 1

async def test_record_page_counts_only_new_rows(db, session_factory, account):
    writer = LedgerWriter()
    page = [
        candidate(account.id, financial_event_id="A"),
        candidate(account.id, financial_event_id="A"),
        candidate(account.id, event_type="OrderRevenue", amount=Decimal("50.00"), fee_type=None,
                  fee_category=None, financial_event_id="B"),
    ]
    assert await writer.record_page(db, account.id, page) == 2
    assert await writer.record_page(db, account.id, page) == 0
    assert await count_events(session_factory) == 2


async def test_concurrent_writers_store_a_fact_once(session_factory, account):
    writer = LedgerWriter()
    page = [candidate(account.id), candidate(account.id, event_type="OrderRevenue",
                                             amount=Decimal("50.00"), fee_type=None, fee_category=None)]

    async def write():
        async with session_factory() as session:
            return await writer.record_page(session, account.id, page)

    created = await asyncio.gather(write(), write(), write())

    assert sum(created) == 2
    assert await count_events(session_factory) == 2


async def test_amounts_are_stored_to_the_cent(db, session_factory, account):
    await LedgerWriter().record(db, candidate(account.id, amount=Decimal("-6.005")))
    async with session_factory() as session:
        stored = (await session.execute(select(FinancialEvent))).scalar_one()
    assert stored.amount == Decimal("-6.01")


async def test_account_locks_are_released_after_writes(db, account):
    await LedgerWriter().record(db, candidate(account.id))
    gc.collect()
    assert account.id not in deduplication._account_locks
