#!/usr/bin/env python3
"""
Remove duplicate financial events written before the ledger writer deduplicated
on arrival. Rows with the same account, order, sku, fee type and event type whose
posted dates and amounts fall inside the dedup tolerances collapse to the earliest
stored row.
"""

import argparse
import asyncio
from itertools import groupby
from typing import List, Optional
from uuid import UUID
import dotenv
dotenv.load_dotenv()

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sellerledger.database import AsyncSessionLocal, shutdown_databases
from sellerledger.models.ledger import FinancialEvent
from sellerledger.services.deduplication import AMOUNT_TOLERANCE, POSTED_DATE_TOLERANCE
from sellerledger.utils.logger import get_loggers

logger = get_loggers("CleanupLedgerDuplicates")


def _group_key(event: FinancialEvent):
    return (event.account_id, event.amazon_order_id or '', event.sku or '',
            event.fee_type or '', event.event_type)


def find_duplicates(events: List[FinancialEvent]) -> List[FinancialEvent]:
    """Return the rows to delete. ``events`` must be sorted by group key then posted date."""
    doomed = []
    for _, group in groupby(events, key=_group_key):
        kept: List[FinancialEvent] = []
        for event in group:
            twin = next((k for k in kept
                         if abs(k.posted_date - event.posted_date) <= POSTED_DATE_TOLERANCE
                         and abs(k.amount - event.amount) <= AMOUNT_TOLERANCE), None)
            if twin is None:
                kept.append(event)
            elif event.financial_event_id and twin.financial_event_id and event.financial_event_id != twin.financial_event_id:
                # distinct stable ids are distinct facts
                kept.append(event)
            else:
                doomed.append(event)
    return doomed


async def cleanup(db: AsyncSession, account_id: Optional[UUID] = None, dry_run: bool = False) -> int:
    query = select(FinancialEvent)
    if account_id:
        query = query.where(FinancialEvent.account_id == account_id)
    events = (await db.execute(query)).scalars().all()
    events = sorted(events, key=lambda e: (_group_key(e), e.posted_date))
    doomed = find_duplicates(events)
    for event in doomed:
        logger.info(f"{'Would delete' if dry_run else 'Deleting'} {event.event_type} {event.amount} "
                    f"order={event.amazon_order_id} sku={event.sku} posted={event.posted_date}")
    if doomed and not dry_run:
        await db.execute(delete(FinancialEvent).where(FinancialEvent.id.in_([e.id for e in doomed])))
        await db.commit()
    return len(doomed)


async def main():
    parser = argparse.ArgumentParser(description="Collapse duplicate financial events")
    parser.add_argument("--account-id", type=UUID, default=None, help="Only clean this account")
    parser.add_argument("--dry-run", action="store_true", help="Report duplicates without deleting")
    args = parser.parse_args()
    try:
        async with AsyncSessionLocal() as db:
            count = await cleanup(db, args.account_id, args.dry_run)
        logger.info(f"{count} duplicate financial events {'found' if args.dry_run else 'removed'}")
    finally:
        await shutdown_databases()


if __name__ == "__main__":
    asyncio.run(main())
