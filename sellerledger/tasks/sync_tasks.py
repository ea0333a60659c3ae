from typing import List, Optional
from uuid import UUID
from sqlalchemy import select
from sellerledger.config import settings
from sellerledger.database import AsyncSessionLocal
from sellerledger.models.core import Account
from sellerledger.services.sync_orchestrator import SyncOrchestrator
from sellerledger.utils.logger import get_loggers
logger = get_loggers("SyncTasks")


async def active_account_ids(session_factory=AsyncSessionLocal) -> List[UUID]:
    async with session_factory() as db:
        result = await db.execute(select(Account.id).where(Account.is_active.is_(True)))
        return [row[0] for row in result]


async def sync_orders_task(account_id: UUID, days_back: Optional[int] = None, use_reports: Optional[bool] = None,
                           orchestrator: Optional[SyncOrchestrator] = None) -> bool:
    orchestrator = orchestrator or SyncOrchestrator()
    try:
        result = await orchestrator.run_order_sync(
            account_id, days_back or settings.SYNC_ORDERS_DAYS_BACK, use_reports=use_reports)
        logger.info(
            f"Order sync for {account_id}: {result.orders_processed} orders, {result.failed_units} failed units")
        return True
    except Exception as e:
        logger.error(f"Order sync task failed for {account_id}: {e}")
        return False


async def sync_ledger_task(account_id: UUID, days_back: Optional[int] = None,
                           orchestrator: Optional[SyncOrchestrator] = None) -> bool:
    orchestrator = orchestrator or SyncOrchestrator()
    try:
        result = await orchestrator.run_ledger_sync(account_id, days_back or settings.LEDGER_SYNC_DAYS_BACK)
        logger.info(
            f"Ledger sync for {account_id}: {result.events_created} new of {result.events_processed} events")
        return True
    except Exception as e:
        logger.error(f"Ledger sync task failed for {account_id}: {e}")
        return False


async def sync_inventory_task(account_id: UUID, orchestrator: Optional[SyncOrchestrator] = None) -> bool:
    orchestrator = orchestrator or SyncOrchestrator()
    try:
        result = await orchestrator.run_inventory_sync(account_id)
        logger.info(f"Inventory sync for {account_id}: {result.records_processed} records")
        return True
    except Exception as e:
        logger.error(f"Inventory sync task failed for {account_id}: {e}")
        return False


async def full_sync_task(account_id: UUID) -> bool:
    """Backfill the whole retention window: orders by report, then the ledger."""
    days = settings.SYNC_MAX_RETENTION_DAYS
    orchestrator = SyncOrchestrator()
    orders_ok = await sync_orders_task(account_id, days, use_reports=True, orchestrator=orchestrator)
    ledger_ok = await sync_ledger_task(account_id, days, orchestrator=orchestrator)
    return orders_ok and ledger_ok


async def scheduled_orders_sync():
    for account_id in await active_account_ids():
        await sync_orders_task(account_id, settings.SYNC_ORDERS_DAYS_BACK, use_reports=False)


async def scheduled_ledger_sync():
    for account_id in await active_account_ids():
        await sync_ledger_task(account_id, settings.LEDGER_SYNC_DAYS_BACK)


async def scheduled_inventory_sync():
    for account_id in await active_account_ids():
        await sync_inventory_task(account_id)
