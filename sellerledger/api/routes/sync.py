from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID

from sellerledger.api.dependencies import get_account
from sellerledger.config import settings
from sellerledger.database import get_db
from sellerledger.models.core import Account, SyncJob
from sellerledger.schemas.sync import SyncJobResponse
from sellerledger.services.scheduler_service import SchedulerService
from sellerledger.tasks.sync_tasks import full_sync_task, sync_inventory_task, sync_ledger_task, sync_orders_task

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/scheduler/jobs")
async def list_scheduled_jobs():
    jobs = SchedulerService().get_jobs()
    return {
        "success": True,
        "data": jobs,
        "message": f"{len(jobs)} scheduled jobs"
    }


@router.post("/{account_id}/orders")
async def sync_orders(
    background_tasks: BackgroundTasks,
    days_back: int = Query(7, ge=1, le=729, description="Days of order history to sync"),
    use_reports: Optional[bool] = Query(None, description="Force the bulk report strategy"),
    account: Account = Depends(get_account),
):
    background_tasks.add_task(sync_orders_task, account.id, days_back, use_reports)
    return {
        "success": True,
        "data": {"account_id": str(account.id), "days_back": days_back},
        "message": "Order sync started in background"
    }


@router.post("/{account_id}/ledger")
async def sync_ledger(
    background_tasks: BackgroundTasks,
    days_back: int = Query(settings.LEDGER_SYNC_DAYS_BACK, ge=1, le=729, description="Days of settlements to sync"),
    account: Account = Depends(get_account),
):
    background_tasks.add_task(sync_ledger_task, account.id, days_back)
    return {
        "success": True,
        "data": {"account_id": str(account.id), "days_back": days_back,
                 "settlement_source": account.settlement_source},
        "message": "Ledger sync started in background"
    }


@router.post("/{account_id}/inventory")
async def sync_inventory(background_tasks: BackgroundTasks, account: Account = Depends(get_account)):
    background_tasks.add_task(sync_inventory_task, account.id)
    return {
        "success": True,
        "data": {"account_id": str(account.id)},
        "message": "Inventory sync started in background"
    }


@router.post("/{account_id}/full")
async def sync_full(background_tasks: BackgroundTasks, account: Account = Depends(get_account)):
    scheduler = SchedulerService()
    if scheduler.running:
        scheduler.trigger_full_sync(str(account.id))
    else:
        background_tasks.add_task(full_sync_task, account.id)
    return {
        "success": True,
        "data": {"account_id": str(account.id), "days_back": settings.SYNC_MAX_RETENTION_DAYS},
        "message": "Full backfill started in background"
    }


@router.get("/{account_id}/jobs")
async def list_sync_jobs(
    account_id: UUID,
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(SyncJob).where(SyncJob.account_id == account_id)
        .order_by(SyncJob.started_at.desc()).limit(limit)
    )
    jobs = result.scalars().all()
    return {
        "success": True,
        "data": [SyncJobResponse.model_validate(job).model_dump(mode='json') for job in jobs],
        "message": f"{len(jobs)} sync jobs"
    }


@router.get("/jobs/{job_id}")
async def get_sync_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    job = await db.get(SyncJob, job_id)
    if job is None:
        raise HTTPException(404, f"Sync job {job_id} not found")
    return {
        "success": True,
        "data": SyncJobResponse.model_validate(job).model_dump(mode='json'),
        "message": "Sync job retrieved"
    }
