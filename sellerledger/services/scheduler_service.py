from typing import Optional, Dict, List
from urllib.parse import urlparse
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.redis import RedisJobStore
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sellerledger.config import settings
from sellerledger.tasks.sync_tasks import (
    full_sync_task, scheduled_inventory_sync, scheduled_ledger_sync, scheduled_orders_sync,
)
from sellerledger.utils.logger import get_loggers
logger = get_loggers("SchedulerService")


def _redis_jobstore(url: str) -> RedisJobStore:
    parsed = urlparse(url)
    db = parsed.path.lstrip('/')
    return RedisJobStore(
        jobs_key='sellerledger.jobs',
        run_times_key='sellerledger.run_times',
        host=parsed.hostname or 'localhost',
        port=parsed.port or 6379,
        db=int(db) if db else 0,
        password=parsed.password,
    )


class SchedulerService:
    _instance: Optional['SchedulerService'] = None
    _scheduler: Optional[AsyncIOScheduler] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._scheduler is None:
            jobstores = {
                'default': _redis_jobstore(settings.REDIS_URL) if settings.REDIS_URL else MemoryJobStore()
            }
            executors = {
                'default': AsyncIOExecutor()
            }
            job_defaults = {
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 3600
            }
            SchedulerService._scheduler = AsyncIOScheduler(
                jobstores=jobstores,
                executors=executors,
                job_defaults=job_defaults,
                timezone='UTC'
            )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self):
        if not self._scheduler.running:
            self._register_jobs()
            self._scheduler.start()
            logger.info('Scheduler started')

    def shutdown(self):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")

    def _register_jobs(self):
        self._scheduler.add_job(scheduled_orders_sync, trigger=IntervalTrigger(minutes=settings.SYNC_ORDERS_INTERVAL_MINUTES),
                                id='orders_sync_all_accounts', name='Orders Sync - All Accounts', replace_existing=True)
        self._scheduler.add_job(scheduled_ledger_sync, trigger=IntervalTrigger(minutes=settings.SYNC_LEDGER_INTERVAL_MINUTES),
                                id='ledger_sync_all_accounts', name='Ledger Sync - All Accounts', replace_existing=True)
        self._scheduler.add_job(scheduled_inventory_sync, trigger=IntervalTrigger(minutes=settings.SYNC_INVENTORY_INTERVAL_MINUTES),
                                id='inventory_sync_all_accounts', name='Inventory Sync - All Accounts', replace_existing=True)
        logger.info('Scheduled sync jobs registered')

    def trigger_full_sync(self, account_id: str) -> str:
        job_id = f"full_sync_{account_id}"
        self._scheduler.add_job(full_sync_task, trigger=DateTrigger(), id=job_id,
                                name=f"Full sync for {account_id}", kwargs={'account_id': account_id},
                                replace_existing=True)
        logger.info(f"Queued full sync job {job_id}")
        return job_id

    def get_jobs(self) -> List[Dict]:
        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append({
                'id': job.id, 'name': job.name,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger)
            })
        return jobs
