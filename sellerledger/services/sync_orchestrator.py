import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID
from sellerledger.config import settings
from sellerledger.database import AsyncSessionLocal
from sellerledger.exceptions import AccountNotFoundError, ReportTimeoutError
from sellerledger.models.core import Account, SyncJob
from sellerledger.schemas.commerce import InventoryUpsert
from sellerledger.schemas.ledger import FinancialEventCandidate
from sellerledger.schemas.sync import DateChunk, SyncResult
from sellerledger.services.amazon_service import AmazonService
from sellerledger.services.deduplication import LedgerWriter
from sellerledger.services.event_normalizer import EventNormalizer, parse_legacy_events, parse_transactions
from sellerledger.services.fee_taxonomy import FeeTaxonomy
from sellerledger.services.order_normalizer import normalize_api_order, normalize_api_order_items, normalize_report_rows
from sellerledger.services.order_store import OrderStore
from sellerledger.services.report_service import PollPolicy, ReportService
from sellerledger.utils.dates import parse_datetime, utcnow
from sellerledger.utils.retry_decorators import page_retry
from sellerledger.utils.logger import get_loggers
logger = get_loggers("SyncOrchestrator")

# raised out of a unit, these abort the whole run instead of skipping the unit
FATAL_ERRORS = (AccountNotFoundError, ReportTimeoutError)
MAX_ERROR_LENGTH = 500


def build_date_chunks(end: datetime, days_back: int, chunk_days: int = 30) -> List[DateChunk]:
    """Contiguous windows tiling [end - days_back, end), newest first."""
    if chunk_days <= 0:
        raise ValueError("chunk_days must be positive")
    start = end - timedelta(days=days_back)
    chunks = []
    cursor = end
    while cursor > start:
        chunk_start = max(cursor - timedelta(days=chunk_days), start)
        chunks.append(DateChunk(start=chunk_start, end=cursor))
        cursor = chunk_start
    return chunks


def clamp_days_back(days_back: int, max_days: int) -> int:
    if days_back <= 0:
        raise ValueError("days_back must be positive")
    if days_back > max_days:
        logger.warning(
            f"days_back {days_back} exceeds the {max_days} day retention window, clamping")
        return max_days
    return days_back


async def _safe_close(client):
    close = getattr(client, 'close_client', None)
    if close is None:
        return
    try:
        await close()
    except Exception as e:
        logger.warning(f"Error closing upstream client: {e}")


class SyncOrchestrator:
    def __init__(self, session_factory=None, client_factory: Optional[Callable[[Account], Any]] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None,
                 concurrency: Optional[int] = None, chunk_days: Optional[int] = None,
                 max_retention_days: Optional[int] = None, safety_margin: Optional[timedelta] = None,
                 poll_policy: Optional[PollPolicy] = None, page_retry_attempts: Optional[int] = None,
                 batch_size: Optional[int] = None, writer: Optional[LedgerWriter] = None):
        self.session_factory = session_factory or AsyncSessionLocal
        self.client_factory = client_factory or AmazonService.from_account
        self.clock = clock or utcnow
        self.sleep = sleep or asyncio.sleep
        self.concurrency = concurrency or settings.SYNC_CONCURRENCY
        self.chunk_days = chunk_days or settings.SYNC_CHUNK_DAYS
        self.max_retention_days = max_retention_days or settings.SYNC_MAX_RETENTION_DAYS
        self.safety_margin = safety_margin if safety_margin is not None else timedelta(
            minutes=settings.SYNC_SAFETY_MARGIN_MINUTES)
        self.poll_policy = poll_policy or PollPolicy.from_settings()
        self.page_retry_attempts = page_retry_attempts or settings.PAGE_RETRY_ATTEMPTS
        self.batch_size = batch_size or settings.ORDER_SYNC_BATCH_SIZE
        self.writer = writer or LedgerWriter()

    def _retrying(self):
        return page_retry(self.page_retry_attempts, settings.PAGE_RETRY_MIN_WAIT,
                          settings.PAGE_RETRY_MAX_WAIT, sleep=self.sleep)

    async def _fetch_page(self, fn, *args, **kwargs):
        async for attempt in self._retrying():
            with attempt:
                return await fn(*args, **kwargs)

    async def _start_job(self, account_id: UUID, job_type: str) -> UUID:
        async with self.session_factory() as db:
            job = SyncJob(account_id=account_id, job_type=job_type,
                          status='running', started_at=self.clock())
            db.add(job)
            await db.commit()
            return job.id

    async def _finish_job(self, job_id: UUID, status: str, records: int, error: Optional[str] = None):
        async with self.session_factory() as db:
            job = await db.get(SyncJob, job_id)
            job.status = status
            job.records_processed = records
            job.completed_at = self.clock()
            if error:
                job.error = error[:MAX_ERROR_LENGTH]
            await db.commit()

    async def _run_job(self, account_id, job_type: str, body: Callable[[Account], Awaitable[SyncResult]]) -> SyncResult:
        account_id = account_id if isinstance(account_id, UUID) else UUID(str(account_id))
        job_id = await self._start_job(account_id, job_type)
        logger.info(f"Started {job_type} sync job {job_id} for account {account_id}")
        try:
            account = await self._load_account(account_id)
            result = await body(account)
        except asyncio.CancelledError:
            await self._finish_job(job_id, 'failed', 0, 'cancelled')
            raise
        except Exception as e:
            logger.error(f"{job_type} sync job {job_id} failed: {e}")
            await self._finish_job(job_id, 'failed', 0, f"{type(e).__name__}: {e}")
            raise
        result.job_id = job_id
        await self._finish_job(job_id, 'completed', result.records_processed)
        await self._touch_account(account_id)
        logger.info(
            f"Completed {job_type} sync job {job_id}: {result.records_processed} records, {result.failed_units} failed units")
        return result

    async def _load_account(self, account_id: UUID) -> Account:
        async with self.session_factory() as db:
            account = await db.get(Account, account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            return account

    async def _touch_account(self, account_id: UUID):
        async with self.session_factory() as db:
            account = await db.get(Account, account_id)
            if account is not None:
                account.last_sync_at = self.clock()
                await db.commit()

    async def _load_taxonomy(self) -> FeeTaxonomy:
        async with self.session_factory() as db:
            return await FeeTaxonomy.load(db)

    def resolve_marketplaces(self, account: Account, scope: Optional[Sequence[str]] = None) -> List[str]:
        for candidate in (scope, account.marketplace_ids, settings.MARKETPLACE_IDS):
            if candidate:
                return list(dict.fromkeys(candidate))
        return [account.marketplace_id]

    def _window(self, days_back: int) -> List[DateChunk]:
        days = clamp_days_back(days_back, self.max_retention_days)
        end = self.clock() - self.safety_margin
        return build_date_chunks(end, days, self.chunk_days)

    async def _run_units(self, label: str, units: List[Tuple[Any, DateChunk]], worker) -> Tuple[List[Any], int]:
        """Run independent (scope, chunk) units with bounded concurrency.

        A failing unit is logged and counted; fatal errors cancel the rest.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(scope, chunk):
            async with semaphore:
                try:
                    return await worker(scope, chunk)
                except FATAL_ERRORS:
                    raise
                except Exception as e:
                    logger.error(
                        f"{label} unit {scope} {chunk.start:%Y-%m-%d}..{chunk.end:%Y-%m-%d} failed: {e}")
                    return None

        tasks = [asyncio.ensure_future(guarded(scope, chunk)) for scope, chunk in units]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        failed = sum(1 for r in results if r is None)
        return [r for r in results if r is not None], failed

    async def run_order_sync(self, account_id, days_back: int, marketplace_scope: Optional[Sequence[str]] = None,
                             use_reports: Optional[bool] = None) -> SyncResult:
        chunks = self._window(days_back)
        reports = use_reports if use_reports is not None else days_back > settings.REPORT_SYNC_THRESHOLD_DAYS

        async def body(account: Account) -> SyncResult:
            marketplaces = self.resolve_marketplaces(account, marketplace_scope)
            client = self.client_factory(account)
            try:
                if reports:
                    logger.info(
                        f"Report order sync for {account.id}: {len(chunks)} chunks over {len(marketplaces)} marketplaces")
                    units = [(tuple(marketplaces), chunk) for chunk in chunks]

                    async def worker(scope, chunk):
                        return await self._sync_report_unit(account, client, list(scope), chunk)
                else:
                    logger.info(
                        f"Order sync for {account.id}: {len(chunks)} chunks x {len(marketplaces)} marketplaces")
                    units = [(marketplace, chunk) for marketplace in marketplaces for chunk in chunks]

                    async def worker(scope, chunk):
                        return await self._sync_orders_unit(account, client, scope, chunk)
                results, failed = await self._run_units('orders', units, worker)
            finally:
                await _safe_close(client)
            orders = sum(r[0] for r in results)
            items = sum(r[1] for r in results)
            return SyncResult(orders_processed=orders, items_processed=items,
                              records_processed=orders, failed_units=failed)

        return await self._run_job(account_id, 'orders', body)

    async def _fetch_order_items(self, client, amazon_order_id: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        next_token = None
        while True:
            payload = await self._fetch_page(client.list_order_items, amazon_order_id, next_token=next_token)
            items.extend(payload.get('OrderItems') or [])
            next_token = payload.get('NextToken')
            if not next_token:
                return items

    async def _sync_orders_unit(self, account: Account, client, marketplace_id: str, chunk: DateChunk) -> Tuple[int, int]:
        orders = items = 0
        next_token = None
        async with self.session_factory() as db:
            store = OrderStore(db, account.id)
            while True:
                payload = await self._fetch_page(
                    client.list_orders, marketplace_id,
                    last_updated_after=chunk.start, last_updated_before=chunk.end, next_token=next_token)
                for raw in payload.get('Orders') or []:
                    data = normalize_api_order(raw)
                    if data is None:
                        continue
                    if not data.marketplace_id:
                        data.marketplace_id = marketplace_id
                    order = await store.upsert_order(data)
                    raw_items = await self._fetch_order_items(client, data.amazon_order_id)
                    items += await store.upsert_items(
                        order, normalize_api_order_items(raw_items, data.is_business_order))
                    orders += 1
                    if orders % self.batch_size == 0:
                        await db.commit()
                await db.commit()
                next_token = payload.get('NextToken')
                if not next_token:
                    break
        logger.info(
            f"Orders {marketplace_id} {chunk.start:%Y-%m-%d}..{chunk.end:%Y-%m-%d}: {orders} orders, {items} items")
        return orders, items

    async def _sync_report_unit(self, account: Account, client, marketplaces: List[str], chunk: DateChunk) -> Tuple[int, int]:
        reports = ReportService(client, self.poll_policy, self.sleep, self._retrying)
        rows = await reports.fetch_order_rows(marketplaces, chunk.start, chunk.end)
        orders = items = 0
        async with self.session_factory() as db:
            store = OrderStore(db, account.id)
            for data in normalize_report_rows(rows):
                if not data.marketplace_id:
                    data.marketplace_id = account.marketplace_id
                order = await store.upsert_order(data)
                items += await store.upsert_items(order, data.items or [])
                orders += 1
                if orders % self.batch_size == 0:
                    await db.commit()
            await db.commit()
        logger.info(
            f"Report {chunk.start:%Y-%m-%d}..{chunk.end:%Y-%m-%d}: {orders} orders, {items} items")
        return orders, items

    async def run_ledger_sync(self, account_id, days_back: int) -> SyncResult:
        chunks = self._window(days_back)

        async def body(account: Account) -> SyncResult:
            normalizer = EventNormalizer(await self._load_taxonomy())
            client = self.client_factory(account)
            if account.settlement_source == 'legacy':
                fetch, parse = client.list_financial_events, parse_legacy_events
            else:
                fetch, parse = client.list_transactions, parse_transactions
            logger.info(
                f"Ledger sync for {account.id} from {account.settlement_source} source: {len(chunks)} chunks")

            async def worker(scope, chunk):
                return await self._sync_ledger_unit(account, normalizer, fetch, parse, chunk)
            try:
                results, failed = await self._run_units(
                    'ledger', [(account.settlement_source, chunk) for chunk in chunks], worker)
            finally:
                await _safe_close(client)
            processed = sum(r[0] for r in results)
            created = sum(r[1] for r in results)
            return SyncResult(events_processed=processed, events_created=created,
                              records_processed=processed, failed_units=failed)

        return await self._run_job(account_id, 'ledger', body)

    async def _sync_ledger_unit(self, account: Account, normalizer: EventNormalizer, fetch, parse,
                                chunk: DateChunk) -> Tuple[int, int]:
        processed = created = 0
        next_token = None
        async with self.session_factory() as db:
            store = OrderStore(db, account.id)
            while True:
                payload = await self._fetch_page(fetch, chunk.start, chunk.end, next_token=next_token)
                page = parse(payload)
                candidates = normalizer.normalize_many(account.id, page.records)
                candidates = await self._with_marketplace(store, account, candidates)
                created += await self.writer.record_page(db, account.id, candidates)
                processed += len(candidates)
                next_token = page.next_token
                if not next_token:
                    break
        logger.info(
            f"Ledger {chunk.start:%Y-%m-%d}..{chunk.end:%Y-%m-%d}: {processed} events, {created} new")
        return processed, created

    async def _with_marketplace(self, store: OrderStore, account: Account,
                                candidates: List[FinancialEventCandidate]) -> List[FinancialEventCandidate]:
        missing = [c.amazon_order_id for c in candidates if not c.marketplace_id]
        if not missing:
            return candidates
        known = await store.order_marketplaces(missing)
        resolved = []
        for candidate in candidates:
            if not candidate.marketplace_id:
                candidate = candidate.model_copy(update={
                    'marketplace_id': known.get(candidate.amazon_order_id) or account.marketplace_id})
            resolved.append(candidate)
        return resolved

    async def run_inventory_sync(self, account_id, marketplace_scope: Optional[Sequence[str]] = None) -> SyncResult:
        async def body(account: Account) -> SyncResult:
            marketplaces = self.resolve_marketplaces(account, marketplace_scope)
            client = self.client_factory(account)
            now = self.clock()
            snapshot = DateChunk(start=now, end=now)

            async def worker(scope, chunk):
                return await self._sync_inventory_unit(account, client, scope)
            try:
                results, failed = await self._run_units(
                    'inventory', [(marketplace, snapshot) for marketplace in marketplaces], worker)
            finally:
                await _safe_close(client)
            records = sum(results)
            return SyncResult(records_processed=records, failed_units=failed)

        return await self._run_job(account_id, 'inventory', body)

    async def _sync_inventory_unit(self, account: Account, client, marketplace_id: str) -> int:
        records = 0
        next_token = None
        async with self.session_factory() as db:
            store = OrderStore(db, account.id)
            while True:
                payload = await self._fetch_page(client.get_inventory_summaries, marketplace_id, next_token=next_token)
                for summary in payload.get('inventorySummaries') or []:
                    data = _inventory_record(summary, marketplace_id)
                    if data is None:
                        continue
                    await store.upsert_inventory(data)
                    records += 1
                await db.commit()
                next_token = payload.get('nextToken')
                if not next_token:
                    break
        logger.info(f"Inventory {marketplace_id}: {records} records")
        return records


def _qty(value: Any, total_key: str = '') -> int:
    if isinstance(value, dict):
        value = value.get(total_key, 0)
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _inventory_record(summary: Dict[str, Any], marketplace_id: str) -> Optional[InventoryUpsert]:
    sku = summary.get('sellerSku')
    if not sku:
        logger.warning(f"Dropping inventory summary without sellerSku: {summary.get('asin')!r}")
        return None
    details = summary.get('inventoryDetails') or {}
    return InventoryUpsert(
        sku=sku,
        asin=summary.get('asin'),
        fn_sku=summary.get('fnSku'),
        title=summary.get('productName'),
        marketplace_id=marketplace_id,
        fulfillable_qty=_qty(details.get('fulfillableQuantity')),
        inbound_qty=(_qty(details.get('inboundWorkingQuantity')) + _qty(details.get('inboundShippedQuantity'))
                     + _qty(details.get('inboundReceivingQuantity'))),
        reserved_qty=_qty(details.get('reservedQuantity'), 'totalReservedQuantity'),
        unfulfillable_qty=_qty(details.get('unfulfillableQuantity'), 'totalUnfulfillableQuantity'),
        last_updated=parse_datetime(summary.get('lastUpdatedTime')),
    )
