from collections import defaultdict
from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from sellerledger.database import Base
from sellerledger.exceptions import UpstreamError
from sellerledger.models import commerce, core, ledger, metrics  # noqa: F401
from sellerledger.models.core import Account
from sellerledger.services.report_service import PollPolicy
from sellerledger.services.sync_orchestrator import SyncOrchestrator

UK = "A1F83G8C2ARO7P"
DE = "A1PA6795UKMFR9"
NOW = datetime(2024, 3, 31, 12, 0, 0)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def _create_account(session_factory, **overrides) -> Account:
    fields = dict(name="Test Seller", marketplace_id=UK, marketplace_ids=[UK], region="eu",
                  refresh_token="test-refresh-token", settlement_source="transactions", is_active=True)
    fields.update(overrides)
    async with session_factory() as session:
        account = Account(**fields)
        session.add(account)
        await session.commit()
        return account


@pytest_asyncio.fixture
async def account(session_factory):
    return await _create_account(session_factory)


@pytest_asyncio.fixture
async def legacy_account(session_factory):
    return await _create_account(session_factory, name="Legacy Seller", settlement_source="legacy")


class FakeAmazonClient:
    """Scripted stand-in for AmazonService.

    Pages are served in list order; the cursor handed back is ``page-<n>``.
    Exceptions queued in ``errors[method]`` are raised, one per call, before
    the method starts answering normally.
    """

    def __init__(self):
        self.order_pages = defaultdict(list)
        self.order_items = {}
        self.financial_event_pages = []
        self.transaction_pages = []
        self.inventory_pages = defaultdict(list)
        self.report_statuses = ["DONE"]
        self.report_text = ""
        self.broken_marketplaces = set()
        self.errors = defaultdict(list)
        self.calls = defaultdict(list)
        self.closed = False

    def _enter(self, method, *args):
        self.calls[method].append(args)
        pending = self.errors.get(method)
        if pending:
            raise pending.pop(0)

    @staticmethod
    def _index(next_token):
        return int(next_token.split("-")[1]) if next_token else 0

    @staticmethod
    def _next(pages, index):
        return f"page-{index + 1}" if index + 1 < len(pages) else None

    async def list_orders(self, marketplace_id, created_after=None, created_before=None,
                          last_updated_after=None, last_updated_before=None, next_token=None):
        self._enter("list_orders", marketplace_id, last_updated_after, last_updated_before, next_token)
        if marketplace_id in self.broken_marketplaces:
            raise UpstreamError(f"Access denied for {marketplace_id}", status_code=403)
        pages = self.order_pages[marketplace_id]
        index = self._index(next_token)
        return {"Orders": pages[index] if pages else [], "NextToken": self._next(pages, index)}

    async def list_order_items(self, amazon_order_id, next_token=None):
        self._enter("list_order_items", amazon_order_id)
        return {"OrderItems": self.order_items.get(amazon_order_id, [])}

    async def list_financial_events(self, posted_after, posted_before, next_token=None):
        self._enter("list_financial_events", posted_after, posted_before, next_token)
        pages = self.financial_event_pages
        index = self._index(next_token)
        return {"FinancialEvents": pages[index] if pages else {}, "NextToken": self._next(pages, index)}

    async def list_transactions(self, posted_after, posted_before, marketplace_id=None, next_token=None):
        self._enter("list_transactions", posted_after, posted_before, next_token)
        pages = self.transaction_pages
        index = self._index(next_token)
        return {"transactions": pages[index] if pages else [], "nextToken": self._next(pages, index)}

    async def create_report(self, marketplace_ids, data_start, data_end, report_type=None):
        self._enter("create_report", list(marketplace_ids), data_start, data_end)
        return "REPORT-1"

    async def get_report(self, report_id):
        self._enter("get_report", report_id)
        status = self.report_statuses.pop(0) if len(self.report_statuses) > 1 else self.report_statuses[0]
        return {"reportId": report_id, "processingStatus": status,
                "reportDocumentId": "DOC-1" if status == "DONE" else None}

    async def get_report_document(self, document_id):
        self._enter("get_report_document", document_id)
        return {"reportDocumentId": document_id, "url": "https://reports.example.com/DOC-1"}

    async def download_report_document(self, document):
        self._enter("download_report_document", document["reportDocumentId"])
        return self.report_text

    async def get_inventory_summaries(self, marketplace_id, next_token=None):
        self._enter("get_inventory_summaries", marketplace_id, next_token)
        pages = self.inventory_pages[marketplace_id]
        index = self._index(next_token)
        return {"inventorySummaries": pages[index] if pages else [], "nextToken": self._next(pages, index)}

    async def close_client(self):
        self.closed = True


@pytest.fixture
def fake_client():
    return FakeAmazonClient()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def orchestrator(session_factory, fake_client, sleeps):
    async def record_sleep(seconds):
        sleeps.append(seconds)

    return SyncOrchestrator(
        session_factory=session_factory,
        client_factory=lambda account: fake_client,
        clock=lambda: NOW,
        sleep=record_sleep,
        concurrency=1,
        poll_policy=PollPolicy(0, 3),
    )
