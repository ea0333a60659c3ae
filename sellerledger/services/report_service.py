import asyncio
import csv
import io
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional
from sellerledger.config import settings
from sellerledger.exceptions import ReportGenerationError, ReportTimeoutError
from sellerledger.utils.retry_decorators import page_retry
from sellerledger.utils.logger import get_loggers
logger = get_loggers("ReportService")

DONE = 'DONE'
FAILED_STATUSES = ('FATAL', 'CANCELLED')


class PollPolicy(NamedTuple):
    interval_seconds: float
    max_attempts: int

    @classmethod
    def from_settings(cls) -> 'PollPolicy':
        return cls(settings.REPORT_POLL_INTERVAL_SECONDS, settings.REPORT_MAX_POLL_ATTEMPTS)


def parse_flat_file(text: str) -> List[Dict[str, str]]:
    """Tab separated flat file with a header row. Cells are stripped."""
    text = text.lstrip('\ufeff')
    reader = csv.DictReader(io.StringIO(text), delimiter='\t', quoting=csv.QUOTE_NONE)
    rows = []
    for row in reader:
        rows.append({(key or '').strip(): (value or '').strip()
                    for key, value in row.items() if key is not None})
    return rows


class ReportService:
    def __init__(self, client, poll_policy: Optional[PollPolicy] = None,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None, retry_factory=None):
        self.client = client
        self.poll_policy = poll_policy or PollPolicy.from_settings()
        self.sleep = sleep or asyncio.sleep
        self.retry_factory = retry_factory or (lambda: page_retry(
            settings.PAGE_RETRY_ATTEMPTS, settings.PAGE_RETRY_MIN_WAIT, settings.PAGE_RETRY_MAX_WAIT, sleep=self.sleep))

    async def _call(self, fn, *args, **kwargs):
        async for attempt in self.retry_factory():
            with attempt:
                return await fn(*args, **kwargs)

    async def wait_for_document(self, report_id: str) -> str:
        policy = self.poll_policy
        for attempt in range(1, policy.max_attempts + 1):
            report = await self._call(self.client.get_report, report_id)
            status = report.get('processingStatus')
            if status == DONE:
                document_id = report.get('reportDocumentId')
                if not document_id:
                    raise ReportGenerationError(report_id, 'DONE_NO_DOCUMENT')
                logger.info(f"Report {report_id} ready after {attempt} polls")
                return document_id
            if status in FAILED_STATUSES:
                raise ReportGenerationError(report_id, status)
            logger.debug(
                f"Report {report_id} is {status}, poll {attempt}/{policy.max_attempts}")
            if attempt < policy.max_attempts:
                await self.sleep(policy.interval_seconds)
        raise ReportTimeoutError(report_id, policy.max_attempts)

    async def download_rows(self, document_id: str) -> List[Dict[str, str]]:
        document = await self._call(self.client.get_report_document, document_id)
        text = await self._call(self.client.download_report_document, document)
        rows = parse_flat_file(text)
        logger.info(f"Parsed {len(rows)} rows from report document {document_id}")
        return rows

    async def fetch_order_rows(self, marketplace_ids: List[str], start: datetime, end: datetime) -> List[Dict[str, str]]:
        report_id = await self._call(self.client.create_report, marketplace_ids, start, end)
        document_id = await self.wait_for_document(report_id)
        return await self.download_rows(document_id)
