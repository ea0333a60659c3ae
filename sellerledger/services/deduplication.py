import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence
from uuid import UUID
from weakref import WeakValueDictionary
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sellerledger.models.ledger import FinancialEvent
from sellerledger.schemas.ledger import FinancialEventCandidate
from sellerledger.utils.money import to_cents
from sellerledger.utils.logger import get_loggers
logger = get_loggers("Deduplication")

POSTED_DATE_TOLERANCE = timedelta(seconds=1)
AMOUNT_TOLERANCE = Decimal("0.01")

# entries vanish once no writer holds or waits on the lock
_account_locks: "WeakValueDictionary[UUID, asyncio.Lock]" = WeakValueDictionary()


def account_lock(account_id: UUID) -> asyncio.Lock:
    lock = _account_locks.get(account_id)
    if lock is None:
        lock = _account_locks[account_id] = asyncio.Lock()
    return lock


def _null_safe_eq(column, value):
    if value is None:
        return column.is_(None)
    return column == value


class StableIdMatcher:
    name = 'stable_id'

    async def find(self, db: AsyncSession, candidate: FinancialEventCandidate) -> Optional[FinancialEvent]:
        if not candidate.financial_event_id:
            return None
        result = await db.execute(select(FinancialEvent).where(and_(
            FinancialEvent.account_id == candidate.account_id,
            FinancialEvent.financial_event_id == candidate.financial_event_id,
        )).limit(1))
        return result.scalars().first()


class ToleranceWindowMatcher:
    """Same logical fact reported twice with clock skew or rounding drift."""
    name = 'tolerance_window'

    def __init__(self, posted_tolerance: timedelta = POSTED_DATE_TOLERANCE, amount_tolerance: Decimal = AMOUNT_TOLERANCE):
        self.posted_tolerance = posted_tolerance
        self.amount_tolerance = amount_tolerance

    async def find(self, db: AsyncSession, candidate: FinancialEventCandidate) -> Optional[FinancialEvent]:
        # distinct stable ids are distinct facts
        if candidate.financial_event_id:
            return None
        result = await db.execute(select(FinancialEvent).where(and_(
            FinancialEvent.account_id == candidate.account_id,
            FinancialEvent.event_type == candidate.event_type,
            _null_safe_eq(FinancialEvent.amazon_order_id, candidate.amazon_order_id),
            _null_safe_eq(FinancialEvent.sku, candidate.sku),
            _null_safe_eq(FinancialEvent.fee_type, candidate.fee_type),
            FinancialEvent.posted_date >= candidate.posted_date - self.posted_tolerance,
            FinancialEvent.posted_date <= candidate.posted_date + self.posted_tolerance,
            FinancialEvent.amount >= candidate.amount - self.amount_tolerance,
            FinancialEvent.amount <= candidate.amount + self.amount_tolerance,
        )).limit(1))
        return result.scalars().first()


DEFAULT_MATCHERS = (StableIdMatcher(), ToleranceWindowMatcher())


class LedgerWriter:
    """Inserts ledger candidates that no matcher recognises.

    Matchers run in order; the first hit means the fact is already stored.
    Writes for one account are serialized, and the unique stable-id index
    catches whatever slips past the matchers from another process.
    """

    def __init__(self, matchers: Sequence = DEFAULT_MATCHERS):
        self.matchers = tuple(matchers)

    async def _find_existing(self, db: AsyncSession, candidate: FinancialEventCandidate) -> Optional[FinancialEvent]:
        for matcher in self.matchers:
            existing = await matcher.find(db, candidate)
            if existing is not None:
                logger.debug(
                    f"Candidate {candidate.event_type} {candidate.financial_event_id or candidate.amazon_order_id} matched by {matcher.name}")
                return existing
        return None

    async def _insert(self, db: AsyncSession, candidate: FinancialEventCandidate) -> bool:
        if await self._find_existing(db, candidate) is not None:
            return False
        try:
            async with db.begin_nested():
                db.add(FinancialEvent(
                    account_id=candidate.account_id,
                    marketplace_id=candidate.marketplace_id,
                    event_type=candidate.event_type,
                    posted_date=candidate.posted_date,
                    amazon_order_id=candidate.amazon_order_id,
                    financial_event_id=candidate.financial_event_id,
                    sku=candidate.sku,
                    description=candidate.description,
                    amount=to_cents(candidate.amount),
                    currency=candidate.currency,
                    fee_type=candidate.fee_type,
                    fee_category=candidate.fee_category,
                ))
        except IntegrityError:
            logger.info(
                f"Financial event {candidate.financial_event_id} already stored by a concurrent writer")
            return False
        return True

    async def record(self, db: AsyncSession, candidate: FinancialEventCandidate) -> bool:
        """Store one candidate and commit. Returns True when a row was created."""
        async with account_lock(candidate.account_id):
            created = await self._insert(db, candidate)
            await db.commit()
        return created

    async def record_page(self, db: AsyncSession, account_id: UUID, candidates: Iterable[FinancialEventCandidate]) -> int:
        """Store one page of candidates for an account and commit them together."""
        created = 0
        async with account_lock(account_id):
            for candidate in candidates:
                if await self._insert(db, candidate):
                    created += 1
            await db.commit()
        return created
