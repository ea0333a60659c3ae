from uuid import UUID
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sellerledger.database import get_db
from sellerledger.models.core import Account
from sellerledger.services.ledger_aggregator import LedgerAggregator


async def get_account(account_id: UUID, db: AsyncSession = Depends(get_db)) -> Account:
    account = await db.get(Account, account_id)
    if account is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Account {account_id} not found")
    return account


async def get_aggregator(db: AsyncSession = Depends(get_db)) -> LedgerAggregator:
    return LedgerAggregator(db)
