from fastapi import APIRouter, Depends, HTTPException, Query
from datetime import date
from typing import List, Optional

from sellerledger.api.dependencies import get_account, get_aggregator
from sellerledger.models.core import Account
from sellerledger.services.ledger_aggregator import LedgerAggregator

router = APIRouter(prefix='/ledger', tags=['ledger'])


def _check_range(start_date: date, end_date: date):
    if end_date < start_date:
        raise HTTPException(400, "end_date must not be before start_date")


@router.get('/{account_id}/profit')
async def get_profit(
    start_date: date = Query(..., description="Start date (YYYY-MM-DD)"),
    end_date: date = Query(..., description="End date (YYYY-MM-DD), inclusive"),
    marketplace_ids: Optional[List[str]] = Query(None),
    skus: Optional[List[str]] = Query(None),
    account: Account = Depends(get_account),
    aggregator: LedgerAggregator = Depends(get_aggregator),
):
    _check_range(start_date, end_date)
    summary = await aggregator.get_profit(account.id, start_date, end_date, marketplace_ids, skus)
    return {
        "success": True,
        "data": {
            "period": {'start_date': start_date, 'end_date': end_date},
            "profit": summary.model_dump(mode='json'),
        },
        "message": 'Profit calculated'
    }


@router.get('/{account_id}/daily')
async def get_daily_stats(
    start_date: date = Query(...),
    end_date: date = Query(...),
    marketplace_ids: Optional[List[str]] = Query(None),
    skus: Optional[List[str]] = Query(None),
    account: Account = Depends(get_account),
    aggregator: LedgerAggregator = Depends(get_aggregator),
):
    _check_range(start_date, end_date)
    stats = await aggregator.get_daily_stats(account.id, start_date, end_date, marketplace_ids, skus)
    return {
        "success": True,
        "data": [stat.model_dump(mode='json') for stat in stats],
        "message": f"{len(stats)} days"
    }


@router.get('/{account_id}/cost-breakdown')
async def get_cost_breakdown(
    start_date: date = Query(...),
    end_date: date = Query(...),
    marketplace_ids: Optional[List[str]] = Query(None),
    skus: Optional[List[str]] = Query(None),
    account: Account = Depends(get_account),
    aggregator: LedgerAggregator = Depends(get_aggregator),
):
    _check_range(start_date, end_date)
    breakdown = await aggregator.get_cost_breakdown(account.id, start_date, end_date, marketplace_ids, skus)
    return {
        "success": True,
        "data": breakdown.model_dump(mode='json'),
        "message": 'Cost breakdown calculated'
    }


@router.get('/{account_id}/marketplaces')
async def get_marketplace_stats(
    start_date: date = Query(...),
    end_date: date = Query(...),
    account: Account = Depends(get_account),
    aggregator: LedgerAggregator = Depends(get_aggregator),
):
    _check_range(start_date, end_date)
    stats = await aggregator.get_marketplace_stats(account.id, start_date, end_date)
    return {
        "success": True,
        "data": [stat.model_dump(mode='json') for stat in stats],
        "message": f"{len(stats)} marketplaces"
    }


@router.get('/{account_id}/products')
async def get_product_profit(
    start_date: date = Query(...),
    end_date: date = Query(...),
    marketplace_ids: Optional[List[str]] = Query(None),
    skus: Optional[List[str]] = Query(None),
    account: Account = Depends(get_account),
    aggregator: LedgerAggregator = Depends(get_aggregator),
):
    _check_range(start_date, end_date)
    products = await aggregator.get_product_profit(account.id, start_date, end_date, marketplace_ids, skus)
    return {
        "success": True,
        "data": [product.model_dump(mode='json') for product in products],
        "message": f"{len(products)} products"
    }
