from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sellerledger.models.commerce import Order, OrderItem, Product
from sellerledger.models.ledger import FinancialEvent
from sellerledger.models.metrics import AdMetricsDaily, IndirectExpense
from sellerledger.schemas.ledger import (
    CostBreakdown, CostCategory, DailyStat, FeeSubtotal, MarketplaceStat, ProductProfit, ProfitSummary,
)
from sellerledger.services.fee_taxonomy import OTHER, category_display_name
from sellerledger.utils.dates import day_range
from sellerledger.utils.money import to_cents
from sellerledger.utils.logger import get_loggers
logger = get_loggers("LedgerAggregator")

ZERO = Decimal("0")
HUNDRED = Decimal("100")
PENDING_STATUSES = ('Pending', 'Unshipped')
FEE_EVENT_TYPES = ('Fee', 'ServiceFee')
IN_CLAUSE_CHUNK = 500


def effective_order_total(order: Order) -> Decimal:
    """Order value counted as revenue.

    Pending and Unshipped orders often carry no OrderTotal yet; they count as
    zero until the marketplace prices them, never as an estimate.
    """
    total = Decimal(order.total_amount or 0)
    if order.order_status in PENDING_STATUSES and total == ZERO:
        return ZERO
    return total


def _margin(net: Decimal, revenue: Decimal) -> Decimal:
    if not revenue:
        return ZERO
    return to_cents(net / revenue * HUNDRED)


def _chunks(values: Sequence, size: int = IN_CLAUSE_CHUNK):
    for i in range(0, len(values), size):
        yield values[i:i + size]


def _is_giftwrap(event: FinancialEvent) -> bool:
    text = f"{event.fee_type or ''} {event.description or ''}".lower().replace(' ', '')
    return 'giftwrap' in text


class LedgerAggregator:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _orders(self, account_id: UUID, start_date: date, end_date: date,
                      marketplace_ids: Optional[Sequence[str]] = None, skus: Optional[Sequence[str]] = None) -> List[Order]:
        start, end = day_range(start_date, end_date)
        conditions = [Order.account_id == account_id, Order.purchase_date >= start, Order.purchase_date < end]
        if marketplace_ids:
            conditions.append(Order.marketplace_id.in_(list(marketplace_ids)))
        if skus:
            conditions.append(Order.id.in_(
                select(OrderItem.order_id).where(OrderItem.sku.in_(list(skus)))))
        result = await self.db.execute(select(Order).where(and_(*conditions)))
        return list(result.scalars().all())

    async def _items(self, orders: Iterable[Order], skus: Optional[Sequence[str]] = None) -> List[OrderItem]:
        order_ids = [order.id for order in orders]
        items: List[OrderItem] = []
        for chunk in _chunks(order_ids):
            query = select(OrderItem).where(OrderItem.order_id.in_(chunk))
            if skus:
                query = query.where(OrderItem.sku.in_(list(skus)))
            result = await self.db.execute(query)
            items.extend(result.scalars().all())
        return items

    async def _events_for_orders(self, account_id: UUID, orders: Iterable[Order],
                                 skus: Optional[Sequence[str]] = None) -> List[FinancialEvent]:
        order_ids = [order.amazon_order_id for order in orders]
        events: List[FinancialEvent] = []
        for chunk in _chunks(order_ids):
            query = select(FinancialEvent).where(and_(
                FinancialEvent.account_id == account_id, FinancialEvent.amazon_order_id.in_(chunk)))
            if skus:
                query = query.where(FinancialEvent.sku.in_(list(skus)))
            result = await self.db.execute(query)
            events.extend(result.scalars().all())
        return events

    async def _events_posted(self, account_id: UUID, start_date: date, end_date: date,
                             marketplace_ids: Optional[Sequence[str]] = None,
                             skus: Optional[Sequence[str]] = None) -> List[FinancialEvent]:
        start, end = day_range(start_date, end_date)
        query = select(FinancialEvent).where(and_(
            FinancialEvent.account_id == account_id,
            FinancialEvent.posted_date >= start,
            FinancialEvent.posted_date < end,
        ))
        if marketplace_ids:
            query = query.where(FinancialEvent.marketplace_id.in_(list(marketplace_ids)))
        if skus:
            query = query.where(FinancialEvent.sku.in_(list(skus)))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _product_costs(self, account_id: UUID, items: Iterable[OrderItem]) -> Dict[str, Decimal]:
        skus = sorted({item.sku for item in items if item.sku})
        costs: Dict[str, Decimal] = {}
        for chunk in _chunks(skus):
            result = await self.db.execute(select(Product.sku, Product.cost).where(and_(
                Product.account_id == account_id, Product.sku.in_(chunk))))
            for sku, cost in result:
                costs[sku] = Decimal(cost or 0)
        return costs

    async def _ad_spend_by_day(self, account_id: UUID, start_date: date, end_date: date,
                               marketplace_ids: Optional[Sequence[str]] = None,
                               skus: Optional[Sequence[str]] = None) -> Dict[date, Decimal]:
        query = select(AdMetricsDaily).where(and_(
            AdMetricsDaily.account_id == account_id,
            AdMetricsDaily.date >= start_date,
            AdMetricsDaily.date <= end_date,
        ))
        if skus:
            query = query.where(AdMetricsDaily.sku.in_(list(skus)))
        if marketplace_ids:
            query = query.where(AdMetricsDaily.marketplace_id.in_(list(marketplace_ids)))
        result = await self.db.execute(query)
        spend: Dict[date, Decimal] = defaultdict(lambda: ZERO)
        for row in result.scalars().all():
            spend[row.date] += Decimal(row.spend or 0)
        return spend

    async def _indirect_by_day(self, account_id: UUID, start_date: date, end_date: date) -> Dict[date, Decimal]:
        result = await self.db.execute(select(IndirectExpense.date, IndirectExpense.amount).where(and_(
            IndirectExpense.account_id == account_id,
            IndirectExpense.date >= start_date,
            IndirectExpense.date <= end_date,
        )))
        expenses: Dict[date, Decimal] = defaultdict(lambda: ZERO)
        for day, amount in result:
            expenses[day] += Decimal(amount or 0)
        return expenses

    async def get_profit(self, account_id: UUID, start_date: date, end_date: date,
                         marketplace_ids: Optional[Sequence[str]] = None,
                         skus: Optional[Sequence[str]] = None) -> ProfitSummary:
        logger.info(f"Calculating profit for account {account_id} {start_date}..{end_date}")
        orders = await self._orders(account_id, start_date, end_date, marketplace_ids, skus)
        items = await self._items(orders, skus)
        events = await self._events_for_orders(account_id, orders, skus)
        costs = await self._product_costs(account_id, items)
        ads = await self._ad_spend_by_day(account_id, start_date, end_date, marketplace_ids, skus)

        if skus:
            # only the matching lines of each order belong to the selected products
            revenue = sum((Decimal(i.item_price or 0) + Decimal(i.item_tax or 0) + Decimal(i.shipping_price or 0)
                           + Decimal(i.shipping_tax or 0) for i in items), ZERO)
        else:
            revenue = sum((effective_order_total(order) for order in orders), ZERO)
        refunds = sum((abs(Decimal(e.amount)) for e in events if e.event_type == 'Refund'), ZERO)
        fees = sum((abs(Decimal(e.amount)) for e in events if e.event_type in FEE_EVENT_TYPES), ZERO)
        giftwrap = sum((abs(Decimal(e.amount)) for e in events if _is_giftwrap(e)), ZERO)
        cogs = sum((costs.get(i.sku, ZERO) * (i.quantity or 0) for i in items), ZERO)
        vat = sum((Decimal(i.item_tax or 0) + Decimal(i.shipping_tax or 0) for i in items), ZERO)
        advertising = sum(ads.values(), ZERO)
        indirect = ZERO
        if not skus:
            indirect = sum((await self._indirect_by_day(account_id, start_date, end_date)).values(), ZERO)

        # VAT is reported but never subtracted
        net = revenue - refunds - fees - cogs - advertising - indirect
        return ProfitSummary(
            revenue=to_cents(revenue),
            refunds=to_cents(refunds),
            fees=to_cents(fees),
            cogs=to_cents(cogs),
            advertising=to_cents(advertising),
            indirect_expenses=to_cents(indirect),
            vat=to_cents(vat),
            promotions=to_cents(sum((Decimal(i.promotion_discount or 0) for i in items), ZERO)),
            shipping=to_cents(sum((Decimal(i.shipping_price or 0) for i in items), ZERO)),
            giftwrap=to_cents(giftwrap),
            units=sum(i.quantity or 0 for i in items),
            orders=len(orders),
            net_profit=to_cents(net),
            margin=_margin(net, revenue),
        )

    async def get_daily_stats(self, account_id: UUID, start_date: date, end_date: date,
                              marketplace_ids: Optional[Sequence[str]] = None,
                              skus: Optional[Sequence[str]] = None) -> List[DailyStat]:
        days: Dict[date, DailyStat] = _empty_days(start_date, end_date)
        for event in await self._events_posted(account_id, start_date, end_date, marketplace_ids, skus):
            stat = days.get(event.posted_date.date())
            if stat is None:
                continue
            amount = Decimal(event.amount)
            if event.event_type == 'OrderRevenue':
                stat.revenue += amount
            elif event.event_type == 'Refund':
                stat.refunds += abs(amount)
            elif event.event_type in FEE_EVENT_TYPES:
                stat.fees += abs(amount)

        orders = await self._orders(account_id, start_date, end_date, marketplace_ids, skus)
        items = await self._items(orders, skus)
        costs = await self._product_costs(account_id, items)
        purchase_day = {order.id: order.purchase_date.date() for order in orders}
        for order in orders:
            stat = days.get(purchase_day[order.id])
            if stat is not None:
                stat.orders += 1
        for item in items:
            stat = days.get(purchase_day.get(item.order_id))
            if stat is None:
                continue
            stat.units += item.quantity or 0
            stat.cogs += costs.get(item.sku, ZERO) * (item.quantity or 0)
            stat.vat += Decimal(item.item_tax or 0) + Decimal(item.shipping_tax or 0)

        ads = await self._ad_spend_by_day(account_id, start_date, end_date, marketplace_ids, skus)
        for day, spend in ads.items():
            if day in days:
                days[day].advertising += spend
        # overheads are not attributable to single products
        if not skus:
            for day, amount in (await self._indirect_by_day(account_id, start_date, end_date)).items():
                if day in days:
                    days[day].indirect_expenses += amount

        stats = []
        for stat in days.values():
            net = stat.revenue - stat.refunds - stat.fees - stat.cogs - stat.advertising - stat.indirect_expenses
            stats.append(stat.model_copy(update={
                'revenue': to_cents(stat.revenue),
                'refunds': to_cents(stat.refunds),
                'fees': to_cents(stat.fees),
                'cogs': to_cents(stat.cogs),
                'advertising': to_cents(stat.advertising),
                'indirect_expenses': to_cents(stat.indirect_expenses),
                'vat': to_cents(stat.vat),
                'net_profit': to_cents(net),
            }))
        return stats

    async def get_cost_breakdown(self, account_id: UUID, start_date: date, end_date: date,
                                 marketplace_ids: Optional[Sequence[str]] = None,
                                 skus: Optional[Sequence[str]] = None) -> CostBreakdown:
        orders = await self._orders(account_id, start_date, end_date, marketplace_ids, skus)
        events = [e for e in await self._events_for_orders(account_id, orders, skus)
                  if e.event_type in FEE_EVENT_TYPES]
        grouped: Dict[str, Dict[str, List[Decimal]]] = defaultdict(lambda: defaultdict(list))
        for event in events:
            grouped[event.fee_category or OTHER][event.fee_type or 'Unknown'].append(abs(Decimal(event.amount)))
        total = sum((amount for by_type in grouped.values() for amounts in by_type.values() for amount in amounts), ZERO)
        categories = []
        for category, by_type in grouped.items():
            amount = sum((sum(amounts, ZERO) for amounts in by_type.values()), ZERO)
            fee_types = sorted(
                (FeeSubtotal(fee_type=fee_type, amount=to_cents(sum(amounts, ZERO)), count=len(amounts))
                 for fee_type, amounts in by_type.items()),
                key=lambda sub: sub.amount, reverse=True)
            categories.append(CostCategory(
                category=category,
                display_name=category_display_name(category),
                amount=to_cents(amount),
                count=sum(sub.count for sub in fee_types),
                percentage=_margin(amount, total),
                fee_types=fee_types,
            ))
        categories.sort(key=lambda c: c.amount, reverse=True)
        return CostBreakdown(total=to_cents(total), categories=categories)

    async def get_marketplace_stats(self, account_id: UUID, start_date: date, end_date: date) -> List[MarketplaceStat]:
        events = await self._events_posted(account_id, start_date, end_date)
        missing = sorted({e.amazon_order_id for e in events if not e.marketplace_id and e.amazon_order_id})
        order_marketplaces: Dict[str, Optional[str]] = {}
        for chunk in _chunks(missing):
            result = await self.db.execute(select(Order.amazon_order_id, Order.marketplace_id).where(and_(
                Order.account_id == account_id, Order.amazon_order_id.in_(chunk))))
            order_marketplaces.update({row[0]: row[1] for row in result})
        stats: Dict[str, MarketplaceStat] = {}
        for event in events:
            marketplace = event.marketplace_id or order_marketplaces.get(event.amazon_order_id) or 'unknown'
            stat = stats.setdefault(marketplace, MarketplaceStat(marketplace_id=marketplace))
            amount = Decimal(event.amount)
            if event.event_type == 'OrderRevenue':
                stat.revenue += amount
            elif event.event_type == 'Refund':
                stat.refunds += abs(amount)
            else:
                stat.fees += abs(amount)
        results = []
        for stat in stats.values():
            net = stat.revenue - stat.fees - stat.refunds
            results.append(stat.model_copy(update={
                'revenue': to_cents(stat.revenue),
                'fees': to_cents(stat.fees),
                'refunds': to_cents(stat.refunds),
                'net_profit': to_cents(net),
                'margin': _margin(net, stat.revenue),
            }))
        results.sort(key=lambda s: s.revenue, reverse=True)
        return results

    async def get_product_profit(self, account_id: UUID, start_date: date, end_date: date,
                                 marketplace_ids: Optional[Sequence[str]] = None,
                                 skus: Optional[Sequence[str]] = None) -> List[ProductProfit]:
        """Per-SKU profit. Ledger fees and refunds are attributed by (order, sku)."""
        orders = await self._orders(account_id, start_date, end_date, marketplace_ids, skus)
        items = await self._items(orders, skus)
        events = await self._events_for_orders(account_id, orders, skus)
        costs = await self._product_costs(account_id, items)
        products: Dict[str, ProductProfit] = {}
        order_sets: Dict[str, set] = defaultdict(set)
        for item in items:
            if not item.sku:
                continue
            product = products.setdefault(item.sku, ProductProfit(sku=item.sku, title=item.title))
            product.units += item.quantity or 0
            product.revenue += Decimal(item.item_price or 0) + Decimal(item.item_tax or 0)
            product.vat += Decimal(item.item_tax or 0)
            product.cogs += costs.get(item.sku, ZERO) * (item.quantity or 0)
            order_sets[item.sku].add(item.order_id)
        for event in events:
            product = products.get(event.sku) if event.sku else None
            if product is None:
                continue
            if event.event_type == 'Refund':
                product.refunds += abs(Decimal(event.amount))
            elif event.event_type in FEE_EVENT_TYPES:
                product.fees += abs(Decimal(event.amount))
        results = []
        for sku, product in products.items():
            net = product.revenue - product.fees - product.refunds - product.cogs
            results.append(product.model_copy(update={
                'orders': len(order_sets[sku]),
                'revenue': to_cents(product.revenue),
                'fees': to_cents(product.fees),
                'refunds': to_cents(product.refunds),
                'cogs': to_cents(product.cogs),
                'vat': to_cents(product.vat),
                'net_profit': to_cents(net),
                'margin': _margin(net, product.revenue),
            }))
        results.sort(key=lambda p: p.revenue, reverse=True)
        return results


def _empty_days(start_date: date, end_date: date) -> Dict[date, DailyStat]:
    days: Dict[date, DailyStat] = {}
    current = start_date
    while current <= end_date:
        days[current] = DailyStat(day=current)
        current += timedelta(days=1)
    return days
