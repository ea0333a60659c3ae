from collections import defaultdict
from typing import Dict, Iterable, List, Optional
from uuid import UUID
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sellerledger.models.commerce import Inventory, Order, OrderItem, Product
from sellerledger.schemas.commerce import InventoryUpsert, OrderItemUpsert, OrderUpsert
from sellerledger.services.order_normalizer import REPORT_ITEM_KEY_SEPARATOR, is_report_item_key
from sellerledger.utils.dates import utcnow
from sellerledger.utils.money import to_cents
from sellerledger.utils.logger import get_loggers
logger = get_loggers("OrderStore")


class OrderStore:
    """Idempotent writes for orders, order items, products and inventory.

    Both order retrieval strategies end here, so re-running any sync window
    converges on the same rows.
    """

    def __init__(self, db: AsyncSession, account_id: UUID):
        self.db = db
        self.account_id = account_id
        self._products: Dict[str, Product] = {}

    async def upsert_order(self, data: OrderUpsert) -> Order:
        result = await self.db.execute(select(Order).where(Order.amazon_order_id == data.amazon_order_id))
        order = result.scalar_one_or_none()
        if order is None:
            order = Order(
                account_id=self.account_id,
                amazon_order_id=data.amazon_order_id,
                purchase_date=data.purchase_date,
                last_updated_date=data.last_updated_date,
                order_status=data.order_status,
                fulfillment_channel=data.fulfillment_channel,
                total_amount=to_cents(data.total_amount),
                currency=data.currency,
                number_of_items=data.number_of_items,
                marketplace_id=data.marketplace_id,
                is_business_order=data.is_business_order,
            )
            self.db.add(order)
            await self.db.flush()
            return order
        if order.account_id != self.account_id:
            logger.warning(
                f"Order {data.amazon_order_id} belongs to account {order.account_id}, not {self.account_id}")
            return order
        order.order_status = data.order_status
        order.total_amount = to_cents(data.total_amount)
        order.is_business_order = data.is_business_order
        order.last_updated_date = data.last_updated_date or order.last_updated_date
        if data.number_of_items:
            order.number_of_items = data.number_of_items
        if data.currency:
            order.currency = data.currency
        if not order.marketplace_id:
            order.marketplace_id = data.marketplace_id
        await self.db.flush()
        return order

    async def ensure_product(self, sku: Optional[str], asin: Optional[str] = None, title: Optional[str] = None,
                             marketplace_id: Optional[str] = None) -> Optional[Product]:
        """First writer wins; later sightings never overwrite local cost or price."""
        if not sku:
            return None
        if sku in self._products:
            return self._products[sku]
        product = await self._find_product(sku)
        if product is None:
            try:
                async with self.db.begin_nested():
                    product = Product(account_id=self.account_id, sku=sku, asin=asin, title=title,
                                      marketplace_id=marketplace_id)
                    self.db.add(product)
            except IntegrityError:
                product = await self._find_product(sku)
        self._products[sku] = product
        return product

    async def _find_product(self, sku: str) -> Optional[Product]:
        result = await self.db.execute(select(Product).where(and_(
            Product.account_id == self.account_id, Product.sku == sku)))
        return result.scalar_one_or_none()

    async def upsert_items(self, order: Order, items: Iterable[OrderItemUpsert]) -> int:
        items = list(items)
        if not items:
            return 0
        result = await self.db.execute(select(OrderItem).where(OrderItem.order_id == order.id))
        rows = result.scalars().all()
        existing = {row.order_item_id: row for row in rows}
        by_sku = defaultdict(list)
        for row in sorted(rows, key=_item_position):
            by_sku[row.sku].append(row)
        claimed = {id(existing[data.order_item_id]) for data in items if data.order_item_id in existing}
        count = 0
        for data in items:
            product = await self.ensure_product(data.sku, data.asin, data.title, order.marketplace_id)
            fields = dict(
                product_id=product.id if product else None,
                asin=data.asin,
                sku=data.sku,
                title=data.title,
                quantity=data.quantity,
                item_price=to_cents(data.item_price),
                item_tax=to_cents(data.item_tax),
                shipping_price=to_cents(data.shipping_price),
                shipping_tax=to_cents(data.shipping_tax),
                promotion_discount=to_cents(data.promotion_discount),
                gift_wrap_price=to_cents(data.gift_wrap_price),
            )
            row = existing.get(data.order_item_id)
            if row is None:
                row = _counterpart(by_sku.get(data.sku, ()), data.order_item_id, claimed)
                if row is not None:
                    claimed.add(id(row))
                    # the upstream id wins over a report key
                    if not is_report_item_key(data.order_item_id):
                        row.order_item_id = data.order_item_id
            if row is None:
                self.db.add(OrderItem(order_id=order.id, order_item_id=data.order_item_id, **fields))
            else:
                for key, value in fields.items():
                    setattr(row, key, value)
            count += 1
        await self.db.flush()
        return count

    async def upsert_inventory(self, data: InventoryUpsert) -> Inventory:
        product = await self.ensure_product(data.sku, data.asin, data.title, data.marketplace_id)
        result = await self.db.execute(select(Inventory).where(and_(
            Inventory.account_id == self.account_id,
            Inventory.sku == data.sku,
            Inventory.marketplace_id == data.marketplace_id,
        )))
        row = result.scalar_one_or_none()
        if row is None:
            row = Inventory(account_id=self.account_id, sku=data.sku, marketplace_id=data.marketplace_id)
            self.db.add(row)
        row.product_id = product.id if product else None
        row.fn_sku = data.fn_sku
        row.fulfillable_qty = data.fulfillable_qty
        row.inbound_qty = data.inbound_qty
        row.reserved_qty = data.reserved_qty
        row.unfulfillable_qty = data.unfulfillable_qty
        row.last_updated = data.last_updated or utcnow()
        await self.db.flush()
        return row

    async def order_marketplaces(self, amazon_order_ids: Iterable[Optional[str]]) -> Dict[str, Optional[str]]:
        ids: List[str] = sorted({order_id for order_id in amazon_order_ids if order_id})
        if not ids:
            return {}
        result = await self.db.execute(select(Order.amazon_order_id, Order.marketplace_id).where(and_(
            Order.account_id == self.account_id, Order.amazon_order_id.in_(ids))))
        return {row[0]: row[1] for row in result}


def _item_position(row: OrderItem):
    key = row.order_item_id or ''
    if is_report_item_key(key):
        occurrence = key.rsplit(REPORT_ITEM_KEY_SEPARATOR, 1)[1]
        return (0, int(occurrence) if occurrence.isdigit() else 0, key)
    return (1, 0, key)


def _counterpart(rows, order_item_id: str, claimed: set) -> Optional[OrderItem]:
    """First unclaimed row of the same SKU stored by the other retrieval strategy.

    Item-by-item syncs key items by the upstream OrderItemId while reports key
    them by SKU and occurrence, so the same line item is matched positionally.
    """
    from_report = is_report_item_key(order_item_id)
    for row in rows:
        if id(row) in claimed:
            continue
        if is_report_item_key(row.order_item_id) != from_report:
            return row
    return None
