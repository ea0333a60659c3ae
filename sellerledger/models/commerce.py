from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Text, Numeric, Boolean, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid
from sellerledger.database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    amazon_order_id = Column(String(64), nullable=False, unique=True)
    purchase_date = Column(DateTime, nullable=False, index=True)
    last_updated_date = Column(DateTime)
    order_status = Column(String(50))
    fulfillment_channel = Column(String(16))
    total_amount = Column(Numeric(15, 2), default=0)
    currency = Column(String(3), default='EUR')
    number_of_items = Column(Integer, default=0)
    marketplace_id = Column(String(32))
    is_business_order = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey('products.id', ondelete='SET NULL'), nullable=True)
    order_item_id = Column(String(128), nullable=False)
    asin = Column(String(32))
    sku = Column(String(255), index=True)
    title = Column(Text)
    quantity = Column(Integer, default=0)
    # prices are stored net of VAT, see services/order_normalizer.py
    item_price = Column(Numeric(15, 2), default=0)
    item_tax = Column(Numeric(15, 2), default=0)
    shipping_price = Column(Numeric(15, 2), default=0)
    shipping_tax = Column(Numeric(15, 2), default=0)
    promotion_discount = Column(Numeric(15, 2), default=0)
    gift_wrap_price = Column(Numeric(15, 2), default=0)
    __table_args__ = (UniqueConstraint('order_id', 'order_item_id', name='uq_order_item'),)


class Product(Base):
    __tablename__ = "products"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False)
    sku = Column(String(255), nullable=False)
    asin = Column(String(32))
    title = Column(Text)
    marketplace_id = Column(String(32))
    price = Column(Numeric(15, 2))
    cost = Column(Numeric(15, 2))
    created_at = Column(DateTime, server_default=func.now())
    __table_args__ = (UniqueConstraint('account_id', 'sku', name='uq_product_sku'),)


class Inventory(Base):
    __tablename__ = "inventory"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(UUID(as_uuid=True), ForeignKey('products.id', ondelete='SET NULL'), nullable=True)
    sku = Column(String(255), nullable=False)
    fn_sku = Column(String(64))
    marketplace_id = Column(String(32), nullable=False)
    fulfillable_qty = Column(Integer, default=0)
    inbound_qty = Column(Integer, default=0)
    reserved_qty = Column(Integer, default=0)
    unfulfillable_qty = Column(Integer, default=0)
    last_updated = Column(DateTime)
    __table_args__ = (UniqueConstraint('account_id', 'sku', 'marketplace_id', name='uq_inventory_sku_marketplace'),)
