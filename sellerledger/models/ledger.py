from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Numeric, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid
from sellerledger.database import Base


class FinancialEvent(Base):
    """One settled money movement. Rows are append-only."""
    __tablename__ = "financial_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False)
    marketplace_id = Column(String(32))
    event_type = Column(String(32), nullable=False)
    posted_date = Column(DateTime, nullable=False)
    amazon_order_id = Column(String(64), nullable=True)
    financial_event_id = Column(String(255), nullable=True)
    sku = Column(String(255), nullable=True)
    description = Column(Text)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), default='EUR')
    fee_type = Column(String(128), nullable=True)
    fee_category = Column(String(64), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    __table_args__ = (
        Index('uq_financial_event_stable_id', 'account_id', 'financial_event_id', unique=True),
        Index('ix_financial_event_order', 'account_id', 'amazon_order_id'),
        Index('ix_financial_event_posted', 'account_id', 'posted_date'),
    )


class FeeCategoryMapping(Base):
    __tablename__ = "fee_category_mappings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    fee_type = Column(String(128), nullable=False, unique=True)
    category = Column(String(64), nullable=False)
    display_name = Column(String(255), nullable=False)
    description = Column(Text)
