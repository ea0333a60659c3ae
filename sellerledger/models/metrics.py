from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Text, Numeric, Date, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid
from sellerledger.database import Base


class AdMetricsDaily(Base):
    __tablename__ = 'ad_metrics_daily'
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey(
        'accounts.id', ondelete='CASCADE'), nullable=False)
    date = Column(Date, nullable=False)
    sku = Column(String(255), nullable=True)
    marketplace_id = Column(String(32), nullable=True)
    spend = Column(Numeric(15, 2), default=0)
    sales = Column(Numeric(15, 2), default=0)
    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    created_at = Column(DateTime, server_default=func.now())
    __table_args__ = (UniqueConstraint('account_id', 'date',
                      'sku', name='uq_ad_metrics_daily'),)


class IndirectExpense(Base):
    __tablename__ = 'indirect_expenses'
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey(
        'accounts.id', ondelete='CASCADE'), nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
