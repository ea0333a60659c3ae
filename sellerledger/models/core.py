from sqlalchemy import Column, String, Boolean, DateTime, Integer, Text, JSON, Enum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid
from sellerledger.database import Base


class Account(Base):
    __tablename__ = "accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    selling_partner_id = Column(String(255), index=True)
    marketplace_id = Column(String(32), nullable=False)
    marketplace_ids = Column(JSON, default=list)
    region = Column(String(8), nullable=False, default='eu')
    refresh_token = Column(Text)
    settlement_source = Column(Enum('transactions', 'legacy', name='settlement_sources'),
                               nullable=False, default='transactions')
    is_active = Column(Boolean, default=True)
    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # no FK: a run for an unknown account is still recorded as failed
    account_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    job_type = Column(String(32), nullable=False)
    status = Column(Enum('running', 'completed', 'failed', name='sync_job_status'),
                    nullable=False, default='running')
    records_processed = Column(Integer, default=0)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
