from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from uuid import UUID


class DateChunk(BaseModel):
    start: datetime
    end: datetime


class SyncResult(BaseModel):
    job_id: Optional[UUID] = None
    orders_processed: int = 0
    items_processed: int = 0
    events_processed: int = 0
    events_created: int = 0
    records_processed: int = 0
    failed_units: int = 0


class SyncJobResponse(BaseModel):
    id: UUID
    account_id: UUID
    job_type: str
    status: str
    records_processed: Optional[int]
    error: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True
