from typing import Dict, Optional
from pydantic import BaseModel, Field

from campaign_queue.schemas.job import JobStatusCounts

class QueueStatusData(BaseModel):
    by_status: JobStatusCounts
    pending_by_step: Dict[str, int] = Field(default_factory=dict)
    processing_workers: int = 0

class QueueStatusResponse(BaseModel):
    status: str
    data: QueueStatusData

class RecoverStalledRequest(BaseModel):
    timeout_seconds: Optional[int] = Field(None, gt=0, description="Lease timeout; defaults to STALL_TIMEOUT_SECONDS")

class RecoverStalledResponse(BaseModel):
    status: str
    recovered: int
    timeout_seconds: int
