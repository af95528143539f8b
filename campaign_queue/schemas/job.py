from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from campaign_queue.models.job import JobStatus, JobStepName
from campaign_queue.models.job_step import JobStepStatus

class JobRecord(BaseModel):
    """Snapshot of one job row. Holds no reference to the store."""
    id: int
    campaign_id: int
    customer_email: str
    current_step: JobStepName
    status: JobStatus
    worker_id: Optional[str] = None
    retry_count: int = 0
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    last_heartbeat: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    class Config:
        from_attributes = True

class JobStepRecord(BaseModel):
    id: int
    job_id: int
    step_name: JobStepName
    status: JobStepStatus
    output_data: Optional[Dict[str, Any]] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class JobDetail(BaseModel):
    job: JobRecord
    steps: List[JobStepRecord] = []

class JobStatusCounts(BaseModel):
    PENDING: int = 0
    PROCESSING: int = 0
    FAILED: int = 0
    COMPLETED: int = 0
    total: int = 0

class BulkEnqueueRequest(BaseModel):
    emails: List[str] = Field(default_factory=list)

class BulkEnqueueResponse(BaseModel):
    campaign_id: int
    created: int
