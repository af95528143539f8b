from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
import enum

from campaign_queue.core.database import Base
from campaign_queue.utils.datetime_utils import utcnow

class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    FAILED = "FAILED"
    COMPLETED = "COMPLETED"

class JobStepName(str, enum.Enum):
    """Workflow position of a job. DONE is the terminal marker."""
    SEND_EMAIL = "SEND_EMAIL"
    ANALYZE = "ANALYZE"
    TAKE_ACTION = "TAKE_ACTION"
    DONE = "DONE"

# Shared by jobs.current_step and job_steps.step_name
job_step_name_type = Enum(JobStepName, name="job_step_name")

WORKFLOW_STEPS = (JobStepName.SEND_EMAIL, JobStepName.ANALYZE, JobStepName.TAKE_ACTION)

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.FAILED, JobStatus.COMPLETED)


def get_next_step(step: JobStepName) -> JobStepName:
    """Return the step after ``step``; the last workflow step is followed by DONE."""
    if step == JobStepName.DONE:
        return JobStepName.DONE
    index = WORKFLOW_STEPS.index(step)
    if index == len(WORKFLOW_STEPS) - 1:
        return JobStepName.DONE
    return WORKFLOW_STEPS[index + 1]


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        # Oldest pending job lookup
        Index("ix_jobs_status_created_at", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    customer_email = Column(Text, nullable=False)
    current_step = Column(job_step_name_type, default=JobStepName.SEND_EMAIL, nullable=False)
    status = Column(Enum(JobStatus, name="job_status"), default=JobStatus.PENDING, nullable=False)
    worker_id = Column(String(128), nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    scheduled_for = Column(DateTime, nullable=True)
    last_heartbeat = Column(DateTime, nullable=True)

    campaign = relationship("Campaign", back_populates="jobs")
    steps = relationship("JobStep", back_populates="job", order_by="JobStep.id")

    def __repr__(self):
        return f'<Job {self.id} step={self.current_step} status={self.status}>'
