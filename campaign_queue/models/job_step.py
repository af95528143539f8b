from sqlalchemy import Column, Integer, DateTime, Enum, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
import enum

from campaign_queue.core.database import Base
from campaign_queue.models.job import job_step_name_type
from campaign_queue.utils.datetime_utils import utcnow

class JobStepStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

class JobStep(Base):
    """Idempotency ledger: one row per (job, step), written once."""
    __tablename__ = "job_steps"
    __table_args__ = (
        UniqueConstraint("job_id", "step_name", name="uq_job_steps_job_id_step_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    step_name = Column(job_step_name_type, nullable=False)
    status = Column(Enum(JobStepStatus, name="job_step_status"), nullable=False)
    output_data = Column(JSON, nullable=True)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    job = relationship("Job", back_populates="steps")

    def __repr__(self):
        return f'<JobStep job={self.job_id} step={self.step_name} status={self.status}>'
