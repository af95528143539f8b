"""Direct store access for arranging and asserting job state in tests."""

from typing import Any, Dict, Optional

from campaign_queue.core.database import transaction
from campaign_queue.models.job import Job, JobStepName
from campaign_queue.models.job_step import JobStep, JobStepStatus
from campaign_queue.utils.datetime_utils import utcnow


def update_job(session_factory, job_id: int, **fields: Any) -> None:
    """Force column values onto a job, bypassing the queue protocols."""
    with transaction(session_factory) as session:
        session.query(Job).filter(Job.id == job_id).update(
            {getattr(Job, name): value for name, value in fields.items()},
            synchronize_session=False,
        )


def insert_ledger_row(
    session_factory,
    job_id: int,
    step: JobStepName,
    status: JobStepStatus = JobStepStatus.COMPLETED,
    output: Optional[Dict[str, Any]] = None,
) -> None:
    with transaction(session_factory) as session:
        session.add(JobStep(
            job_id=job_id,
            step_name=step,
            status=status,
            output_data=output or {},
            started_at=utcnow(),
            completed_at=utcnow(),
        ))
