"""Read access and lease bookkeeping for jobs and their step ledger."""

from typing import Dict, List, Optional

from sqlalchemy import func

from campaign_queue.core.database import SessionFactory, get_session_factory, transaction
from campaign_queue.core.exceptions import JobNotFoundError
from campaign_queue.models.job import Job, JobStatus, JobStepName
from campaign_queue.models.job_step import JobStep, JobStepStatus
from campaign_queue.schemas.job import JobRecord, JobStepRecord, JobStatusCounts
from campaign_queue.utils.datetime_utils import utcnow


class JobRepository:
    """Returns plain records; ORM rows never leave this class."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory or get_session_factory()

    def get_job(self, job_id: int) -> Optional[JobRecord]:
        with transaction(self.session_factory) as session:
            job = session.get(Job, job_id)
            return JobRecord.model_validate(job) if job else None

    def require_job(self, job_id: int) -> JobRecord:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(
        self,
        campaign_id: Optional[int] = None,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> List[JobRecord]:
        with transaction(self.session_factory) as session:
            query = session.query(Job)
            if campaign_id is not None:
                query = query.filter(Job.campaign_id == campaign_id)
            if status is not None:
                query = query.filter(Job.status == status)
            jobs = query.order_by(Job.created_at.asc(), Job.id.asc()).limit(limit).all()
            return [JobRecord.model_validate(job) for job in jobs]

    def get_steps(self, job_id: int) -> List[JobStepRecord]:
        with transaction(self.session_factory) as session:
            steps = (
                session.query(JobStep)
                .filter(JobStep.job_id == job_id)
                .order_by(JobStep.id.asc())
                .all()
            )
            return [JobStepRecord.model_validate(step) for step in steps]

    def get_step(self, job_id: int, step_name: JobStepName) -> Optional[JobStepRecord]:
        with transaction(self.session_factory) as session:
            step = (
                session.query(JobStep)
                .filter(JobStep.job_id == job_id, JobStep.step_name == step_name)
                .first()
            )
            return JobStepRecord.model_validate(step) if step else None

    def get_completed_step(self, job_id: int, step_name: JobStepName) -> Optional[JobStepRecord]:
        step = self.get_step(job_id, step_name)
        if step is not None and step.status == JobStepStatus.COMPLETED:
            return step
        return None

    def count_steps(self, job_id: Optional[int] = None) -> int:
        with transaction(self.session_factory) as session:
            query = session.query(func.count(JobStep.id))
            if job_id is not None:
                query = query.filter(JobStep.job_id == job_id)
            return query.scalar() or 0

    def heartbeat(self, job_id: int, worker_id: str) -> bool:
        """Refresh the lease of a job this worker still owns.

        Returns False once the job is no longer PROCESSING under ``worker_id``
        (finished, failed, or reclaimed by stall recovery).
        """
        with transaction(self.session_factory) as session:
            updated = (
                session.query(Job)
                .filter(
                    Job.id == job_id,
                    Job.worker_id == worker_id,
                    Job.status == JobStatus.PROCESSING,
                )
                .update({Job.last_heartbeat: utcnow()}, synchronize_session=False)
            )
        return updated == 1

    def count_by_status(self, campaign_id: Optional[int] = None) -> JobStatusCounts:
        with transaction(self.session_factory) as session:
            query = session.query(Job.status, func.count(Job.id))
            if campaign_id is not None:
                query = query.filter(Job.campaign_id == campaign_id)
            rows = query.group_by(Job.status).all()

        counts: Dict[str, int] = {status.value: 0 for status in JobStatus}
        for status, count in rows:
            counts[JobStatus(status).value] = count
        return JobStatusCounts(**counts, total=sum(counts.values()))

    def count_pending_by_step(self) -> Dict[str, int]:
        with transaction(self.session_factory) as session:
            rows = (
                session.query(Job.current_step, func.count(Job.id))
                .filter(Job.status == JobStatus.PENDING)
                .group_by(Job.current_step)
                .all()
            )
        return {JobStepName(step).value: count for step, count in rows}

    def count_processing_workers(self) -> int:
        with transaction(self.session_factory) as session:
            return (
                session.query(func.count(func.distinct(Job.worker_id)))
                .filter(Job.status == JobStatus.PROCESSING)
                .scalar()
                or 0
            )
