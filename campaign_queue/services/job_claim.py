"""
Claim Protocol

Hands each PENDING job to exactly one worker. The candidate SELECT locks
with ``FOR UPDATE SKIP LOCKED`` where the dialect supports it; the UPDATE is
conditional on the row still being PENDING so a lost race is detected by its
rowcount rather than trusted.
"""

from typing import Optional

from sqlalchemy import or_

from campaign_queue.core.config import settings
from campaign_queue.core.database import SessionFactory, get_session_factory, transaction
from campaign_queue.core.logger import get_logger
from campaign_queue.core.metrics import MetricsCollector, metrics as default_metrics
from campaign_queue.models.job import Job, JobStatus
from campaign_queue.schemas.job import JobRecord
from campaign_queue.utils.datetime_utils import utcnow

logger = get_logger(__name__)


class JobClaimService:
    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        max_attempts: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.max_attempts = max_attempts or settings.CLAIM_MAX_ATTEMPTS
        self.metrics = metrics or default_metrics

    def claim_next_job(self, worker_id: str) -> Optional[JobRecord]:
        """
        Atomically claim the oldest eligible PENDING job for ``worker_id``.

        A job is eligible when its ``scheduled_for`` is unset or not in the
        future. Returns the claimed job (now PROCESSING) or None when nothing
        is eligible or every attempt lost its race.
        """
        for attempt in range(1, self.max_attempts + 1):
            with transaction(self.session_factory) as session:
                now = utcnow()
                job_id = (
                    session.query(Job.id)
                    .filter(
                        Job.status == JobStatus.PENDING,
                        or_(Job.scheduled_for.is_(None), Job.scheduled_for <= now),
                    )
                    .order_by(Job.created_at.asc(), Job.id.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                    .scalar()
                )

                if job_id is None:
                    self.metrics.increment("job.claim_empty", tags={"worker_id": worker_id})
                    return None

                claimed = (
                    session.query(Job)
                    .filter(Job.id == job_id, Job.status == JobStatus.PENDING)
                    .update(
                        {
                            Job.status: JobStatus.PROCESSING,
                            Job.worker_id: worker_id,
                            Job.started_at: now,
                            Job.last_heartbeat: now,
                        },
                        synchronize_session=False,
                    )
                )

                if claimed == 1:
                    job = JobRecord.model_validate(session.get(Job, job_id))
                    self.metrics.increment("job.claimed", tags={"worker_id": worker_id})
                    logger.debug(
                        f"Worker {worker_id} claimed job {job_id}",
                        extra={"component": "job_claim", "job_id": job_id, "worker_id": worker_id},
                    )
                    return job

            logger.debug(
                f"Worker {worker_id} lost race for job {job_id} (attempt {attempt})",
                extra={"component": "job_claim", "job_id": job_id, "worker_id": worker_id},
            )

        logger.info(
            f"Worker {worker_id} gave up claiming after {self.max_attempts} attempts",
            extra={"component": "job_claim", "worker_id": worker_id},
        )
        return None
