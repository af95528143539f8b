"""
Stall Recovery

Returns jobs whose lease expired to PENDING. The staleness check and the
reset are a single conditional UPDATE, so a job that finishes or heartbeats
while the sweep runs is left alone, and concurrent sweepers reset each job
at most once.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy import func

from campaign_queue.core.config import settings
from campaign_queue.core.database import SessionFactory, get_session_factory, transaction
from campaign_queue.core.logger import get_logger
from campaign_queue.core.metrics import MetricsCollector, metrics as default_metrics
from campaign_queue.models.job import Job, JobStatus
from campaign_queue.utils.datetime_utils import utcnow

logger = get_logger(__name__)


class StallRecoveryService:
    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.metrics = metrics or default_metrics

    def recover_stalled_jobs(self, timeout_seconds: Optional[int] = None) -> int:
        """
        Reset PROCESSING jobs with no sign of life for ``timeout_seconds``.

        Liveness is the last heartbeat, falling back to the claim time and
        then the creation time. Ownership fields are cleared; retry_count is
        kept.

        Returns:
            Number of jobs reset
        """
        if timeout_seconds is None:
            timeout_seconds = settings.STALL_TIMEOUT_SECONDS

        cutoff = utcnow() - timedelta(seconds=timeout_seconds)
        last_seen = func.coalesce(Job.last_heartbeat, Job.started_at, Job.created_at)

        with transaction(self.session_factory) as session:
            recovered = (
                session.query(Job)
                .filter(Job.status == JobStatus.PROCESSING, last_seen < cutoff)
                .update(
                    {
                        Job.status: JobStatus.PENDING,
                        Job.worker_id: None,
                        Job.started_at: None,
                        Job.last_heartbeat: None,
                    },
                    synchronize_session=False,
                )
            )

        if recovered:
            self.metrics.increment("jobs.recovered", recovered)
            logger.warning(
                f"Recovered {recovered} stalled jobs (timeout {timeout_seconds}s)",
                extra={"component": "stall_recovery", "count": recovered, "timeout_seconds": timeout_seconds},
            )
        else:
            logger.debug("No stalled jobs found", extra={"component": "stall_recovery"})
        return recovered
