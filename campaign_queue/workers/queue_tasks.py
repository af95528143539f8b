"""Celery entry points for queue maintenance and one-off processing."""

import socket
from functools import lru_cache
from typing import Any, Dict, List, Optional

from campaign_queue.background_services.collaborators import Collaborators, build_collaborators
from campaign_queue.core.config import settings
from campaign_queue.core.database import get_session_factory
from campaign_queue.core.logger import get_logger
from campaign_queue.services.campaign_jobs import CampaignJobService
from campaign_queue.services.job_claim import JobClaimService
from campaign_queue.services.job_repository import JobRepository
from campaign_queue.services.stall_recovery import StallRecoveryService
from campaign_queue.services.step_engine import StepEngine
from campaign_queue.workers.celery_app import celery_app
from campaign_queue.workers.worker import Worker

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_collaborators() -> Collaborators:
    return build_collaborators()


@celery_app.task(name="recover_stalled_jobs_task")
def recover_stalled_jobs_task(timeout_seconds: Optional[int] = None) -> Dict[str, Any]:
    timeout_seconds = timeout_seconds or settings.STALL_TIMEOUT_SECONDS
    recovered = StallRecoveryService(get_session_factory()).recover_stalled_jobs(timeout_seconds)
    return {"recovered": recovered, "timeout_seconds": timeout_seconds}


@celery_app.task(bind=True, name="create_campaign_jobs_task")
def create_campaign_jobs_task(self, campaign_id: int, emails: List[str]) -> Dict[str, Any]:
    """Bulk-enqueue jobs for a campaign from a background task."""
    logger.info(
        f"Enqueueing {len(emails)} jobs for campaign {campaign_id}",
        extra={"component": "queue_tasks", "campaign_id": campaign_id, "task_id": self.request.id},
    )
    created = CampaignJobService(get_session_factory()).create_campaign_jobs(campaign_id, emails)
    return {"campaign_id": campaign_id, "created": created}


@celery_app.task(bind=True, name="process_next_job_task")
def process_next_job_task(self, worker_id: Optional[str] = None) -> Dict[str, Any]:
    """Claim one job and run its current step, like one turn of a worker."""
    worker_id = worker_id or f"celery-{socket.gethostname()}-{self.request.id}"
    session_factory = get_session_factory()
    engine = StepEngine.from_collaborators(get_collaborators(), session_factory=session_factory)
    worker = Worker(worker_id, JobClaimService(session_factory), engine)
    processed = worker.run_once()
    return {"worker_id": worker_id, "processed": processed}


@celery_app.task(name="queue_health_check")
def queue_health_check() -> Dict[str, Any]:
    repository = JobRepository(get_session_factory())
    counts = repository.count_by_status()
    return {
        "status": "healthy",
        "jobs": counts.model_dump(),
        "processing_workers": repository.count_processing_workers(),
    }
