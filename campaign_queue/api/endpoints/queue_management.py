from fastapi import APIRouter, Depends

from campaign_queue.core.config import settings
from campaign_queue.core.dependencies import get_job_repository, get_stall_recovery_service
from campaign_queue.core.logger import get_logger
from campaign_queue.schemas.queue import (
    QueueStatusData,
    QueueStatusResponse,
    RecoverStalledRequest,
    RecoverStalledResponse,
)
from campaign_queue.services.job_repository import JobRepository
from campaign_queue.services.stall_recovery import StallRecoveryService

logger = get_logger(__name__)

router = APIRouter()

@router.get("/status", response_model=QueueStatusResponse)
def get_queue_status(repository: JobRepository = Depends(get_job_repository)):
    """Job counts by status, pending jobs by step and active worker count"""
    return QueueStatusResponse(
        status="success",
        data=QueueStatusData(
            by_status=repository.count_by_status(),
            pending_by_step=repository.count_pending_by_step(),
            processing_workers=repository.count_processing_workers(),
        ),
    )

@router.post("/recover-stalled", response_model=RecoverStalledResponse)
def recover_stalled(
    request: RecoverStalledRequest = RecoverStalledRequest(),
    recovery: StallRecoveryService = Depends(get_stall_recovery_service),
):
    """Reset PROCESSING jobs whose lease has expired"""
    timeout_seconds = request.timeout_seconds or settings.STALL_TIMEOUT_SECONDS
    logger.info(
        f"Manual stall recovery requested (timeout {timeout_seconds}s)",
        extra={"component": "queue_management", "timeout_seconds": timeout_seconds},
    )
    recovered = recovery.recover_stalled_jobs(timeout_seconds)
    return RecoverStalledResponse(status="success", recovered=recovered, timeout_seconds=timeout_seconds)
