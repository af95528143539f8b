from fastapi import Depends

from campaign_queue.core.database import SessionFactory, get_session_factory
from campaign_queue.services.campaign_jobs import CampaignJobService
from campaign_queue.services.job_repository import JobRepository
from campaign_queue.services.stall_recovery import StallRecoveryService


def get_queue_session_factory() -> SessionFactory:
    """Session factory for request handlers; overridden in tests."""
    return get_session_factory()


def get_campaign_job_service(
    session_factory: SessionFactory = Depends(get_queue_session_factory),
) -> CampaignJobService:
    return CampaignJobService(session_factory)


def get_job_repository(
    session_factory: SessionFactory = Depends(get_queue_session_factory),
) -> JobRepository:
    return JobRepository(session_factory)


def get_stall_recovery_service(
    session_factory: SessionFactory = Depends(get_queue_session_factory),
) -> StallRecoveryService:
    return StallRecoveryService(session_factory)
