from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from campaign_queue.core.dependencies import get_campaign_job_service, get_job_repository
from campaign_queue.core.exceptions import CampaignNotFoundError, InvalidStatusTransitionError
from campaign_queue.core.logger import get_logger
from campaign_queue.schemas.campaign import CampaignCreate, CampaignRecord, CampaignStatusUpdate
from campaign_queue.schemas.job import BulkEnqueueRequest, BulkEnqueueResponse, JobStatusCounts
from campaign_queue.services.campaign_jobs import CampaignJobService
from campaign_queue.services.job_repository import JobRepository

logger = get_logger(__name__)


class CampaignResponse(BaseModel):
    status: str
    data: CampaignRecord

class BulkEnqueueEnvelope(BaseModel):
    status: str
    data: BulkEnqueueResponse

class CampaignJobsSummaryResponse(BaseModel):
    status: str
    data: JobStatusCounts

router = APIRouter()


def _not_found(e: CampaignNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
def create_campaign(
    campaign_in: CampaignCreate,
    service: CampaignJobService = Depends(get_campaign_job_service),
):
    """Create a campaign"""
    campaign = service.create_campaign(campaign_in)
    return CampaignResponse(status="success", data=campaign)


@router.get("/{campaign_id}", response_model=CampaignResponse)
def get_campaign(
    campaign_id: int,
    service: CampaignJobService = Depends(get_campaign_job_service),
):
    try:
        return CampaignResponse(status="success", data=service.get_campaign(campaign_id))
    except CampaignNotFoundError as e:
        raise _not_found(e)


@router.patch("/{campaign_id}/status", response_model=CampaignResponse)
def update_campaign_status(
    campaign_id: int,
    status_update: CampaignStatusUpdate,
    service: CampaignJobService = Depends(get_campaign_job_service),
):
    """Change a campaign's status; only allowed transitions are accepted"""
    try:
        campaign = service.update_campaign_status(campaign_id, status_update.status)
    except CampaignNotFoundError as e:
        raise _not_found(e)
    except InvalidStatusTransitionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return CampaignResponse(status="success", data=campaign)


@router.post("/{campaign_id}/jobs", response_model=BulkEnqueueEnvelope, status_code=status.HTTP_201_CREATED)
def enqueue_campaign_jobs(
    campaign_id: int,
    request: BulkEnqueueRequest,
    service: CampaignJobService = Depends(get_campaign_job_service),
):
    """Create one job per address for the campaign"""
    try:
        service.get_campaign(campaign_id)
    except CampaignNotFoundError as e:
        raise _not_found(e)

    created = service.create_campaign_jobs(campaign_id, request.emails)
    return BulkEnqueueEnvelope(
        status="success",
        data=BulkEnqueueResponse(campaign_id=campaign_id, created=created),
    )


@router.get("/{campaign_id}/jobs/summary", response_model=CampaignJobsSummaryResponse)
def campaign_jobs_summary(
    campaign_id: int,
    service: CampaignJobService = Depends(get_campaign_job_service),
    repository: JobRepository = Depends(get_job_repository),
):
    """Job counts by status for one campaign"""
    try:
        service.get_campaign(campaign_id)
    except CampaignNotFoundError as e:
        raise _not_found(e)
    return CampaignJobsSummaryResponse(status="success", data=repository.count_by_status(campaign_id))
