from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from campaign_queue.core.dependencies import get_job_repository
from campaign_queue.schemas.job import JobDetail
from campaign_queue.services.job_repository import JobRepository


class JobDetailResponse(BaseModel):
    status: str
    data: JobDetail

router = APIRouter()

@router.get("/{job_id}", response_model=JobDetailResponse)
def get_job(job_id: int, repository: JobRepository = Depends(get_job_repository)):
    """Get a job together with its recorded steps"""
    job = repository.get_job(job_id)
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )
    return JobDetailResponse(status="success", data=JobDetail(job=job, steps=repository.get_steps(job_id)))
