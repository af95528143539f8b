from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from campaign_queue.core.database import SessionFactory, transaction
from campaign_queue.core.dependencies import get_queue_session_factory

router = APIRouter()

@router.get("/", status_code=status.HTTP_200_OK)
async def health_check():
    return {"status": "healthy", "service": "campaign-queue"}

@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(session_factory: SessionFactory = Depends(get_queue_session_factory)):
    try:
        with transaction(session_factory) as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {str(e)}"
        )
    return {"status": "ready"}

@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check():
    return {"status": "alive"}
