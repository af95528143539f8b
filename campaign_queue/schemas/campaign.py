from datetime import datetime
from pydantic import BaseModel, Field

from campaign_queue.models.campaign_status import CampaignStatus

class CampaignBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    user_id: int
    status: CampaignStatus = CampaignStatus.ACTIVE

class CampaignCreate(CampaignBase):
    pass

class CampaignStatusUpdate(BaseModel):
    status: CampaignStatus

class CampaignRecord(CampaignBase):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True
