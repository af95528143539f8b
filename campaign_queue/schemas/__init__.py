from campaign_queue.schemas.campaign import CampaignCreate, CampaignRecord, CampaignStatusUpdate
from campaign_queue.schemas.job import JobRecord, JobStepRecord, JobDetail, JobStatusCounts

__all__ = [
    "CampaignCreate", "CampaignRecord", "CampaignStatusUpdate",
    "JobRecord", "JobStepRecord", "JobDetail", "JobStatusCounts",
]
