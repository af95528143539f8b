from campaign_queue.models.campaign import Campaign
from campaign_queue.models.campaign_status import CampaignStatus
from campaign_queue.models.job import Job, JobStatus, JobStepName, WORKFLOW_STEPS, get_next_step
from campaign_queue.models.job_step import JobStep, JobStepStatus

__all__ = [
    "Campaign", "CampaignStatus", "Job", "JobStatus", "JobStepName", "WORKFLOW_STEPS",
    "get_next_step", "JobStep", "JobStepStatus",
]
