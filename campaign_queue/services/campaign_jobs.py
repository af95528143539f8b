"""
Campaign Job Service

Creates campaigns and materialises their per-customer jobs in bulk.
"""

from typing import List, Optional, Sequence

from sqlalchemy import insert

from campaign_queue.core.config import settings
from campaign_queue.core.database import SessionFactory, get_session_factory, transaction
from campaign_queue.core.exceptions import CampaignNotFoundError, InvalidStatusTransitionError
from campaign_queue.core.logger import get_logger
from campaign_queue.core.metrics import MetricsCollector, metrics as default_metrics
from campaign_queue.models.campaign import Campaign
from campaign_queue.models.campaign_status import CampaignStatus
from campaign_queue.models.job import Job, JobStatus, JobStepName
from campaign_queue.schemas.campaign import CampaignCreate, CampaignRecord
from campaign_queue.utils.datetime_utils import utcnow

logger = get_logger(__name__)


class CampaignJobService:
    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        batch_size: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.batch_size = batch_size or settings.BULK_INSERT_BATCH_SIZE
        self.metrics = metrics or default_metrics

    def create_campaign(self, campaign_data: CampaignCreate) -> CampaignRecord:
        with transaction(self.session_factory) as session:
            campaign = Campaign(
                name=campaign_data.name,
                user_id=campaign_data.user_id,
                status=campaign_data.status,
            )
            session.add(campaign)
            session.flush()
            record = CampaignRecord.model_validate(campaign)

        logger.info(f"Created campaign {record.id}", extra={"component": "campaigns", "campaign_id": record.id})
        return record

    def get_campaign(self, campaign_id: int) -> CampaignRecord:
        with transaction(self.session_factory) as session:
            campaign = session.get(Campaign, campaign_id)
            if not campaign:
                raise CampaignNotFoundError(campaign_id)
            return CampaignRecord.model_validate(campaign)

    def update_campaign_status(self, campaign_id: int, new_status: CampaignStatus) -> CampaignRecord:
        """Move a campaign to ``new_status`` if the transition is allowed."""
        with transaction(self.session_factory) as session:
            campaign = session.get(Campaign, campaign_id)
            if not campaign:
                raise CampaignNotFoundError(campaign_id)

            if new_status != campaign.status and new_status not in Campaign.valid_transitions_from(campaign.status):
                raise InvalidStatusTransitionError(
                    f"Invalid status transition from {campaign.status.value} to {new_status.value}"
                )

            campaign.status = new_status
            session.flush()
            return CampaignRecord.model_validate(campaign)

    def create_campaign_jobs(self, campaign_id: int, emails: Sequence[str]) -> int:
        """
        Create one PENDING job at SEND_EMAIL per address.

        Rows are inserted with executemany in fixed-size batches, all inside
        one transaction: if any batch fails nothing is committed. Duplicate
        addresses each get their own job.

        Args:
            campaign_id: Owning campaign
            emails: Customer addresses, in the order they should be claimed

        Returns:
            Number of jobs created
        """
        if not emails:
            return 0

        created_at = utcnow()
        total = 0
        with transaction(self.session_factory) as session:
            for start in range(0, len(emails), self.batch_size):
                batch = emails[start:start + self.batch_size]
                rows: List[dict] = [
                    {
                        "campaign_id": campaign_id,
                        "customer_email": email,
                        "current_step": JobStepName.SEND_EMAIL,
                        "status": JobStatus.PENDING,
                        "retry_count": 0,
                        "created_at": created_at,
                    }
                    for email in batch
                ]
                session.execute(insert(Job), rows)
                total += len(rows)

        self.metrics.increment("jobs.enqueued", total, tags={"campaign_id": str(campaign_id)})
        logger.info(
            f"Created {total} jobs for campaign {campaign_id}",
            extra={"component": "campaigns", "campaign_id": campaign_id, "count": total},
        )
        return total
