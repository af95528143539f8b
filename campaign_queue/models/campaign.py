from sqlalchemy import Column, Integer, String, DateTime, Enum
from sqlalchemy.orm import relationship
from typing import List

from campaign_queue.core.database import Base
from campaign_queue.models.campaign_status import CampaignStatus
from campaign_queue.utils.datetime_utils import utcnow


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    user_id = Column(Integer, nullable=False)
    status = Column(Enum(CampaignStatus, name="campaign_status"), default=CampaignStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    jobs = relationship("Job", back_populates="campaign")

    # Define valid status transitions
    VALID_TRANSITIONS = {
        CampaignStatus.DRAFT: [CampaignStatus.ACTIVE, CampaignStatus.ARCHIVED],
        CampaignStatus.ACTIVE: [CampaignStatus.PAUSED, CampaignStatus.COMPLETED, CampaignStatus.ARCHIVED],
        CampaignStatus.PAUSED: [CampaignStatus.ACTIVE, CampaignStatus.ARCHIVED],
        CampaignStatus.COMPLETED: [CampaignStatus.ARCHIVED],
        CampaignStatus.ARCHIVED: []
    }

    @classmethod
    def valid_transitions_from(cls, status: CampaignStatus) -> List[CampaignStatus]:
        """Get list of valid status transitions from ``status``."""
        return cls.VALID_TRANSITIONS.get(status, [])

    def __repr__(self):
        return f'<Campaign {self.id} status={self.status.value if self.status else None}>'
