"""Error types shared by the queue core and its collaborators."""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """How the step engine reacts to a failure."""
    RETRYABLE = "RETRYABLE"
    PERMANENT = "PERMANENT"
    STORE_FAILURE = "STORE_FAILURE"


class ServiceErrorCode(str, enum.Enum):
    """Failure tags reported by external collaborators."""
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    SERVICE_ERROR = "SERVICE_ERROR"


class ServiceError(Exception):
    """A failed call to the mail sender, CRM or sentiment analyzer.

    Callers branch on ``code``, never on the exception type.
    """

    def __init__(self, code: ServiceErrorCode, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.code = ServiceErrorCode(code)
        self.message = message
        self.service = service

    def __str__(self) -> str:
        prefix = f"{self.service}: " if self.service else ""
        return f"{prefix}{self.message}"

    def __repr__(self) -> str:
        return f"ServiceError(code={self.code.value}, service={self.service!r}, message={self.message!r})"


class JobNotFoundError(LookupError):
    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class CampaignNotFoundError(LookupError):
    def __init__(self, campaign_id: int):
        super().__init__(f"Campaign {campaign_id} not found")
        self.campaign_id = campaign_id


class InvalidStatusTransitionError(ValueError):
    pass
