"""Failure classification and retry backoff for step actions."""

from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from campaign_queue.core.config import settings
from campaign_queue.core.exceptions import ErrorKind, ServiceError, ServiceErrorCode

RETRYABLE_CODES = frozenset({
    ServiceErrorCode.RATE_LIMIT,
    ServiceErrorCode.TIMEOUT,
    ServiceErrorCode.SERVICE_ERROR,
})


def classify(error: BaseException) -> ErrorKind:
    """Map a failure to how the step engine should react to it.

    Collaborator errors are classified by their code; store errors are
    STORE_FAILURE; anything unrecognised is PERMANENT.
    """
    if isinstance(error, ServiceError):
        if error.code in RETRYABLE_CODES:
            return ErrorKind.RETRYABLE
        return ErrorKind.PERMANENT
    if isinstance(error, SQLAlchemyError):
        return ErrorKind.STORE_FAILURE
    return ErrorKind.PERMANENT


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    backoff_base_seconds: float = 2
    backoff_max_seconds: float = 300

    @classmethod
    def from_settings(cls, config=None) -> "RetryPolicy":
        config = config or settings
        return cls(
            max_retries=config.MAX_RETRIES,
            backoff_base_seconds=config.RETRY_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=config.RETRY_BACKOFF_MAX_SECONDS,
        )

    def backoff_seconds(self, retry_count: int) -> float:
        """Delay before attempt number ``retry_count`` (1-based), capped."""
        if retry_count <= 0:
            return 0
        return min(self.backoff_max_seconds, self.backoff_base_seconds * 2 ** (retry_count - 1))

    def exhausted(self, retry_count: int) -> bool:
        return retry_count > self.max_retries
