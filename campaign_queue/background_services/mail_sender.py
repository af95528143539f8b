"""
Simulated mail delivery provider.

Behaves like a transactional email API: keyed idempotency, address
validation, a per-second send quota, latency and a configurable rate of
random failures.
"""

import random
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Tuple

from email_validator import EmailNotValidError, validate_email

from campaign_queue.core.api_integration_rate_limiter import ApiIntegrationRateLimiter
from campaign_queue.core.exceptions import ServiceError, ServiceErrorCode
from campaign_queue.core.logger import get_logger

logger = get_logger(__name__)

SERVICE_NAME = "mail_sender"
IDEMPOTENCY_TTL_SECONDS = 24 * 60 * 60


@dataclass
class SentMessage:
    address: str
    body: str
    idempotency_key: str
    message_id: str


class SimulatedMailSender:
    def __init__(
        self,
        rate_limit_per_second: int = 500,
        error_rate: float = 0.05,
        latency_ms: int = 200,
        enabled: bool = True,
        rate_limiter: Optional[ApiIntegrationRateLimiter] = None,
        rng: Optional[random.Random] = None,
    ):
        self.rate_limit_per_second = rate_limit_per_second
        self.error_rate = error_rate
        self.latency_ms = latency_ms
        self.enabled = enabled
        self.rate_limiter = rate_limiter
        self.rng = rng or random.Random()
        self.sent: List[SentMessage] = []
        self._idempotency_cache: Dict[str, Tuple[str, float]] = {}
        self._recent_sends: Deque[float] = deque()
        self._lock = threading.Lock()

    def send(self, address: str, body: str, idempotency_key: str) -> str:
        """
        Send an email.

        Returns:
            str: provider message id; the same id for a repeated key

        Raises:
            ServiceError: INVALID_ADDRESS, RATE_LIMIT, TIMEOUT or SERVICE_ERROR
        """
        if not self.enabled:
            raise ServiceError(ServiceErrorCode.SERVICE_ERROR, "Mail API is disabled", SERVICE_NAME)

        cached = self._cached_message_id(idempotency_key)
        if cached:
            logger.info(
                f"Idempotent send detected: {idempotency_key} -> {cached}",
                extra={"component": SERVICE_NAME, "idempotency_key": idempotency_key},
            )
            return cached

        self._sleep()

        try:
            validate_email(address, check_deliverability=False)
        except EmailNotValidError as e:
            raise ServiceError(ServiceErrorCode.INVALID_ADDRESS, f"Invalid email format: {e}", SERVICE_NAME) from e

        if not self._check_local_rate_limit():
            raise ServiceError(
                ServiceErrorCode.RATE_LIMIT,
                f"Rate limit exceeded ({self.rate_limit_per_second}/sec)",
                SERVICE_NAME,
            )

        if self.rate_limiter and not self.rate_limiter.acquire():
            raise ServiceError(
                ServiceErrorCode.RATE_LIMIT,
                f"Rate limit exceeded for {self.rate_limiter.api_name}. "
                f"Try again in {self.rate_limiter.period_seconds} seconds.",
                SERVICE_NAME,
            )

        self._maybe_fail()

        message_id = f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        with self._lock:
            self._idempotency_cache[idempotency_key] = (message_id, time.time())
            self.sent.append(SentMessage(address, body, idempotency_key, message_id))

        logger.info(f"Email sent: {message_id}", extra={"component": SERVICE_NAME, "email": address})
        return message_id

    def _cached_message_id(self, key: str) -> Optional[str]:
        with self._lock:
            cached = self._idempotency_cache.get(key)
            if cached is None:
                return None
            message_id, sent_at = cached
            if time.time() - sent_at < IDEMPOTENCY_TTL_SECONDS:
                return message_id
            del self._idempotency_cache[key]
            return None

    def _check_local_rate_limit(self) -> bool:
        now = time.monotonic()
        with self._lock:
            while self._recent_sends and now - self._recent_sends[0] >= 1.0:
                self._recent_sends.popleft()
            if len(self._recent_sends) >= self.rate_limit_per_second:
                return False
            self._recent_sends.append(now)
            return True

    def _maybe_fail(self) -> None:
        # Failure mix: 30% timeouts, 30% rate limits, 40% internal errors
        roll = self.rng.random()
        if roll < self.error_rate * 0.3:
            raise ServiceError(ServiceErrorCode.TIMEOUT, "Request timeout", SERVICE_NAME)
        if roll < self.error_rate * 0.6:
            raise ServiceError(ServiceErrorCode.RATE_LIMIT, "Rate limit exceeded", SERVICE_NAME)
        if roll < self.error_rate:
            raise ServiceError(ServiceErrorCode.SERVICE_ERROR, "Internal error", SERVICE_NAME)

    def _sleep(self) -> None:
        if self.latency_ms > 0:
            time.sleep(self.latency_ms / 1000)

    def reset(self) -> None:
        """Forget sent messages, idempotency keys and the rate window."""
        with self._lock:
            self.sent.clear()
            self._idempotency_cache.clear()
            self._recent_sends.clear()
