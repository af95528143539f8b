"""
Simulated CRM.

Contacts are derived deterministically from the address so repeated queries
agree with each other. Recorded actions are keyed by idempotency key.
"""

import random
import threading
import time
import zlib
from typing import Any, Dict, List, Optional

from campaign_queue.core.exceptions import ServiceError, ServiceErrorCode
from campaign_queue.core.logger import get_logger
from campaign_queue.utils.datetime_utils import utcnow

logger = get_logger(__name__)

SERVICE_NAME = "crm"
DEFAULT_QUERY_LIMIT = 100

SAMPLE_REPLIES = (
    "Thanks, this looks great. Can we set up a call?",
    "Not interested, please remove me from your list.",
    "Got it, I will take a look next quarter.",
    "Love the product, yes please send pricing.",
    "This is a terrible time for us, no thanks.",
    "Forwarded to my team.",
)


class SimulatedCrmClient:
    def __init__(
        self,
        error_rate: float = 0.02,
        latency_ms: int = 500,
        enabled: bool = True,
        replies: Optional[Dict[str, str]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.error_rate = error_rate
        self.latency_ms = latency_ms
        self.enabled = enabled
        self.replies = dict(replies or {})
        self.rng = rng or random.Random()
        self.actions: Dict[str, Dict[str, Any]] = {}
        self.query_count = 0
        self._lock = threading.Lock()

    def query(self, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Look up contacts.

        Args:
            criteria: ``email`` restricts to one contact; ``limit`` caps results

        Returns:
            Contact records with ``id``, ``email``, ``name``, ``company`` and ``last_reply``
        """
        self._call()
        with self._lock:
            self.query_count += 1

        limit = criteria.get("limit", DEFAULT_QUERY_LIMIT)
        email = criteria.get("email")
        if email:
            records = [self._contact(email)]
        else:
            records = [self._contact(f"customer{i}@example.com") for i in range(limit)]

        logger.debug(f"CRM query returned {len(records[:limit])} records", extra={"component": SERVICE_NAME})
        return records[:limit]

    def record_action(self, email: str, action: str, idempotency_key: str) -> Dict[str, Any]:
        """Record a follow-up action; a repeated key returns the original record."""
        with self._lock:
            existing = self.actions.get(idempotency_key)
        if existing:
            return existing

        self._call()
        with self._lock:
            record = self.actions.setdefault(idempotency_key, {
                "id": f"act_{len(self.actions) + 1}",
                "email": email,
                "action": action,
                "idempotency_key": idempotency_key,
                "recorded_at": utcnow().isoformat(),
            })

        logger.info(f"CRM action recorded: {action}", extra={"component": SERVICE_NAME, "action": action})
        return record

    def _contact(self, email: str) -> Dict[str, Any]:
        digest = zlib.crc32(email.lower().encode("utf-8"))
        local_part = email.split("@", 1)[0]
        return {
            "id": f"CRM{1000 + digest % 100000}",
            "email": email,
            "name": local_part.replace(".", " ").title(),
            "company": f"Company {digest % 500}",
            "last_reply": self.replies.get(email, SAMPLE_REPLIES[digest % len(SAMPLE_REPLIES)]),
        }

    def _call(self) -> None:
        if not self.enabled:
            raise ServiceError(ServiceErrorCode.SERVICE_ERROR, "CRM API is disabled", SERVICE_NAME)
        if self.latency_ms > 0:
            time.sleep(self.latency_ms / 1000)
        if self.rng.random() < self.error_rate:
            raise ServiceError(ServiceErrorCode.SERVICE_ERROR, "CRM query failed", SERVICE_NAME)

    def reset(self) -> None:
        with self._lock:
            self.actions.clear()
            self.query_count = 0
