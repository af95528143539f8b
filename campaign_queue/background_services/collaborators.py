"""Wires the collaborators the step engine talks to from settings."""

import random
from dataclasses import dataclass
from typing import Optional

from campaign_queue.background_services.crm_client import SimulatedCrmClient
from campaign_queue.background_services.mail_sender import SimulatedMailSender
from campaign_queue.background_services.sentiment_service import KeywordSentimentAnalyzer, OpenAISentimentAnalyzer
from campaign_queue.core.api_integration_rate_limiter import MAIL_SENDER_API, ApiIntegrationRateLimiter
from campaign_queue.core.config import get_redis_connection, settings
from campaign_queue.core.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Collaborators:
    mail_sender: SimulatedMailSender
    crm_client: SimulatedCrmClient
    sentiment_analyzer: object

    def reset(self) -> None:
        self.mail_sender.reset()
        self.crm_client.reset()


def build_collaborators(config=None, redis_client=None, seed: Optional[int] = None) -> Collaborators:
    """
    Build the configured mail sender, CRM client and sentiment analyzer.

    A Redis-backed limiter is attached to the mail sender when
    RATE_LIMITING_ENABLED is set. SENTIMENT_BACKEND selects the keyword
    analyzer or OpenAI.
    """
    config = config or settings
    rng = random.Random(seed)

    rate_limiter = None
    if config.RATE_LIMITING_ENABLED:
        rate_limiter = ApiIntegrationRateLimiter.for_api(redis_client or get_redis_connection(), MAIL_SENDER_API)

    mail_sender = SimulatedMailSender(
        rate_limit_per_second=config.MAIL_RATE_LIMIT_PER_SECOND,
        error_rate=config.MAIL_ERROR_RATE,
        latency_ms=config.MAIL_LATENCY_MS,
        rate_limiter=rate_limiter,
        rng=rng,
    )
    crm_client = SimulatedCrmClient(
        error_rate=config.CRM_ERROR_RATE,
        latency_ms=config.CRM_LATENCY_MS,
        rng=rng,
    )

    if config.SENTIMENT_BACKEND == "openai":
        sentiment_analyzer = OpenAISentimentAnalyzer(api_key=config.OPENAI_API_KEY, model=config.OPENAI_MODEL)
    elif config.SENTIMENT_BACKEND == "keyword":
        sentiment_analyzer = KeywordSentimentAnalyzer(
            error_rate=config.SENTIMENT_ERROR_RATE,
            latency_ms=config.SENTIMENT_LATENCY_MS,
            rng=rng,
        )
    else:
        raise ValueError(f"Unknown SENTIMENT_BACKEND: {config.SENTIMENT_BACKEND}")

    logger.info(
        f"Collaborators built (sentiment={config.SENTIMENT_BACKEND}, rate_limiting={bool(rate_limiter)})",
        extra={"component": "collaborators"},
    )
    return Collaborators(mail_sender=mail_sender, crm_client=crm_client, sentiment_analyzer=sentiment_analyzer)
