import random
import re
import time
from typing import Optional

from openai import APITimeoutError, OpenAI, OpenAIError, RateLimitError

from campaign_queue.core.api_integration_rate_limiter import ApiIntegrationRateLimiter
from campaign_queue.core.config import settings
from campaign_queue.core.exceptions import ServiceError, ServiceErrorCode
from campaign_queue.core.logger import get_logger

logger = get_logger(__name__)

SERVICE_NAME = "sentiment"
SENTIMENTS = ("positive", "negative", "neutral")

POSITIVE_WORDS = frozenset({"great", "excellent", "good", "love", "perfect", "thank", "thanks", "yes"})
NEGATIVE_WORDS = frozenset({"bad", "terrible", "hate", "no", "not", "poor", "awful"})

_WORD_RE = re.compile(r"[a-z']+")


class KeywordSentimentAnalyzer:
    """Classifies text by counting positive and negative keywords."""

    def __init__(
        self,
        error_rate: float = 0.01,
        latency_ms: int = 300,
        enabled: bool = True,
        rng: Optional[random.Random] = None,
    ):
        self.error_rate = error_rate
        self.latency_ms = latency_ms
        self.enabled = enabled
        self.rng = rng or random.Random()

    def analyze(self, text: str) -> str:
        if not self.enabled:
            raise ServiceError(ServiceErrorCode.SERVICE_ERROR, "Sentiment API is disabled", SERVICE_NAME)
        if self.latency_ms > 0:
            time.sleep(self.latency_ms / 1000)
        if self.rng.random() < self.error_rate:
            raise ServiceError(ServiceErrorCode.SERVICE_ERROR, "Sentiment analysis failed", SERVICE_NAME)

        words = _WORD_RE.findall(text.lower())
        positive = sum(1 for word in words if word in POSITIVE_WORDS)
        negative = sum(1 for word in words if word in NEGATIVE_WORDS)

        if positive > negative:
            sentiment = "positive"
        elif negative > positive:
            sentiment = "negative"
        else:
            sentiment = "neutral"

        logger.debug(f"Analyzed reply -> {sentiment}", extra={"component": SERVICE_NAME})
        return sentiment


class OpenAISentimentAnalyzer:
    """
    Sentiment classification through the OpenAI chat completions API.

    API failures are reported as ServiceError: rate limits as RATE_LIMIT,
    timeouts as TIMEOUT and everything else as SERVICE_ERROR, so the step
    engine retries them.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        rate_limiter: Optional[ApiIntegrationRateLimiter] = None,
        client: Optional[OpenAI] = None,
    ):
        api_key = api_key or settings.OPENAI_API_KEY
        if client is None and not api_key:
            raise ValueError("OPENAI_API_KEY is not set")
        self.client = client or OpenAI(api_key=api_key)
        self.model = model or settings.OPENAI_MODEL
        self.rate_limiter = rate_limiter

        logger.info(
            f"OpenAISentimentAnalyzer initialized with model {self.model}",
            extra={'component': 'openai_service', 'rate_limiting': 'enabled' if rate_limiter else 'disabled'}
        )

    def analyze(self, text: str) -> str:
        if not text.strip():
            return "neutral"

        if self.rate_limiter and not self.rate_limiter.acquire():
            raise ServiceError(
                ServiceErrorCode.RATE_LIMIT,
                f"Rate limit exceeded for OpenAI API. Try again in {self.rate_limiter.period_seconds} seconds.",
                SERVICE_NAME,
            )

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "Classify the sentiment of a customer's email reply. "
                            "Answer with exactly one word: positive, negative or neutral."
                        ),
                    },
                    {"role": "user", "content": text},
                ],
                temperature=0,
                max_tokens=3,
            )
        except RateLimitError as e:
            raise ServiceError(ServiceErrorCode.RATE_LIMIT, f"OpenAI rate limit: {e}", SERVICE_NAME) from e
        except APITimeoutError as e:
            raise ServiceError(ServiceErrorCode.TIMEOUT, f"OpenAI request timed out: {e}", SERVICE_NAME) from e
        except OpenAIError as e:
            raise ServiceError(ServiceErrorCode.SERVICE_ERROR, f"OpenAI request failed: {e}", SERVICE_NAME) from e

        answer = (response.choices[0].message.content or "").strip().lower()
        sentiment = next((s for s in SENTIMENTS if answer.startswith(s)), "neutral")
        logger.info(f"OpenAI sentiment: {sentiment}", extra={'component': 'openai_service', 'model': self.model})
        return sentiment
