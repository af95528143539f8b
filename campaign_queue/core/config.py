from typing import List, Union
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
import json

class Settings(BaseSettings):
    PROJECT_NAME: str = "Campaign Queue"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str):
            if v.startswith("[") and v.endswith("]"):
                # Parse JSON array string
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    return [i.strip() for i in v.split(",")]
            else:
                return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, list):
            return v
        raise ValueError(v)

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "campaign_queue"
    DATABASE_URL: str = Field(default="", validate_default=True)
    DB_POOL_SIZE: int = 20

    @field_validator("DATABASE_URL", mode="before")
    def assemble_db_connection(cls, v: str, values) -> str:
        if isinstance(v, str) and v:
            return v
        postgres_server = values.data.get("POSTGRES_SERVER")
        postgres_user = values.data.get("POSTGRES_USER")
        postgres_password = values.data.get("POSTGRES_PASSWORD")
        postgres_db = values.data.get("POSTGRES_DB")
        return f"postgresql+psycopg://{postgres_user}:{postgres_password}@{postgres_server}/{postgres_db}"

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_URL: str = Field(default="", validate_default=True)

    @field_validator("REDIS_URL", mode="before")
    def assemble_redis_connection(cls, v: str, values) -> str:
        if isinstance(v, str) and v:
            return v
        redis_host = values.data.get("REDIS_HOST")
        redis_port = values.data.get("REDIS_PORT")
        redis_db = values.data.get("REDIS_DB")
        return f"redis://{redis_host}:{redis_port}/{redis_db}"

    # Celery
    CELERY_BROKER_URL: str = Field(default="", validate_default=True)
    CELERY_RESULT_BACKEND: str = Field(default="", validate_default=True)

    @field_validator("CELERY_BROKER_URL", mode="before")
    def set_celery_broker(cls, v: str, values) -> str:
        if isinstance(v, str) and v:
            return v
        return values.data.get("REDIS_URL", "")

    @field_validator("CELERY_RESULT_BACKEND", mode="before")
    def set_celery_backend(cls, v: str, values) -> str:
        if isinstance(v, str) and v:
            return v
        return values.data.get("REDIS_URL", "")

    # Queue tuning
    WORKER_COUNT: int = 4
    WORKER_POLL_INTERVAL_SECONDS: float = 1.0
    HEARTBEAT_INTERVAL_SECONDS: float = 30.0
    STALL_TIMEOUT_SECONDS: int = 300
    STALL_SWEEP_INTERVAL_SECONDS: int = 60
    CLAIM_MAX_ATTEMPTS: int = 5
    BULK_INSERT_BATCH_SIZE: int = 1000

    # Retry policy
    MAX_RETRIES: int = 5
    RETRY_BACKOFF_BASE_SECONDS: int = 2
    RETRY_BACKOFF_MAX_SECONDS: int = 300

    # Simulated collaborators
    MAIL_RATE_LIMIT_PER_SECOND: int = 500
    MAIL_ERROR_RATE: float = 0.05
    MAIL_LATENCY_MS: int = 200
    CRM_ERROR_RATE: float = 0.02
    CRM_LATENCY_MS: int = 500
    SENTIMENT_ERROR_RATE: float = 0.01
    SENTIMENT_LATENCY_MS: int = 300

    # "keyword" or "openai"
    SENTIMENT_BACKEND: str = "keyword"
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"

    # Distributed rate limiting for the mail sender
    RATE_LIMITING_ENABLED: bool = False
    MAIL_RATE_LIMIT_REQUESTS: int = 600
    MAIL_RATE_LIMIT_PERIOD: int = 60

    @field_validator(
        "MAIL_RATE_LIMIT_REQUESTS", "MAIL_RATE_LIMIT_PERIOD", "MAIL_RATE_LIMIT_PER_SECOND",
        mode="before"
    )
    def validate_rate_limit_integers(cls, v):
        """Validate rate limit configuration values as positive integers."""
        if isinstance(v, str):
            # Handle comments in env values (e.g., "60  # requests per minute")
            value = v.split('#')[0].strip()
            parsed = int(value)
        else:
            parsed = int(v)

        if parsed <= 0:
            raise ValueError(f"Rate limit values must be positive integers, got: {parsed}")
        return parsed

    # Logging Configuration
    LOG_DIR: str = "./logs"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    LOG_TO_FILE: bool = False
    LOG_ROTATION_SIZE: int = 10485760  # 10MB
    LOG_BACKUP_COUNT: int = 5

    @field_validator(
        "LOG_ROTATION_SIZE", "LOG_BACKUP_COUNT", "DB_POOL_SIZE", "WORKER_COUNT",
        "STALL_TIMEOUT_SECONDS", "STALL_SWEEP_INTERVAL_SECONDS", "CLAIM_MAX_ATTEMPTS",
        "BULK_INSERT_BATCH_SIZE", "MAX_RETRIES", "RETRY_BACKOFF_BASE_SECONDS",
        "RETRY_BACKOFF_MAX_SECONDS",
        mode="before"
    )
    def validate_integers(cls, v):
        if isinstance(v, str):
            # Handle comments in env values (e.g., "10485760  # 10MB")
            value = v.split('#')[0].strip()
            return int(value)
        return v

    class Config:
        case_sensitive = True
        env_file = ".env"
        extra = "allow"

def get_redis_connection():
    """
    Create and return a Redis connection for rate limiting.

    Returns:
        Redis: A Redis client instance configured from application settings

    Raises:
        ConnectionError: If Redis connection cannot be established
    """
    from redis import Redis

    try:
        redis_client = Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            decode_responses=True,  # Ensures string responses instead of bytes
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30
        )

        # Test the connection
        redis_client.ping()
        return redis_client

    except Exception as e:
        from campaign_queue.core.logger import get_logger
        logger = get_logger(__name__)
        logger.error(f"Failed to connect to Redis: {str(e)}")
        raise ConnectionError(f"Could not connect to Redis: {str(e)}")

settings = Settings()
