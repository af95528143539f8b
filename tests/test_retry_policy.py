import pytest
from sqlalchemy.exc import OperationalError

from campaign_queue.core.exceptions import ErrorKind, ServiceError, ServiceErrorCode
from campaign_queue.services.retry_policy import RetryPolicy, classify


@pytest.mark.parametrize("code, kind", [
    (ServiceErrorCode.RATE_LIMIT, ErrorKind.RETRYABLE),
    (ServiceErrorCode.TIMEOUT, ErrorKind.RETRYABLE),
    (ServiceErrorCode.SERVICE_ERROR, ErrorKind.RETRYABLE),
    (ServiceErrorCode.INVALID_ADDRESS, ErrorKind.PERMANENT),
])
def test_service_errors_classified_by_code(code, kind):
    assert classify(ServiceError(code, "failed", "mail_sender")) == kind


def test_store_errors_are_store_failures():
    error = OperationalError("UPDATE jobs", {}, Exception("database is locked"))
    assert classify(error) == ErrorKind.STORE_FAILURE


def test_unknown_errors_are_permanent():
    assert classify(ValueError("bad input")) == ErrorKind.PERMANENT


def test_backoff_is_exponential_and_capped():
    policy = RetryPolicy(max_retries=10, backoff_base_seconds=2, backoff_max_seconds=300)

    assert policy.backoff_seconds(0) == 0
    assert policy.backoff_seconds(1) == 2
    assert policy.backoff_seconds(2) == 4
    assert policy.backoff_seconds(3) == 8
    assert policy.backoff_seconds(8) == 256
    assert policy.backoff_seconds(9) == 300
    assert policy.backoff_seconds(50) == 300


def test_exhausted_after_max_retries():
    policy = RetryPolicy(max_retries=5)

    assert not policy.exhausted(5)
    assert policy.exhausted(6)


def test_from_settings_reads_configuration():
    class Config:
        MAX_RETRIES = 2
        RETRY_BACKOFF_BASE_SECONDS = 1
        RETRY_BACKOFF_MAX_SECONDS = 10

    policy = RetryPolicy.from_settings(Config)

    assert policy == RetryPolicy(max_retries=2, backoff_base_seconds=1, backoff_max_seconds=10)


def test_service_error_string_includes_service():
    error = ServiceError(ServiceErrorCode.TIMEOUT, "Request timeout", "crm")

    assert str(error) == "crm: Request timeout"
    assert error.code == ServiceErrorCode.TIMEOUT
    assert "TIMEOUT" in repr(error)
