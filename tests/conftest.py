import random

import pytest
from fastapi.testclient import TestClient

from campaign_queue.background_services.collaborators import Collaborators
from campaign_queue.background_services.crm_client import SimulatedCrmClient
from campaign_queue.background_services.mail_sender import SimulatedMailSender
from campaign_queue.background_services.sentiment_service import KeywordSentimentAnalyzer
from campaign_queue.core.database import create_db_engine, create_session_factory, init_db
from campaign_queue.core.dependencies import get_queue_session_factory
from campaign_queue.core.metrics import MetricsCollector
from campaign_queue.main import app
from campaign_queue.schemas.campaign import CampaignCreate
from campaign_queue.services.campaign_jobs import CampaignJobService
from campaign_queue.services.job_claim import JobClaimService
from campaign_queue.services.job_repository import JobRepository
from campaign_queue.services.retry_policy import RetryPolicy
from campaign_queue.services.stall_recovery import StallRecoveryService
from campaign_queue.services.step_engine import StepEngine


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File-backed SQLite store per test so threads share one database."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'queue.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def metrics_collector():
    return MetricsCollector()


@pytest.fixture
def repository(session_factory):
    return JobRepository(session_factory)


@pytest.fixture
def campaign_service(session_factory, metrics_collector):
    return CampaignJobService(session_factory, metrics=metrics_collector)


@pytest.fixture
def claim_service(session_factory, metrics_collector):
    return JobClaimService(session_factory, metrics=metrics_collector)


@pytest.fixture
def recovery_service(session_factory, metrics_collector):
    return StallRecoveryService(session_factory, metrics=metrics_collector)


@pytest.fixture
def campaign(campaign_service):
    return campaign_service.create_campaign(CampaignCreate(name="Test Campaign", user_id=1))


@pytest.fixture
def mail_sender():
    return SimulatedMailSender(error_rate=0, latency_ms=0, rng=random.Random(1))


@pytest.fixture
def crm_client():
    return SimulatedCrmClient(error_rate=0, latency_ms=0, rng=random.Random(2))


@pytest.fixture
def sentiment_analyzer():
    return KeywordSentimentAnalyzer(error_rate=0, latency_ms=0, rng=random.Random(3))


@pytest.fixture
def collaborators(mail_sender, crm_client, sentiment_analyzer):
    """Deterministic collaborators: no latency, no random failures."""
    return Collaborators(mail_sender=mail_sender, crm_client=crm_client, sentiment_analyzer=sentiment_analyzer)


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_retries=5, backoff_base_seconds=2, backoff_max_seconds=300)


@pytest.fixture
def step_engine(session_factory, collaborators, repository, retry_policy, metrics_collector):
    return StepEngine.from_collaborators(
        collaborators,
        session_factory=session_factory,
        retry_policy=retry_policy,
        repository=repository,
        metrics=metrics_collector,
    )


@pytest.fixture
def enqueue(campaign_service, repository, campaign):
    """Create jobs for the test campaign and return their records in claim order."""
    def _enqueue(emails):
        campaign_service.create_campaign_jobs(campaign.id, emails)
        return repository.list_jobs(campaign_id=campaign.id, limit=len(emails) + 1000)
    return _enqueue


@pytest.fixture
def client(session_factory):
    app.dependency_overrides[get_queue_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()
