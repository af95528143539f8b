from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from campaign_queue.core.exceptions import ServiceError, ServiceErrorCode
from campaign_queue.models.job import JobStatus, JobStepName
from campaign_queue.services.step_engine import StepEngine, StepOutcome
from campaign_queue.utils.datetime_utils import utcnow
from campaign_queue.workers.worker import Worker
from tests.helpers.queue_helpers import update_job


def test_stale_job_is_reset(recovery_service, claim_service, enqueue, repository, session_factory, metrics_collector):
    [job] = enqueue(["a@example.com"])
    claim_service.claim_next_job("worker-1")
    update_job(session_factory, job.id, last_heartbeat=utcnow() - timedelta(seconds=600), retry_count=2)

    recovered = recovery_service.recover_stalled_jobs(timeout_seconds=300)

    assert recovered == 1
    stored = repository.get_job(job.id)
    assert stored.status == JobStatus.PENDING
    assert stored.worker_id is None
    assert stored.started_at is None
    assert stored.last_heartbeat is None
    assert stored.retry_count == 2
    assert metrics_collector.get_total("jobs.recovered") == 1

    assert claim_service.claim_next_job("worker-2").id == job.id


def test_fresh_heartbeat_is_untouched(recovery_service, claim_service, enqueue, repository):
    [job] = enqueue(["a@example.com"])
    claim_service.claim_next_job("worker-1")

    assert recovery_service.recover_stalled_jobs(timeout_seconds=300) == 0
    stored = repository.get_job(job.id)
    assert stored.status == JobStatus.PROCESSING
    assert stored.worker_id == "worker-1"


def test_started_at_used_without_heartbeat(recovery_service, enqueue, repository, session_factory):
    stale, fresh = enqueue(["a@example.com", "b@example.com"])
    update_job(session_factory, stale.id, status=JobStatus.PROCESSING, worker_id="w1",
               started_at=utcnow() - timedelta(seconds=400), last_heartbeat=None)
    update_job(session_factory, fresh.id, status=JobStatus.PROCESSING, worker_id="w2",
               started_at=utcnow() - timedelta(seconds=10), last_heartbeat=None)

    assert recovery_service.recover_stalled_jobs(timeout_seconds=300) == 1
    assert repository.get_job(stale.id).status == JobStatus.PENDING
    assert repository.get_job(fresh.id).status == JobStatus.PROCESSING


def test_created_at_used_without_started_or_heartbeat(recovery_service, enqueue, repository, session_factory):
    [job] = enqueue(["a@example.com"])
    update_job(session_factory, job.id, status=JobStatus.PROCESSING, worker_id="w1",
               created_at=utcnow() - timedelta(hours=1), started_at=None, last_heartbeat=None)

    assert recovery_service.recover_stalled_jobs(timeout_seconds=300) == 1
    assert repository.get_job(job.id).status == JobStatus.PENDING


def test_terminal_and_pending_jobs_are_never_touched(recovery_service, enqueue, repository, session_factory):
    old = utcnow() - timedelta(hours=2)
    failed, completed, pending = enqueue(["a@example.com", "b@example.com", "c@example.com"])
    update_job(session_factory, failed.id, status=JobStatus.FAILED, error_message="x", last_heartbeat=old, started_at=old)
    update_job(session_factory, completed.id, status=JobStatus.COMPLETED, current_step=JobStepName.DONE,
               last_heartbeat=old, started_at=old)
    update_job(session_factory, pending.id, created_at=old)

    assert recovery_service.recover_stalled_jobs(timeout_seconds=60) == 0
    assert repository.get_job(failed.id).status == JobStatus.FAILED
    assert repository.get_job(completed.id).status == JobStatus.COMPLETED
    assert repository.get_job(pending.id).status == JobStatus.PENDING


def test_concurrent_sweepers_reset_each_job_once(recovery_service, enqueue, session_factory):
    jobs = enqueue([f"c{i}@example.com" for i in range(12)])
    stale = utcnow() - timedelta(seconds=900)
    for job in jobs:
        update_job(session_factory, job.id, status=JobStatus.PROCESSING, worker_id="dead", last_heartbeat=stale)

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda _: recovery_service.recover_stalled_jobs(timeout_seconds=300), range(4)))

    assert sum(results) == 12


def test_heartbeat_refreshes_lease(claim_service, enqueue, repository, session_factory, recovery_service):
    [job] = enqueue(["a@example.com"])
    claim_service.claim_next_job("worker-1")
    update_job(session_factory, job.id, last_heartbeat=utcnow() - timedelta(seconds=600))

    assert repository.heartbeat(job.id, "worker-1") is True
    assert recovery_service.recover_stalled_jobs(timeout_seconds=300) == 0


def test_heartbeat_rejected_for_other_worker(claim_service, enqueue, repository):
    [job] = enqueue(["a@example.com"])
    claim_service.claim_next_job("worker-1")

    assert repository.heartbeat(job.id, "worker-2") is False


class ReassigningMailSender:
    """Runs ``during_send`` inside the send, as if the step took longer than the lease."""

    def __init__(self, inner, during_send, error_code=None):
        self.inner = inner
        self.during_send = during_send
        self.error_code = error_code

    def send(self, address, body, idempotency_key):
        self.during_send()
        if self.error_code:
            raise ServiceError(self.error_code, "slow and failing", "mail_sender")
        return self.inner.send(address, body, idempotency_key)


def _reassign_to(worker_id, job_id, session_factory, recovery_service, claim_service):
    def reassign():
        update_job(session_factory, job_id, last_heartbeat=utcnow() - timedelta(seconds=600))
        assert recovery_service.recover_stalled_jobs(timeout_seconds=300) == 1
        assert claim_service.claim_next_job(worker_id).id == job_id
    return reassign


def test_slow_worker_cannot_commit_after_lease_reassigned(
    session_factory, claim_service, recovery_service, enqueue, repository, collaborators, metrics_collector
):
    [job] = enqueue(["a@example.com"])
    reassign = _reassign_to("worker-2", job.id, session_factory, recovery_service, claim_service)
    slow_engine = StepEngine(
        mail_sender=ReassigningMailSender(collaborators.mail_sender, reassign),
        crm_client=collaborators.crm_client,
        sentiment_analyzer=collaborators.sentiment_analyzer,
        session_factory=session_factory,
        metrics=metrics_collector,
    )
    slow_worker = Worker("worker-1", claim_service, slow_engine, poll_interval=0.01, heartbeat_interval=5)

    assert slow_worker.run_once() is True

    stored = repository.get_job(job.id)
    assert stored.status == JobStatus.PROCESSING
    assert stored.worker_id == "worker-2"
    assert stored.current_step == JobStepName.SEND_EMAIL
    assert repository.count_steps(job.id) == 0
    assert claim_service.claim_next_job("worker-3") is None

    # The new holder finishes the step normally
    engine = StepEngine.from_collaborators(collaborators, session_factory=session_factory, metrics=metrics_collector)
    assert engine.process_job(job.id, worker_id="worker-2") == StepOutcome.ADVANCED
    assert repository.get_job(job.id).current_step == JobStepName.ANALYZE
    assert repository.count_steps(job.id) == 1


def test_slow_worker_cannot_schedule_retry_after_lease_reassigned(
    session_factory, claim_service, recovery_service, enqueue, repository, collaborators, metrics_collector
):
    [job] = enqueue(["a@example.com"])
    reassign = _reassign_to("worker-2", job.id, session_factory, recovery_service, claim_service)
    slow_engine = StepEngine(
        mail_sender=ReassigningMailSender(collaborators.mail_sender, reassign, ServiceErrorCode.TIMEOUT),
        crm_client=collaborators.crm_client,
        sentiment_analyzer=collaborators.sentiment_analyzer,
        session_factory=session_factory,
        metrics=metrics_collector,
    )
    claimed = claim_service.claim_next_job("worker-1")

    assert slow_engine.process_job(claimed, worker_id="worker-1") == StepOutcome.CONFLICT

    stored = repository.get_job(job.id)
    assert stored.status == JobStatus.PROCESSING
    assert stored.worker_id == "worker-2"
    assert stored.retry_count == 0
    assert stored.scheduled_for is None


def test_slow_worker_cannot_fail_job_after_lease_reassigned(
    session_factory, claim_service, recovery_service, enqueue, repository, collaborators, metrics_collector
):
    [job] = enqueue(["a@example.com"])
    reassign = _reassign_to("worker-2", job.id, session_factory, recovery_service, claim_service)
    slow_engine = StepEngine(
        mail_sender=ReassigningMailSender(collaborators.mail_sender, reassign, ServiceErrorCode.INVALID_ADDRESS),
        crm_client=collaborators.crm_client,
        sentiment_analyzer=collaborators.sentiment_analyzer,
        session_factory=session_factory,
        metrics=metrics_collector,
    )
    claimed = claim_service.claim_next_job("worker-1")

    assert slow_engine.process_job(claimed, worker_id="worker-1") == StepOutcome.CONFLICT

    stored = repository.get_job(job.id)
    assert stored.status == JobStatus.PROCESSING
    assert stored.worker_id == "worker-2"
    assert stored.error_message is None
    assert repository.count_steps(job.id) == 0
