from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from campaign_queue.models.job import JobStatus, JobStepName
from campaign_queue.utils.datetime_utils import utcnow
from tests.helpers.queue_helpers import update_job


def test_claim_returns_none_when_queue_empty(claim_service, metrics_collector):
    assert claim_service.claim_next_job("worker-1") is None
    assert metrics_collector.get_total("job.claim_empty") == 1


def test_claim_marks_job_processing(claim_service, enqueue, repository):
    [job] = enqueue(["a@example.com"])

    claimed = claim_service.claim_next_job("worker-1")

    assert claimed.id == job.id
    assert claimed.status == JobStatus.PROCESSING
    assert claimed.worker_id == "worker-1"
    assert claimed.started_at is not None
    assert claimed.last_heartbeat is not None
    assert claimed.current_step == JobStepName.SEND_EMAIL

    stored = repository.get_job(job.id)
    assert stored.status == JobStatus.PROCESSING
    assert stored.worker_id == "worker-1"


def test_claim_is_oldest_first(claim_service, enqueue):
    jobs = enqueue(["a@example.com", "b@example.com", "c@example.com"])

    claimed = [claim_service.claim_next_job("worker-1").id for _ in jobs]

    assert claimed == [job.id for job in jobs]
    assert claim_service.claim_next_job("worker-1") is None


def test_claim_skips_processing_failed_and_completed(claim_service, enqueue, session_factory):
    jobs = enqueue(["a@example.com", "b@example.com", "c@example.com", "d@example.com"])
    update_job(session_factory, jobs[0].id, status=JobStatus.PROCESSING, worker_id="other")
    update_job(session_factory, jobs[1].id, status=JobStatus.FAILED, error_message="bad")
    update_job(session_factory, jobs[2].id, status=JobStatus.COMPLETED, current_step=JobStepName.DONE)

    claimed = claim_service.claim_next_job("worker-1")

    assert claimed.id == jobs[3].id
    assert claim_service.claim_next_job("worker-1") is None


def test_claim_respects_scheduled_for(claim_service, enqueue, session_factory):
    later, due = enqueue(["later@example.com", "due@example.com"])
    update_job(session_factory, later.id, scheduled_for=utcnow() + timedelta(minutes=5))
    update_job(session_factory, due.id, scheduled_for=utcnow() - timedelta(seconds=1))

    assert claim_service.claim_next_job("worker-1").id == due.id
    assert claim_service.claim_next_job("worker-1") is None

    update_job(session_factory, later.id, scheduled_for=utcnow() - timedelta(seconds=1))
    assert claim_service.claim_next_job("worker-1").id == later.id


def test_concurrent_claimers_get_distinct_jobs(claim_service, enqueue):
    jobs = enqueue([f"customer{i}@example.com" for i in range(10)])

    with ThreadPoolExecutor(max_workers=20) as pool:
        results = list(pool.map(lambda i: claim_service.claim_next_job(f"worker-{i}"), range(20)))

    claimed = [job for job in results if job is not None]
    assert len(claimed) == 10
    assert len([job for job in results if job is None]) == 10
    assert len({job.id for job in claimed}) == 10
    assert {job.id for job in claimed} == {job.id for job in jobs}


def test_concurrent_claimers_fewer_than_jobs(claim_service, enqueue, repository):
    enqueue([f"customer{i}@example.com" for i in range(30)])

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda i: claim_service.claim_next_job(f"worker-{i}"), range(8)))

    assert all(job is not None for job in results)
    assert len({job.id for job in results}) == 8
    counts = repository.count_by_status()
    assert counts.PROCESSING == 8
    assert counts.PENDING == 22
