import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import Mock

from campaign_queue.models.job import JobStatus, JobStepName
from campaign_queue.services.step_engine import StepOutcome
from campaign_queue.utils.datetime_utils import utcnow
from campaign_queue.workers.heartbeat import LeaseHeartbeat
from campaign_queue.workers.run_worker import parse_args
from campaign_queue.workers.worker import Worker
from tests.helpers.queue_helpers import update_job


def make_worker(worker_id, claim_service, step_engine, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("heartbeat_interval", 5)
    return Worker(worker_id, claim_service, step_engine, **kwargs)


def test_run_once_without_jobs(claim_service, step_engine):
    worker = make_worker("worker-1", claim_service, step_engine)

    assert worker.run_once() is False
    assert worker.processed == 0


def test_run_once_processes_one_step(claim_service, step_engine, enqueue, repository):
    [job] = enqueue(["a@example.com"])
    worker = make_worker("worker-1", claim_service, step_engine)

    assert worker.run_once() is True

    stored = repository.get_job(job.id)
    assert stored.current_step == JobStepName.ANALYZE
    assert stored.status == JobStatus.PENDING
    assert stored.worker_id is None


def test_run_until_idle_completes_all_jobs(claim_service, step_engine, enqueue, repository):
    jobs = enqueue([f"c{i}@example.com" for i in range(5)])
    worker = make_worker("worker-1", claim_service, step_engine)

    handled = worker.run(stop_when_idle=True)

    # Three steps per job, one claim per step
    assert handled == 15
    counts = repository.count_by_status()
    assert counts.COMPLETED == len(jobs)
    assert repository.count_steps() == 15


def test_run_honours_max_jobs(claim_service, step_engine, enqueue):
    enqueue([f"c{i}@example.com" for i in range(5)])
    worker = make_worker("worker-1", claim_service, step_engine)

    assert worker.run(max_jobs=4) == 4


def test_run_stops_on_event(claim_service, step_engine):
    worker = make_worker("worker-1", claim_service, step_engine)
    stop_event = threading.Event()
    timer = threading.Timer(0.1, stop_event.set)
    timer.start()

    started = time.monotonic()
    assert worker.run(stop_event) == 0
    assert time.monotonic() - started < 5
    timer.cancel()


def test_job_that_raises_is_left_for_recovery(claim_service, step_engine, enqueue, repository, recovery_service, session_factory):
    [job] = enqueue(["a@example.com"])
    broken_engine = Mock()
    broken_engine.repository = repository
    broken_engine.process_job.side_effect = RuntimeError("worker bug")
    worker = make_worker("worker-1", claim_service, broken_engine)

    assert worker.run(stop_when_idle=True) == 0

    stored = repository.get_job(job.id)
    assert stored.status == JobStatus.PROCESSING
    assert stored.worker_id == "worker-1"

    update_job(session_factory, job.id, last_heartbeat=utcnow() - timedelta(seconds=600))
    assert recovery_service.recover_stalled_jobs(timeout_seconds=300) == 1
    assert make_worker("worker-2", claim_service, step_engine).run(stop_when_idle=True) == 3
    assert repository.get_job(job.id).status == JobStatus.COMPLETED


def test_parallel_workers_never_duplicate_steps(claim_service, step_engine, enqueue, repository, mail_sender):
    jobs = enqueue([f"c{i}@example.com" for i in range(20)])
    workers = [make_worker(f"worker-{i}", claim_service, step_engine) for i in range(4)]

    with ThreadPoolExecutor(max_workers=4) as pool:
        handled = sum(pool.map(lambda w: w.run(stop_when_idle=True), workers))

    counts = repository.count_by_status()
    assert counts.COMPLETED + counts.PENDING == len(jobs)
    assert repository.count_steps() == handled
    assert len({m.idempotency_key for m in mail_sender.sent}) == len(mail_sender.sent)


def test_heartbeat_thread_keeps_lease_fresh(claim_service, enqueue, repository, session_factory):
    [job] = enqueue(["a@example.com"])
    claim_service.claim_next_job("worker-1")
    stale = utcnow() - timedelta(seconds=600)
    update_job(session_factory, job.id, last_heartbeat=stale)

    with LeaseHeartbeat(repository, job.id, "worker-1", interval=0.05) as heartbeat:
        time.sleep(0.3)

    assert heartbeat.beats >= 1
    assert heartbeat.lost is False
    assert repository.get_job(job.id).last_heartbeat > stale


def test_heartbeat_notices_lost_lease(claim_service, enqueue, repository, session_factory):
    [job] = enqueue(["a@example.com"])
    claim_service.claim_next_job("worker-1")
    update_job(session_factory, job.id, status=JobStatus.PENDING, worker_id=None)

    with LeaseHeartbeat(repository, job.id, "worker-1", interval=0.05) as heartbeat:
        time.sleep(0.3)

    assert heartbeat.lost is True


def test_worker_cli_arguments():
    args = parse_args(["--workers", "3", "--sweep"])

    assert args.workers == 3
    assert args.sweep is True
