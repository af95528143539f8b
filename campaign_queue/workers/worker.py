"""
Worker Loop

Each worker claims a job, runs its current step under a lease heartbeat and
goes back for the next one. Workers share nothing but the store; a launcher
runs several of them as separate processes.
"""

import multiprocessing
import os
import signal
import threading
import time
from typing import Optional

from campaign_queue.core.config import settings
from campaign_queue.core.logger import get_logger
from campaign_queue.core.metrics import MetricsCollector, metrics as default_metrics
from campaign_queue.services.job_claim import JobClaimService
from campaign_queue.services.job_repository import JobRepository
from campaign_queue.services.stall_recovery import StallRecoveryService
from campaign_queue.services.step_engine import StepEngine
from campaign_queue.workers.heartbeat import LeaseHeartbeat

logger = get_logger(__name__)


class Worker:
    def __init__(
        self,
        worker_id: str,
        claim_service: JobClaimService,
        step_engine: StepEngine,
        poll_interval: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.worker_id = worker_id
        self.claim_service = claim_service
        self.step_engine = step_engine
        self.repository: JobRepository = step_engine.repository
        self.poll_interval = settings.WORKER_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.heartbeat_interval = heartbeat_interval or settings.HEARTBEAT_INTERVAL_SECONDS
        self.metrics = metrics or default_metrics
        self.processed = 0

    def run_once(self) -> bool:
        """Claim one job and process its current step. False when nothing was claimed."""
        job = self.claim_service.claim_next_job(self.worker_id)
        if job is None:
            return False

        with LeaseHeartbeat(self.repository, job.id, self.worker_id, self.heartbeat_interval) as heartbeat:
            outcome = self.step_engine.process_job(job, worker_id=self.worker_id)

        if heartbeat.lost:
            logger.warning(
                f"Worker {self.worker_id} lost the lease on job {job.id} during the step: {outcome.value}",
                extra={"component": "worker", "job_id": job.id, "worker_id": self.worker_id, "outcome": outcome.value},
            )

        self.processed += 1
        logger.debug(
            f"Worker {self.worker_id} processed job {job.id}: {outcome.value}",
            extra={"component": "worker", "job_id": job.id, "worker_id": self.worker_id, "outcome": outcome.value},
        )
        return True

    def run(
        self,
        stop_event: Optional[threading.Event] = None,
        max_jobs: Optional[int] = None,
        stop_when_idle: bool = False,
    ) -> int:
        """
        Loop until ``stop_event`` is set, ``max_jobs`` steps were processed, or
        (with ``stop_when_idle``) the queue has nothing eligible.

        A job whose processing raises is logged and left PROCESSING; stall
        recovery returns it to the queue once its lease expires. Such a job
        does not count towards ``max_jobs``.

        Returns:
            Number of claims processed by this call
        """
        stop_event = stop_event or threading.Event()
        handled = 0
        logger.info(f"Worker {self.worker_id} started", extra={"component": "worker", "worker_id": self.worker_id})

        while not stop_event.is_set():
            if max_jobs is not None and handled >= max_jobs:
                break

            try:
                claimed = self.run_once()
            except Exception as e:
                logger.error(
                    f"Worker {self.worker_id} failed processing a job: {e}",
                    extra={"component": "worker", "worker_id": self.worker_id},
                    exc_info=True,
                )
                self.metrics.increment("worker.errors", tags={"worker_id": self.worker_id})
                stop_event.wait(self.poll_interval)
                continue

            if claimed:
                handled += 1
                continue
            if stop_when_idle:
                break
            stop_event.wait(self.poll_interval)

        logger.info(
            f"Worker {self.worker_id} stopped after {handled} jobs",
            extra={"component": "worker", "worker_id": self.worker_id, "processed": handled},
        )
        return handled


def build_worker(worker_id: str, session_factory, collaborators=None) -> Worker:
    from campaign_queue.background_services.collaborators import build_collaborators

    collaborators = collaborators or build_collaborators()
    engine = StepEngine.from_collaborators(collaborators, session_factory=session_factory)
    return Worker(worker_id, JobClaimService(session_factory), engine)


def worker_main(worker_index: int, stop_event=None) -> None:
    """Entry point of one worker process."""
    from campaign_queue.core.database import init_database
    from campaign_queue.core.logging_config import init_logging

    init_logging()
    stop_event = stop_event or multiprocessing.Event()

    def _signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, finishing current step",
            extra={"component": "worker", "signal": signum},
        )
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    engine, session_factory = init_database()
    worker_id = f"worker-{worker_index}-{os.getpid()}"
    try:
        build_worker(worker_id, session_factory).run(stop_event)
    finally:
        engine.dispose()


def start_workers(count: int, sweep: bool = False) -> None:
    """
    Start ``count`` worker processes and wait for them.

    SIGINT/SIGTERM ask every worker to stop after its current step. With
    ``sweep`` the launcher also runs stall recovery every
    STALL_SWEEP_INTERVAL_SECONDS.
    """
    stop_event = multiprocessing.Event()
    procs = []

    logger.info(f"Starting {count} worker(s)", extra={"component": "worker", "count": count})
    for i in range(count):
        p = multiprocessing.Process(target=worker_main, args=(i + 1, stop_event), name=f"worker-{i + 1}")
        p.start()
        procs.append(p)

    def _signal_handler(signum, frame):
        logger.info("Shutdown requested, asking workers to stop", extra={"component": "worker", "signal": signum})
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    recovery = StallRecoveryService() if sweep else None
    next_sweep = time.monotonic()
    while any(p.is_alive() for p in procs) and not stop_event.is_set():
        if recovery and time.monotonic() >= next_sweep:
            recovery.recover_stalled_jobs()
            next_sweep = time.monotonic() + settings.STALL_SWEEP_INTERVAL_SECONDS
        stop_event.wait(1.0)

    for p in procs:
        p.join(timeout=30.0)
        if p.is_alive():
            logger.warning(f"{p.name} did not stop in time, terminating", extra={"component": "worker"})
            p.terminate()
    logger.info("All workers stopped", extra={"component": "worker"})
