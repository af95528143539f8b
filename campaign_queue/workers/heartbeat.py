import threading
from typing import Optional

from campaign_queue.core.logger import get_logger
from campaign_queue.services.job_repository import JobRepository

logger = get_logger(__name__)


class LeaseHeartbeat:
    """
    Keeps a claimed job's lease fresh while a step runs.

    Used as a context manager around the step; a daemon thread refreshes
    ``last_heartbeat`` every ``interval`` seconds. ``lost`` becomes True when
    the store reports the job is no longer ours.
    """

    def __init__(self, repository: JobRepository, job_id: int, worker_id: str, interval: float):
        self.repository = repository
        self.job_id = job_id
        self.worker_id = worker_id
        self.interval = interval
        self.lost = False
        self.beats = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "LeaseHeartbeat":
        self._thread = threading.Thread(
            target=self._run,
            name=f"heartbeat-{self.worker_id}-{self.job_id}",
            daemon=True,
        )
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=max(1.0, self.interval))

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                alive = self.repository.heartbeat(self.job_id, self.worker_id)
            except Exception as e:
                # The step keeps running; recovery handles a lease we fail to renew.
                logger.warning(
                    f"Heartbeat for job {self.job_id} failed: {e}",
                    extra={"component": "heartbeat", "job_id": self.job_id, "worker_id": self.worker_id},
                )
                continue

            if not alive:
                self.lost = True
                logger.info(
                    f"Lease on job {self.job_id} no longer held by {self.worker_id}",
                    extra={"component": "heartbeat", "job_id": self.job_id, "worker_id": self.worker_id},
                )
                return
            self.beats += 1
