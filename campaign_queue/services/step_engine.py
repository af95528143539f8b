"""
Step Engine

Executes a job's current workflow step once and advances it. The
``job_steps`` table is the idempotency ledger: a COMPLETED row for
(job, step) means the step's side effect already happened and is never
repeated by this engine. Collaborator calls run outside any transaction;
recording the step and advancing the job happen together in one.
"""

import enum
import time
from typing import Any, Dict, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campaign_queue.core.database import SessionFactory, get_session_factory, transaction
from campaign_queue.core.exceptions import ErrorKind, JobNotFoundError, ServiceError
from campaign_queue.core.logger import get_logger
from campaign_queue.core.metrics import MetricsCollector, metrics as default_metrics
from campaign_queue.models.job import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    WORKFLOW_STEPS,
    Job,
    JobStatus,
    JobStepName,
    get_next_step,
)
from campaign_queue.models.job_step import JobStep, JobStepStatus
from campaign_queue.schemas.job import JobRecord
from campaign_queue.services.job_repository import JobRepository
from campaign_queue.services.retry_policy import RetryPolicy, classify
from campaign_queue.utils.datetime_utils import seconds_from_now, utcnow

logger = get_logger(__name__)

SENTIMENT_ACTIONS = {
    "positive": "route_to_sales",
    "negative": "suppress_contact",
    "neutral": "schedule_follow_up",
}
DEFAULT_ACTION = SENTIMENT_ACTIONS["neutral"]


class StepOutcome(str, enum.Enum):
    ADVANCED = "ADVANCED"
    COMPLETED = "COMPLETED"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    ALREADY_RECORDED = "ALREADY_RECORDED"
    CONFLICT = "CONFLICT"


# Outcomes after which the same job may be processed again right away
CONTINUE_OUTCOMES = (StepOutcome.ADVANCED, StepOutcome.ALREADY_RECORDED)


def generate_idempotency_key(job_id: int, step: JobStepName) -> str:
    return f"{job_id}-{JobStepName(step).value}"


def render_email_body(job: JobRecord) -> str:
    return (
        "Hi there,\n\n"
        "Thanks for being a customer. We would love to hear how things are going, "
        "just reply to this email.\n\n"
        f"Campaign #{job.campaign_id}"
    )


class StepEngine:
    def __init__(
        self,
        mail_sender,
        crm_client,
        sentiment_analyzer,
        session_factory: Optional[SessionFactory] = None,
        retry_policy: Optional[RetryPolicy] = None,
        repository: Optional[JobRepository] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.mail_sender = mail_sender
        self.crm_client = crm_client
        self.sentiment_analyzer = sentiment_analyzer
        self.session_factory = session_factory or get_session_factory()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.repository = repository or JobRepository(self.session_factory)
        self.metrics = metrics or default_metrics

    @classmethod
    def from_collaborators(cls, collaborators, **kwargs) -> "StepEngine":
        return cls(
            mail_sender=collaborators.mail_sender,
            crm_client=collaborators.crm_client,
            sentiment_analyzer=collaborators.sentiment_analyzer,
            **kwargs,
        )

    def process_job(self, job: Union[JobRecord, int], worker_id: Optional[str] = None) -> StepOutcome:
        """
        Execute the job's current step and advance it.

        The job is reloaded first, so a stale snapshot is fine. Terminal jobs
        are skipped. Collaborator errors are classified into a retry or a
        permanent failure; store errors propagate after rollback.

        With ``worker_id`` every write is conditional on the job still being
        PROCESSING under that worker. A lease revoked while the step ran
        gives CONFLICT and the result is discarded.

        Args:
            job: Job record or id
            worker_id: Lease holder, or None to process without a lease

        Returns:
            What happened to the job
        """
        job_id = job if isinstance(job, int) else job.id
        current = self.repository.get_job(job_id)
        if current is None:
            raise JobNotFoundError(job_id)

        if current.status in TERMINAL_STATUSES or current.current_step == JobStepName.DONE:
            logger.debug(f"Job {job_id} is {current.status.value}, skipping", extra={"component": "step_engine", "job_id": job_id})
            return StepOutcome.SKIPPED

        if worker_id is not None and (current.status != JobStatus.PROCESSING or current.worker_id != worker_id):
            logger.warning(
                f"Job {job_id} is no longer held by {worker_id}, not processing it",
                extra={"component": "step_engine", "job_id": job_id, "worker_id": worker_id},
            )
            return StepOutcome.CONFLICT

        step = current.current_step
        if self.repository.get_completed_step(job_id, step) is not None:
            with transaction(self.session_factory) as session:
                advanced = self._advance(session, job_id, step, worker_id)
            if not advanced:
                return StepOutcome.CONFLICT
            logger.info(
                f"Step {step.value} of job {job_id} already recorded, advanced without repeating it",
                extra={"component": "step_engine", "job_id": job_id, "step": step.value},
            )
            return StepOutcome.ALREADY_RECORDED

        started_at = utcnow()
        started = time.monotonic()
        try:
            output = self._run_action(current, step)
        except Exception as e:
            kind = classify(e)
            if kind == ErrorKind.STORE_FAILURE:
                raise
            if kind == ErrorKind.RETRYABLE:
                return self._schedule_retry(current, step, e, started_at, worker_id)
            if not isinstance(e, ServiceError):
                logger.exception(
                    f"Unexpected error in step {step.value} of job {job_id}",
                    extra={"component": "step_engine", "job_id": job_id, "step": step.value},
                )
            code = e.code.value if isinstance(e, ServiceError) else type(e).__name__
            return self._fail(current, step, str(e) or type(e).__name__, code, started_at, worker_id=worker_id)
        finally:
            self.metrics.histogram(
                "step.duration_ms",
                (time.monotonic() - started) * 1000,
                tags={"step": step.value},
            )

        return self._record_success(current, step, output, started_at, worker_id)

    def send_email_step(self, job: Union[JobRecord, int]) -> bool:
        """Run the SEND_EMAIL step of ``job``; True once the send is recorded."""
        job_id = job if isinstance(job, int) else job.id
        current = self.repository.require_job(job_id)
        if current.current_step == JobStepName.SEND_EMAIL:
            self.process_job(job_id)
        return self.repository.get_completed_step(job_id, JobStepName.SEND_EMAIL) is not None

    def run_to_completion(self, job: Union[JobRecord, int]) -> JobRecord:
        """
        Process ``job`` until it is terminal, waiting on a retry, or taken
        over by another caller. Returns the final job record.
        """
        job_id = job if isinstance(job, int) else job.id
        # Each step either advances or stops the loop; the bound guards
        # against a job being reset underneath us indefinitely.
        for _ in range(2 * len(WORKFLOW_STEPS) + 1):
            outcome = self.process_job(job_id)
            if outcome not in CONTINUE_OUTCOMES:
                break
        return self.repository.require_job(job_id)

    # Step actions

    def _run_action(self, job: JobRecord, step: JobStepName) -> Dict[str, Any]:
        if step == JobStepName.SEND_EMAIL:
            return self._send_email(job)
        if step == JobStepName.ANALYZE:
            return self._analyze(job)
        if step == JobStepName.TAKE_ACTION:
            return self._take_action(job)
        raise ValueError(f"Unknown workflow step: {step}")

    def _send_email(self, job: JobRecord) -> Dict[str, Any]:
        message_id = self.mail_sender.send(
            job.customer_email,
            render_email_body(job),
            generate_idempotency_key(job.id, JobStepName.SEND_EMAIL),
        )
        return {"message_id": message_id}

    def _analyze(self, job: JobRecord) -> Dict[str, Any]:
        records = self.crm_client.query({"email": job.customer_email, "limit": 1})
        record = records[0] if records else {}
        sentiment = self.sentiment_analyzer.analyze(record.get("last_reply") or "")
        return {"sentiment": sentiment, "crm_record_id": record.get("id")}

    def _take_action(self, job: JobRecord) -> Dict[str, Any]:
        analysis = self.repository.get_completed_step(job.id, JobStepName.ANALYZE)
        sentiment = (analysis.output_data or {}).get("sentiment") if analysis else None
        if sentiment not in SENTIMENT_ACTIONS:
            logger.warning(
                f"No usable sentiment for job {job.id}, defaulting to {DEFAULT_ACTION}",
                extra={"component": "step_engine", "job_id": job.id},
            )
        action = SENTIMENT_ACTIONS.get(sentiment, DEFAULT_ACTION)
        result = self.crm_client.record_action(
            job.customer_email,
            action,
            generate_idempotency_key(job.id, JobStepName.TAKE_ACTION),
        )
        return {"sentiment": sentiment, "action": action, "crm_action_id": result.get("id")}

    # Recording

    def _record_success(
        self, job: JobRecord, step: JobStepName, output: Dict[str, Any], started_at, worker_id: Optional[str] = None
    ) -> StepOutcome:
        with transaction(self.session_factory) as session:
            advanced = self._advance(session, job.id, step, worker_id)
            if advanced:
                self._insert_ledger_row(session, job.id, step, JobStepStatus.COMPLETED, output, started_at)

        if not advanced:
            logger.warning(
                f"Job {job.id} moved past {step.value} or changed owner while the step ran; result discarded",
                extra={"component": "step_engine", "job_id": job.id, "step": step.value},
            )
            return StepOutcome.CONFLICT

        self.metrics.increment("step.completed", tags={"step": step.value})
        if step == WORKFLOW_STEPS[-1]:
            self.metrics.increment("job.completed")
            logger.info(f"Job {job.id} completed", extra={"component": "step_engine", "job_id": job.id})
            return StepOutcome.COMPLETED

        logger.info(
            f"Job {job.id} finished {step.value}",
            extra={"component": "step_engine", "job_id": job.id, "step": step.value},
        )
        return StepOutcome.ADVANCED

    def _advance(self, session: Session, job_id: int, step: JobStepName, worker_id: Optional[str] = None) -> bool:
        """Move the job past ``step`` if it is still active at ``step`` (and held by ``worker_id``)."""
        next_step = get_next_step(step)
        values = {
            Job.current_step: next_step,
            Job.worker_id: None,
            Job.last_heartbeat: None,
            Job.scheduled_for: None,
        }
        if next_step == JobStepName.DONE:
            values[Job.status] = JobStatus.COMPLETED
            values[Job.completed_at] = utcnow()
        else:
            values[Job.status] = JobStatus.PENDING

        updated = (
            self._active_at_step(session, job_id, step, worker_id)
            .update(values, synchronize_session=False)
        )
        return updated == 1

    def _schedule_retry(
        self, job: JobRecord, step: JobStepName, error: ServiceError, started_at, worker_id: Optional[str] = None
    ) -> StepOutcome:
        retry_count = job.retry_count + 1
        if self.retry_policy.exhausted(retry_count):
            message = f"Retries exhausted after {retry_count} attempts: {error}"
            return self._fail(
                job, step, message, error.code.value, started_at, retry_count=retry_count, worker_id=worker_id
            )

        delay = self.retry_policy.backoff_seconds(retry_count)
        with transaction(self.session_factory) as session:
            updated = (
                self._active_at_step(session, job.id, step, worker_id)
                .filter(Job.retry_count == job.retry_count)
                .update(
                    {
                        Job.status: JobStatus.PENDING,
                        Job.retry_count: retry_count,
                        Job.scheduled_for: seconds_from_now(delay),
                        Job.worker_id: None,
                        Job.last_heartbeat: None,
                    },
                    synchronize_session=False,
                )
            )

        if updated != 1:
            return StepOutcome.CONFLICT

        self.metrics.increment("step.retry_scheduled", tags={"step": step.value, "code": error.code.value})
        logger.warning(
            f"Job {job.id} step {step.value} failed ({error.code.value}), retry {retry_count} in {delay}s",
            extra={"component": "step_engine", "job_id": job.id, "step": step.value, "retry_count": retry_count},
        )
        return StepOutcome.RETRY_SCHEDULED

    def _fail(
        self,
        job: JobRecord,
        step: JobStepName,
        message: str,
        code: str,
        started_at,
        retry_count: Optional[int] = None,
        worker_id: Optional[str] = None,
    ) -> StepOutcome:
        values = {
            Job.status: JobStatus.FAILED,
            Job.error_message: message,
            Job.worker_id: None,
            Job.last_heartbeat: None,
            Job.scheduled_for: None,
        }
        if retry_count is not None:
            values[Job.retry_count] = retry_count

        with transaction(self.session_factory) as session:
            failed = self._active_at_step(session, job.id, step, worker_id).update(values, synchronize_session=False) == 1
            if failed:
                self._insert_ledger_row(
                    session, job.id, step, JobStepStatus.FAILED, {"error": message, "code": code}, started_at
                )

        if not failed:
            return StepOutcome.CONFLICT

        self.metrics.increment("job.failed", tags={"step": step.value, "code": code})
        logger.error(
            f"Job {job.id} failed at {step.value}: {message}",
            extra={"component": "step_engine", "job_id": job.id, "step": step.value},
        )
        return StepOutcome.FAILED

    @staticmethod
    def _active_at_step(session: Session, job_id: int, step: JobStepName, worker_id: Optional[str] = None):
        query = session.query(Job).filter(
            Job.id == job_id,
            Job.current_step == step,
            Job.status.in_(ACTIVE_STATUSES),
        )
        if worker_id is not None:
            query = query.filter(Job.status == JobStatus.PROCESSING, Job.worker_id == worker_id)
        return query

    @staticmethod
    def _insert_ledger_row(
        session: Session,
        job_id: int,
        step: JobStepName,
        status: JobStepStatus,
        output: Dict[str, Any],
        started_at,
    ) -> bool:
        """Insert the ledger row in a savepoint; False if (job, step) already exists."""
        try:
            with session.begin_nested():
                session.add(JobStep(
                    job_id=job_id,
                    step_name=step,
                    status=status,
                    output_data=output,
                    started_at=started_at,
                    completed_at=utcnow(),
                ))
            return True
        except IntegrityError:
            logger.info(
                f"Ledger row for job {job_id} step {step.value} already exists",
                extra={"component": "step_engine", "job_id": job_id, "step": step.value},
            )
            return False
