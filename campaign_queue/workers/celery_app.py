import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun, worker_ready, worker_shutdown

from campaign_queue.core.config import settings
from campaign_queue.core.logger import get_logger
from campaign_queue.core.logging_config import init_logging

# Initialize logging system for workers
init_logging()
logger = get_logger(__name__)

celery_app = Celery(
    "campaign_queue",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["campaign_queue.workers.queue_tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=3600,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    worker_hijack_root_logger=False,  # Keep our handlers on the root logger
)

# Periodic lease sweep
celery_app.conf.beat_schedule = {
    "recover-stalled-jobs": {
        "task": "recover_stalled_jobs_task",
        "schedule": float(settings.STALL_SWEEP_INTERVAL_SECONDS),
    },
}

for name in ("celery", "celery.task", "celery.worker"):
    logging.getLogger(name).setLevel(logging.INFO)


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    logger.info("Celery worker ready to accept tasks", extra={
        "component": "celery",
        "event": "worker_ready"
    })


@worker_shutdown.connect
def worker_shutdown_handler(sender=None, **kwargs):
    logger.info("Celery worker shutting down", extra={
        "component": "celery",
        "event": "worker_shutdown"
    })


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **kwds):
    logger.info(f"Starting task: {task.name}", extra={
        "component": "celery",
        "task_id": task_id,
        "task_name": task.name,
        "event": "task_start"
    })


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, retval=None, state=None, **kwds):
    logger.info(f"Completed task: {task.name}", extra={
        "component": "celery",
        "task_id": task_id,
        "task_name": task.name,
        "state": state,
        "event": "task_complete"
    })


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, traceback=None, einfo=None, **kwds):
    logger.error(f"Task failed: {sender.name}", extra={
        "component": "celery",
        "task_id": task_id,
        "task_name": sender.name,
        "error": str(exception),
        "event": "task_failure"
    }, exc_info=einfo)
