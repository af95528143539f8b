from __future__ import annotations
import logging
from typing import Optional


def get_logger(name: Optional[str] = None) -> logging.Logger:  # pragma: no cover
    """Return a named logger under the ``campaign_queue`` hierarchy.

    If *name* is omitted, the root "campaign_queue" logger is returned. Handlers
    are installed once by :func:`campaign_queue.core.logging_config.init_logging`,
    which every entry point (API, worker launcher, Celery) calls at startup::

        from campaign_queue.core.logger import get_logger
        logger = get_logger(__name__)
    """
    if name is None:
        name = "campaign_queue"
    return logging.getLogger(name)
