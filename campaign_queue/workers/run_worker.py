"""Run a pool of queue workers: ``python -m campaign_queue.workers.run_worker --workers 4``."""

import argparse
import sys

from campaign_queue.core.config import settings
from campaign_queue.core.logger import get_logger
from campaign_queue.core.logging_config import init_logging
from campaign_queue.workers.worker import start_workers

logger = get_logger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run campaign queue workers")
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.WORKER_COUNT,
        help=f"Number of worker processes (default: {settings.WORKER_COUNT})",
    )
    parser.add_argument(
        "--sweep",
        action="store_true",
        help="Also run stall recovery from the launcher process",
    )
    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error("--workers must be at least 1")
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    init_logging()
    logger.info(
        f"Launching {args.workers} workers",
        extra={"component": "worker", "workers": args.workers, "sweep": args.sweep},
    )
    start_workers(args.workers, sweep=args.sweep)
    return 0


if __name__ == "__main__":
    sys.exit(main())
