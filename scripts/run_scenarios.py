#!/usr/bin/env python3
"""
Operational scenarios against a live queue database.

    throughput   - N threaded workers drain a large campaign for a fixed time
    duplicate    - process a job, reset it, process again; ledger must not grow
    connections  - many concurrent claimers against a small queue

Usage:
    python scripts/run_scenarios.py throughput [--workers 20] [--jobs 5000] [--duration 60]
    python scripts/run_scenarios.py duplicate
    python scripts/run_scenarios.py connections [--workers 50] [--jobs 100]
"""
import argparse
import os
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor

sys.path.insert(0, os.path.abspath(os.path.dirname(__file__) + '/../'))

from campaign_queue.background_services.collaborators import build_collaborators
from campaign_queue.core.database import Base, init_database, init_db, transaction
from campaign_queue.core.logging_config import init_logging
from campaign_queue.core.metrics import metrics
from campaign_queue.models.job import Job, JobStatus
from campaign_queue.schemas.campaign import CampaignCreate
from campaign_queue.services.campaign_jobs import CampaignJobService
from campaign_queue.services.job_claim import JobClaimService
from campaign_queue.services.job_repository import JobRepository
from campaign_queue.services.step_engine import StepEngine
from campaign_queue.workers.worker import Worker


def setup_scenario(engine, session_factory, job_count: int) -> int:
    Base.metadata.drop_all(bind=engine)
    init_db(engine)
    metrics.reset()
    service = CampaignJobService(session_factory)
    campaign = service.create_campaign(CampaignCreate(name="Scenario Campaign", user_id=1))
    service.create_campaign_jobs(campaign.id, [f"customer{i}@example.com" for i in range(job_count)])
    return campaign.id


def scenario_throughput(engine, session_factory, args):
    print(f"Scenario: throughput ({args.workers} workers, {args.jobs} jobs, {args.duration}s)\n")
    setup_scenario(engine, session_factory, args.jobs)

    collaborators = build_collaborators()
    step_engine = StepEngine.from_collaborators(collaborators, session_factory=session_factory)
    claim = JobClaimService(session_factory)
    stop_event = threading.Event()
    workers = [Worker(f"scenario-{i}", claim, step_engine, poll_interval=0.1) for i in range(args.workers)]

    with ThreadPoolExecutor(max_workers=args.workers) as pool:
        futures = [pool.submit(worker.run, stop_event) for worker in workers]
        time.sleep(args.duration)
        stop_event.set()
        processed = sum(f.result() for f in futures)

    counts = JobRepository(session_factory).count_by_status()
    print(f"\nSteps processed: {processed}")
    print(f"Rate: {processed / args.duration * 60:.0f} steps/min")
    print(f"Jobs completed: {counts.COMPLETED}, failed: {counts.FAILED}, pending: {counts.PENDING}")
    for name, value in metrics.report().items():
        print(f"  {name}: {value}")


def scenario_duplicate(engine, session_factory, args):
    print("Scenario: duplicate detection\n")
    setup_scenario(engine, session_factory, 1)

    collaborators = build_collaborators()
    collaborators.mail_sender.error_rate = 0
    collaborators.crm_client.error_rate = 0
    step_engine = StepEngine.from_collaborators(collaborators, session_factory=session_factory)
    repository = JobRepository(session_factory)
    job = repository.list_jobs(limit=1)[0]

    step_engine.run_to_completion(job)
    first = repository.count_steps(job.id)
    print(f"Ledger rows after first run: {first}")

    with transaction(session_factory) as session:
        session.query(Job).filter(Job.id == job.id).update(
            {Job.status: JobStatus.PENDING, Job.worker_id: None}, synchronize_session=False
        )
    print("Simulated cleanup race: job reset to PENDING")

    step_engine.run_to_completion(job)
    second = repository.count_steps(job.id)
    print(f"Ledger rows after second run: {second}")
    if second > first:
        print("WARNING: duplicate ledger rows created")
        return 1
    print("No duplicates")
    return 0


def scenario_connections(engine, session_factory, args):
    print(f"Scenario: connection stress ({args.workers} claimers, {args.jobs} jobs)\n")
    setup_scenario(engine, session_factory, args.jobs)

    step_engine = StepEngine.from_collaborators(build_collaborators(), session_factory=session_factory)
    claim = JobClaimService(session_factory)

    def one_worker(i):
        return Worker(f"stress-{i}", claim, step_engine).run_once()

    with ThreadPoolExecutor(max_workers=args.workers) as pool:
        claimed = sum(pool.map(one_worker, range(args.workers)))

    remaining = JobRepository(session_factory).count_by_status().PENDING
    print(f"Claims: {claimed}, pending jobs remaining: {remaining}/{args.jobs}")


SCENARIOS = {
    "throughput": scenario_throughput,
    "duplicate": scenario_duplicate,
    "connections": scenario_connections,
}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run queue scenarios")
    parser.add_argument("scenario", choices=sorted(SCENARIOS))
    parser.add_argument("--workers", type=int, default=20)
    parser.add_argument("--jobs", type=int, default=None)
    parser.add_argument("--duration", type=float, default=60.0)
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    args = parser.parse_args(argv)
    if args.jobs is None:
        args.jobs = 5000 if args.scenario == "throughput" else 100

    init_logging()
    engine, session_factory = init_database(args.database_url)
    try:
        return SCENARIOS[args.scenario](engine, session_factory, args) or 0
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
