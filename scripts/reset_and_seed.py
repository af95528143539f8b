#!/usr/bin/env python3
"""
reset_and_seed.py

Drop and recreate the queue schema, then seed an ACTIVE campaign with jobs.

Usage:
    python scripts/reset_and_seed.py [--jobs N] [--database-url URL] [--yes]

WARNING: This will irreversibly delete all data in your database!
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.dirname(__file__) + '/../'))

from campaign_queue.core.database import Base, init_database, init_db
from campaign_queue.core.logging_config import init_logging
from campaign_queue.models.campaign_status import CampaignStatus
from campaign_queue.schemas.campaign import CampaignCreate
from campaign_queue.services.campaign_jobs import CampaignJobService


def confirm_or_exit():
    print("\n*** DANGER: This will DELETE ALL data in your database! ***")
    confirm = input("Type 'yes' to continue: ")
    if confirm.strip().lower() != 'yes':
        print("Aborted.")
        sys.exit(0)


def reset_database(engine):
    print("Dropping all queue tables...")
    Base.metadata.drop_all(bind=engine)
    print("Creating schema...")
    init_db(engine)
    print("Schema created.")


def seed_database(session_factory, job_count: int):
    service = CampaignJobService(session_factory)
    campaign = service.create_campaign(CampaignCreate(name="Seed Campaign", user_id=1, status=CampaignStatus.ACTIVE))
    emails = [f"customer{i}@example.com" for i in range(job_count)]
    created = service.create_campaign_jobs(campaign.id, emails)
    print(f"Seeded campaign {campaign.id} with {created} jobs.")
    return campaign.id


def main(argv=None):
    parser = argparse.ArgumentParser(description="Reset and seed the campaign queue database")
    parser.add_argument("--jobs", type=int, default=100, help="Number of jobs to seed (default: 100)")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    args = parser.parse_args(argv)

    init_logging()
    if not args.yes:
        confirm_or_exit()

    engine, session_factory = init_database(args.database_url)
    try:
        reset_database(engine)
        seed_database(session_factory, args.jobs)
    finally:
        engine.dispose()
    print("Done.")


if __name__ == "__main__":
    main()
