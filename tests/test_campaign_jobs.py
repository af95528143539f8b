import pytest
from sqlalchemy.exc import IntegrityError

from campaign_queue.core.exceptions import CampaignNotFoundError, InvalidStatusTransitionError
from campaign_queue.models.campaign_status import CampaignStatus
from campaign_queue.models.job import JobStatus, JobStepName
from campaign_queue.services.campaign_jobs import CampaignJobService


def test_empty_input_does_not_touch_the_store(metrics_collector):
    def exploding_factory():
        raise AssertionError("session opened for empty input")

    service = CampaignJobService(exploding_factory, metrics=metrics_collector)

    assert service.create_campaign_jobs(1, []) == 0


def test_creates_one_pending_job_per_address(campaign_service, campaign, repository):
    emails = [f"customer{i}@example.com" for i in range(250)]

    created = campaign_service.create_campaign_jobs(campaign.id, emails)

    assert created == 250
    jobs = repository.list_jobs(campaign_id=campaign.id, limit=1000)
    assert len(jobs) == 250
    assert [job.customer_email for job in jobs] == emails
    assert all(job.status == JobStatus.PENDING for job in jobs)
    assert all(job.current_step == JobStepName.SEND_EMAIL for job in jobs)
    assert all(job.retry_count == 0 and job.worker_id is None for job in jobs)


def test_batches_smaller_than_input(session_factory, campaign, repository, metrics_collector):
    service = CampaignJobService(session_factory, batch_size=7, metrics=metrics_collector)

    assert service.create_campaign_jobs(campaign.id, [f"c{i}@example.com" for i in range(50)]) == 50
    assert repository.count_by_status(campaign.id).PENDING == 50
    assert metrics_collector.get_total("jobs.enqueued") == 50


def test_duplicate_addresses_become_separate_jobs(campaign_service, campaign, repository):
    created = campaign_service.create_campaign_jobs(campaign.id, ["same@example.com"] * 3)

    assert created == 3
    jobs = repository.list_jobs(campaign_id=campaign.id)
    assert len({job.id for job in jobs}) == 3


def test_failure_leaves_no_jobs_behind(session_factory, campaign, repository):
    service = CampaignJobService(session_factory, batch_size=2)
    emails = ["a@example.com", "b@example.com", "c@example.com", None]

    # The NULL address fails in the second batch; the first batch must not survive
    with pytest.raises(IntegrityError):
        service.create_campaign_jobs(campaign.id, emails)

    assert repository.count_by_status().total == 0


def test_unknown_campaign_is_rejected(campaign_service, repository):
    with pytest.raises(IntegrityError):
        campaign_service.create_campaign_jobs(9999, ["a@example.com"])
    assert repository.count_by_status().total == 0


def test_campaign_status_transitions(campaign_service, campaign):
    assert campaign.status == CampaignStatus.ACTIVE

    paused = campaign_service.update_campaign_status(campaign.id, CampaignStatus.PAUSED)
    assert paused.status == CampaignStatus.PAUSED

    archived = campaign_service.update_campaign_status(campaign.id, CampaignStatus.ARCHIVED)
    assert archived.status == CampaignStatus.ARCHIVED

    with pytest.raises(InvalidStatusTransitionError):
        campaign_service.update_campaign_status(campaign.id, CampaignStatus.ACTIVE)


def test_missing_campaign(campaign_service):
    with pytest.raises(CampaignNotFoundError):
        campaign_service.get_campaign(12345)
    with pytest.raises(CampaignNotFoundError):
        campaign_service.update_campaign_status(12345, CampaignStatus.PAUSED)
