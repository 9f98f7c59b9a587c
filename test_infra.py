"""
Tests for HTTP helpers and the daemon scheduler.
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from monitor.infra.http import parse_retry_after
from monitor.infra.scheduler import Scheduler, validate_cron_expression


def test_parse_retry_after_seconds():
    assert parse_retry_after("120") == 120.0
    assert parse_retry_after(" 5 ") == 5.0


def test_parse_retry_after_http_date():
    future = datetime.now(timezone.utc) + timedelta(seconds=60)
    seconds = parse_retry_after(format_datetime(future, usegmt=True))
    assert 0 < seconds <= 60


def test_parse_retry_after_invalid():
    assert parse_retry_after(None) is None
    assert parse_retry_after("") is None
    assert parse_retry_after("soon") is None


def test_validate_cron_expression():
    assert validate_cron_expression("0 */4 * * *")
    assert validate_cron_expression("30 8 * * mon-fri")
    assert not validate_cron_expression("0 */4 * *")
    assert not validate_cron_expression("not a cron at all")


def test_scheduler_jobs():
    async def job():
        pass

    scheduler = Scheduler()
    scheduler.add_cron_job(job, "0 */4 * * *", job_id="monitor-run")
    scheduler.add_interval_job(job, minutes=30, job_id="digest-check")
    assert sorted(scheduler.list_jobs()) == ["digest-check", "monitor-run"]

    scheduler.remove_job("digest-check")
    assert list(scheduler.list_jobs()) == ["monitor-run"]


def test_scheduler_rejects_bad_input():
    async def job():
        pass

    scheduler = Scheduler()
    with pytest.raises(ValueError):
        scheduler.add_cron_job(job, "every day")
    with pytest.raises(ValueError):
        scheduler.add_interval_job(job)


@pytest.mark.asyncio
async def test_scheduler_start_stop():
    scheduler = Scheduler()
    await scheduler.start()
    assert scheduler.running
    await scheduler.stop()
    assert not scheduler.running
