"""Tests for the background worker: job registry, tick scheduling and job isolation."""

import contextlib
from datetime import date, datetime, timedelta, timezone

import pytest

from matkassen import worker
from matkassen.db.enums import JobType, SmsStatus
from matkassen.db.models import OutgoingSms
from matkassen.jobs import registry
from matkassen.jobs.context import JobContext
from matkassen.jobs.registry import JOB_HANDLERS, resolve_job_handler
from matkassen.utils.cron import CronFormatError
from matkassen.worker import WorkerSchedule

from conftest import NOW, at_local

FIVE_MINUTES_MS = 5 * 60 * 1000


def test_every_job_type_has_a_handler():
    for job_type in JobType:
        assert resolve_job_handler(job_type.value) is JOB_HANDLERS[job_type.value]


def test_unknown_job_type():
    with pytest.raises(ValueError):
        resolve_job_handler("send_newsletter")


class TestWorkerSchedule:
    def test_sms_send_respects_interval(self):
        schedule = WorkerSchedule(FIVE_MINUTES_MS, "0 2 * * 0")
        assert JobType.SMS_SEND.value in schedule.due_jobs(NOW)
        assert JobType.SMS_SEND.value not in schedule.due_jobs(NOW + timedelta(minutes=2))
        assert JobType.SMS_SEND.value in schedule.due_jobs(NOW + timedelta(minutes=5))

    def test_reminder_backfill_runs_every_tick(self):
        schedule = WorkerSchedule(FIVE_MINUTES_MS, "0 2 * * 0")
        for minutes in (0, 1, 2):
            assert JobType.SMS_ENQUEUE_REMINDERS.value in schedule.due_jobs(
                NOW + timedelta(minutes=minutes)
            )

    def test_anonymization_runs_once_per_matching_minute(self):
        schedule = WorkerSchedule(FIVE_MINUTES_MS, "0 2 * * 0")
        # Sunday 02:00 Stockholm
        sunday = datetime(2025, 6, 15, 0, 0, tzinfo=timezone.utc)
        assert JobType.ANONYMIZATION_SWEEP.value in schedule.due_jobs(sunday)
        assert JobType.ANONYMIZATION_SWEEP.value not in schedule.due_jobs(
            sunday + timedelta(seconds=30)
        )
        assert JobType.ANONYMIZATION_SWEEP.value not in schedule.due_jobs(
            sunday + timedelta(minutes=1)
        )
        assert JobType.ANONYMIZATION_SWEEP.value not in schedule.due_jobs(NOW)

    def test_invalid_cron_fails_at_startup(self):
        with pytest.raises(CronFormatError):
            WorkerSchedule(FIVE_MINUTES_MS, "every sunday")


@pytest.fixture
def worker_db(db, monkeypatch):
    monkeypatch.setattr(worker, "SessionLocal", lambda: contextlib.nullcontext(db))
    return db


@pytest.fixture
def context(clock, gateway):
    return JobContext(clock=clock, gateway=gateway, anonymization_inactive_ms=FIVE_MINUTES_MS)


async def test_run_tick_sends_due_sms(
    worker_db, clock, gateway, context, make_location, make_household, make_parcel
):
    # Exactly 48h ahead, so the backfill queues it for now + 5 minutes
    make_parcel(make_household(), make_location(), at_local(date(2025, 6, 11), 12))
    schedule = WorkerSchedule(FIVE_MINUTES_MS, "0 2 * * 0")

    due = await worker.run_tick(schedule, context)
    assert due == [JobType.SMS_SEND.value, JobType.SMS_ENQUEUE_REMINDERS.value]
    assert gateway.call_count == 0

    clock.advance(minutes=5)
    await worker.run_tick(schedule, context)
    (sms,) = worker_db.query(OutgoingSms).all()
    assert sms.status == SmsStatus.SENT.value
    assert gateway.call_count == 1


async def test_failing_job_is_contained(worker_db, context, monkeypatch):
    async def broken(db, ctx):
        raise RuntimeError("boom")

    monkeypatch.setitem(registry.JOB_HANDLERS, "broken", broken)
    assert await worker.run_job("broken", context) is None

    result = await worker.run_job(JobType.SMS_SEND.value, context)
    assert result == {"processed": 0}
