"""
Background worker for SMS delivery and the anonymization sweep.

Usage:
    python -m matkassen.worker

Each tick drains due SMS (every SMS_SEND_INTERVAL), backfills missing
pickup reminders, and runs the anonymization sweep when
ANONYMIZATION_SCHEDULE matches the current local minute. Run it as a
separate process next to the API.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from matkassen.core.config import settings
from matkassen.core.structured_logging import build_log_context
from matkassen.db.enums import JobType
from matkassen.db.session import SessionLocal
from matkassen.jobs.context import JobContext
from matkassen.jobs.registry import resolve_job_handler
from matkassen.utils.cron import parse_cron, should_run_cron
from matkassen.utils.duration import parse_duration

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Below one minute so every cron minute gets at least one tick
POLL_INTERVAL_SECONDS = 30


class WorkerSchedule:
    """Decides which jobs are due on a tick."""

    def __init__(self, sms_interval_ms: float, anonymization_cron: str):
        parse_cron(anonymization_cron)
        self.sms_interval = timedelta(milliseconds=sms_interval_ms)
        self.anonymization_cron = anonymization_cron
        self._last_sms_run: datetime | None = None
        self._last_cron_minute: datetime | None = None

    @classmethod
    def from_settings(cls) -> "WorkerSchedule":
        return cls(parse_duration(settings.SMS_SEND_INTERVAL), settings.ANONYMIZATION_SCHEDULE)

    def due_jobs(self, now: datetime) -> list[str]:
        jobs: list[str] = []
        if self._last_sms_run is None or now - self._last_sms_run >= self.sms_interval:
            self._last_sms_run = now
            jobs.append(JobType.SMS_SEND.value)

        jobs.append(JobType.SMS_ENQUEUE_REMINDERS.value)

        minute = now.replace(second=0, microsecond=0)
        if minute != self._last_cron_minute and should_run_cron(self.anonymization_cron, now):
            self._last_cron_minute = minute
            jobs.append(JobType.ANONYMIZATION_SWEEP.value)
        return jobs


async def run_job(job_type: str, context: JobContext) -> dict | None:
    """Run one job in its own session. Failures are logged, never raised."""
    handler = resolve_job_handler(job_type)
    with SessionLocal() as db:
        try:
            result = await handler(db, context)
        except Exception:
            db.rollback()
            logger.exception("Job %s failed", job_type, extra=build_log_context(job=job_type))
            return None
    if result:
        logger.info("Job %s finished: %s", job_type, result, extra=build_log_context(job=job_type))
    return result


async def run_tick(schedule: WorkerSchedule, context: JobContext) -> list[str]:
    due = schedule.due_jobs(context.clock.now())
    for job_type in due:
        await run_job(job_type, context)
    return due


async def worker_loop() -> None:
    """Main worker loop."""
    # Invalid durations or cron expressions stop start-up here
    schedule = WorkerSchedule.from_settings()
    context = JobContext.from_settings()
    logger.info(
        "Worker starting (SMS interval: %s, anonymization: %s, test mode: %s)",
        settings.SMS_SEND_INTERVAL,
        settings.ANONYMIZATION_SCHEDULE,
        settings.sms_test_mode,
    )

    while True:
        try:
            await run_tick(schedule, context)
        except Exception as e:
            logger.error(f"Error in worker loop: {e}")
        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(route="worker"))
        raise


if __name__ == "__main__":
    main()
