"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from matkassen.db.enums import JobType
from matkassen.jobs.handlers import anonymization, sms

JobHandler = Callable[[object, object], Awaitable[dict]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.SMS_SEND.value: sms.process_sms_send,
    JobType.SMS_ENQUEUE_REMINDERS.value: sms.process_sms_enqueue_reminders,
    JobType.ANONYMIZATION_SWEEP.value: anonymization.process_anonymization_sweep,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
