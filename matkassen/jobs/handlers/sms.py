"""SMS job handlers."""

from __future__ import annotations

from matkassen.jobs.context import JobContext


async def process_sms_send(db, context: JobContext) -> dict:
    """Drain due SMS through the gateway."""
    from matkassen.services.sms import sms_service

    sent = await sms_service.process_send_queue(
        db, context.gateway, context.clock, batch_size=context.sms_batch_size
    )
    return {"processed": sent}


async def process_sms_enqueue_reminders(db, context: JobContext) -> dict:
    """Queue reminders for parcels about 48h away that are missing one."""
    from matkassen.services.sms import parcel_sms

    return {"queued": parcel_sms.enqueue_reminder_sms(db, context.clock)}
