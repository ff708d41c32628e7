"""Anonymization job handlers."""

from __future__ import annotations

from matkassen.jobs.context import JobContext


async def process_anonymization_sweep(db, context: JobContext) -> dict:
    """Anonymize or delete households inactive for longer than the retention window."""
    from matkassen.services import anonymization_service

    result = anonymization_service.run_anonymization_sweep(
        db, context.anonymization_inactive_ms, context.clock
    )
    return result.to_dict()
