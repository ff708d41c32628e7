"""Dependencies handed to every job handler."""

from __future__ import annotations

from dataclasses import dataclass

from matkassen.core.config import settings
from matkassen.services.sms.gateway import HelloSmsGateway, SmsGateway
from matkassen.utils.clock import Clock, SystemClock
from matkassen.utils.duration import parse_duration


@dataclass
class JobContext:
    clock: Clock
    gateway: SmsGateway
    sms_batch_size: int = 5
    anonymization_inactive_ms: float = 0

    @classmethod
    def from_settings(cls) -> "JobContext":
        """Production wiring. Bad duration strings raise DurationFormatError."""
        return cls(
            clock=SystemClock(),
            gateway=HelloSmsGateway.from_settings(),
            sms_batch_size=settings.SMS_SEND_BATCH_SIZE,
            anonymization_inactive_ms=parse_duration(settings.ANONYMIZATION_INACTIVE_DURATION),
        )
