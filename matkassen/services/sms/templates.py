"""SMS message templates.

Kept short for single-segment delivery: "<label> <date> <time>: <url>".
Dates are rendered in the operating timezone; unsupported locales fall back
to English.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from matkassen.core.config import settings
from matkassen.utils.clock import to_local

_WEEKDAYS = {
    "sv": ("mån", "tis", "ons", "tors", "fre", "lör", "sön"),
    "en": ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"),
}
_MONTHS = {
    "sv": ("jan", "feb", "mars", "apr", "maj", "juni", "juli", "aug", "sep", "okt", "nov", "dec"),
    "en": ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"),
}

_PICKUP = {"sv": "Matpaket {date} {time}: {url}", "en": "Food pickup {date} {time}: {url}"}
_UPDATE = {
    "sv": "Uppdatering! Matpaket {date} {time}: {url}",
    "en": "Update! Food pickup {date} {time}: {url}",
}
_CANCELLED = {
    "sv": "Matpaket {date} {time} är inställt.",
    "en": "Food pickup {date} {time} is cancelled.",
}


@dataclass(frozen=True)
class SmsTemplateData:
    pickup_date: datetime
    public_url: str


def _language(locale: str | None) -> str:
    return locale if locale in _WEEKDAYS else "en"


def format_date_time_for_sms(value: datetime, locale: str | None) -> tuple[str, str]:
    """("mån 16 sep", "14:30") style parts in the operating timezone."""
    language = _language(locale)
    local = to_local(value)
    weekday = _WEEKDAYS[language][local.weekday()]
    month = _MONTHS[language][local.month - 1]
    return f"{weekday} {local.day} {month}", f"{local.hour:02d}:{local.minute:02d}"


def _render(templates: dict[str, str], data: SmsTemplateData, locale: str | None) -> str:
    date_text, time_text = format_date_time_for_sms(data.pickup_date, locale)
    return templates[_language(locale)].format(
        date=date_text, time=time_text, url=data.public_url
    )


def format_pickup_sms(data: SmsTemplateData, locale: str | None) -> str:
    return _render(_PICKUP, data, locale)


def format_update_sms(data: SmsTemplateData, locale: str | None) -> str:
    return _render(_UPDATE, data, locale)


def format_cancellation_sms(data: SmsTemplateData, locale: str | None) -> str:
    return _render(_CANCELLED, data, locale)


def public_parcel_url(parcel_id) -> str:
    return f"{settings.BASE_URL.rstrip('/')}/p/{parcel_id}"
