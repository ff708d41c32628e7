"""Structured logging helpers (PII-safe).

Phone numbers and message bodies never go into log context; only ids.
"""

from typing import Any


def build_log_context(
    *,
    sms_id: object | None = None,
    parcel_id: object | None = None,
    household_id: object | None = None,
    job: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if sms_id:
        context["sms_id"] = str(sms_id)
    if parcel_id:
        context["parcel_id"] = str(parcel_id)
    if household_id:
        context["household_id"] = str(household_id)
    if job:
        context["job"] = job
    if route:
        context["route"] = route
    return context
