"""Rate limiting for public routes (provider webhooks)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from matkassen.core.config import settings

IS_TESTING = settings.ENV.lower() == "test"

# Single-process worker deployments, so in-memory storage is enough
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=not IS_TESTING and settings.RATE_LIMIT_WEBHOOK > 0,
)

WEBHOOK_LIMIT = f"{max(settings.RATE_LIMIT_WEBHOOK, 1)}/minute"
