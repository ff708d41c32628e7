"""Shared-secret checks for provider callbacks and admin routes."""

import secrets

# Shorter secrets are rejected outright so the webhook URL cannot be guessed
MIN_CALLBACK_SECRET_LENGTH = 32


def verify_secret(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison of two secrets; empty values never match."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def verify_callback_secret(provided: str | None, expected: str | None) -> bool:
    """Check a webhook path secret against the configured callback secret."""
    if not expected or len(expected) < MIN_CALLBACK_SECRET_LENGTH:
        return False
    return verify_secret(provided, expected)


def generate_token(nbytes: int = 12) -> str:
    """URL-safe random token used for forced-resend idempotency keys."""
    return secrets.token_urlsafe(nbytes)
