"""FastAPI dependencies for database access, time and admin access."""

from typing import Generator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from matkassen.core.config import settings
from matkassen.core.security import verify_secret
from matkassen.db.session import SessionLocal
from matkassen.services.sms.gateway import HelloSmsGateway, SmsGateway
from matkassen.utils.clock import Clock, SystemClock


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> Clock:
    """Wall clock for request handlers; tests override with a FixedClock."""
    return SystemClock()


def get_sms_gateway() -> SmsGateway:
    return HelloSmsGateway.from_settings()


def require_admin(authorization: str | None = Header(default=None)) -> str:
    """
    Guard admin routes with a shared bearer key.

    Returns an actor label stamped on audit columns (dismissed_by, anonymized_by).
    Without a configured key the check is skipped outside production.
    """
    if not settings.ADMIN_API_KEY:
        if settings.is_production:
            raise HTTPException(status_code=503, detail="Admin API key not configured")
        return "admin"

    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not verify_secret(token, settings.ADMIN_API_KEY):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return "admin"
