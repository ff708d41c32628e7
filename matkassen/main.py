"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from matkassen.core.config import settings
from matkassen.db.session import engine
from matkassen.services.parcel_validation import (
    ParcelValidationError,
    format_validation_error,
)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Phone numbers must never leave the service
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from matkassen.core.rate_limit import limiter

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Matkassen API",
    description="Food parcel scheduling, SMS notifications and household retention",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ParcelValidationError)
async def parcel_validation_error_handler(request: Request, exc: ParcelValidationError):
    """Structured 422 listing every violated rule."""
    return JSONResponse(
        status_code=422,
        content={
            "errors": [
                {**error.to_dict(), "display_message": format_validation_error(error)}
                for error in exc.errors
            ]
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# ============================================================================
# Routers
# ============================================================================

from matkassen.routers import households, noshow, parcels, schedules, sms, webhooks

# Provider callbacks (secret in path, rate limited)
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

# Admin routes
app.include_router(parcels.router, tags=["parcels"])
app.include_router(sms.router, tags=["sms"])
app.include_router(households.router, tags=["households"])
app.include_router(noshow.router, prefix="/noshow", tags=["noshow"])
app.include_router(schedules.router, tags=["schedules"])


@app.get("/health")
def health_check():
    """Liveness plus a cheap database round trip."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logging.getLogger(__name__).exception("Database health check failed")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "unavailable"},
        )
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
