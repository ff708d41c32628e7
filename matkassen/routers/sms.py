"""SMS admin router - failures, retries, cancellation and gateway status."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from matkassen.core.deps import get_clock, get_db, get_sms_gateway, require_admin
from matkassen.schemas.sms import SmsBalanceStatus, SmsQueuedResponse, SmsRead
from matkassen.services.sms import sms_service
from matkassen.services.sms.gateway import SmsGateway
from matkassen.services.sms.sms_service import (
    SmsCooldownError,
    SmsError,
    SmsNotFoundError,
)
from matkassen.utils.clock import Clock

router = APIRouter(dependencies=[Depends(require_admin)])


def _raise_http(exc: SmsError) -> None:
    if isinstance(exc, SmsNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, SmsCooldownError):
        raise HTTPException(status_code=429, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail={"code": exc.code, "message": str(exc)}) from exc


@router.get("/sms/failures")
def list_failures(
    dismissed: bool = Query(False),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Failed messages for upcoming parcels, error text redacted."""
    return {"items": sms_service.list_failed_sms(db, clock, dismissed=dismissed)}


@router.get("/sms/failures/count")
def count_failures(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    return {"count": sms_service.count_active_failures(db, clock)}


@router.get("/sms/balance", response_model=SmsBalanceStatus)
async def balance_status(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    gateway: SmsGateway = Depends(get_sms_gateway),
):
    return await sms_service.get_sms_balance_status(db, gateway, clock)


@router.get("/sms/health")
def sms_health(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    return sms_service.sms_health_check(db, clock)


@router.post("/sms/{sms_id}/cancel", response_model=SmsRead)
def cancel_sms(sms_id: UUID, db: Session = Depends(get_db)):
    try:
        return sms_service.cancel_sms(db, sms_id)
    except SmsError as e:
        _raise_http(e)


@router.post("/sms/{sms_id}/retry", response_model=SmsQueuedResponse, status_code=201)
def retry_sms(
    sms_id: UUID,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return {"id": sms_service.retry_failed_sms(db, sms_id, clock, actor)}
    except SmsError as e:
        _raise_http(e)


@router.post("/sms/{sms_id}/dismiss", response_model=SmsRead)
def dismiss_sms(
    sms_id: UUID,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return sms_service.dismiss_sms(db, sms_id, actor, clock)
    except SmsError as e:
        _raise_http(e)


@router.post("/sms/{sms_id}/restore", response_model=SmsRead)
def restore_sms(sms_id: UUID, db: Session = Depends(get_db)):
    try:
        return sms_service.restore_sms(db, sms_id)
    except SmsError as e:
        _raise_http(e)


@router.get("/parcels/{parcel_id}/sms", response_model=list[SmsRead])
def list_parcel_sms(parcel_id: UUID, db: Session = Depends(get_db)):
    return sms_service.get_sms_records_for_parcel(db, parcel_id)


@router.post("/parcels/{parcel_id}/sms/resend", response_model=SmsQueuedResponse, status_code=201)
def resend_parcel_sms(
    parcel_id: UUID,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Queue a fresh reminder, bypassing deduplication but not the 5 minute cooldown."""
    try:
        return {"id": sms_service.resend_sms_for_parcel(db, parcel_id, clock)}
    except SmsError as e:
        _raise_http(e)
