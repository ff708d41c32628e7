"""Parcels router - validated parcel assignment and pickup outcomes."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from matkassen.core.deps import get_clock, get_db, require_admin
from matkassen.schemas.parcel import ParcelBatchWrite, ParcelRead, ParcelWrite
from matkassen.services import parcel_service
from matkassen.services.parcel_service import NotFoundError, ParcelInput, ParcelStateError
from matkassen.utils.clock import Clock

router = APIRouter(dependencies=[Depends(require_admin)])


def _to_input(data: ParcelWrite) -> ParcelInput:
    return ParcelInput(
        location_id=data.location_id,
        pickup_earliest_time=data.pickup_earliest_time,
        pickup_latest_time=data.pickup_latest_time,
    )


def _raise_http(exc: ValueError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.post("/households/{household_id}/parcels", response_model=list[ParcelRead], status_code=201)
def create_parcels(
    household_id: UUID,
    data: ParcelBatchWrite,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Create parcels; any validation error rejects the whole batch (422)."""
    try:
        return parcel_service.create_parcels(
            db, household_id, [_to_input(p) for p in data.parcels], clock
        )
    except (NotFoundError, ParcelStateError) as e:
        _raise_http(e)


@router.put("/households/{household_id}/parcels", response_model=list[ParcelRead])
def replace_parcels(
    household_id: UUID,
    data: ParcelBatchWrite,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Replace the household's upcoming parcels, all or nothing."""
    try:
        return parcel_service.replace_household_parcels(
            db, household_id, [_to_input(p) for p in data.parcels], clock, actor
        )
    except (NotFoundError, ParcelStateError) as e:
        _raise_http(e)


@router.patch("/parcels/{parcel_id}", response_model=ParcelRead)
def update_parcel(
    parcel_id: UUID,
    data: ParcelWrite,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return parcel_service.update_parcel(db, parcel_id, _to_input(data), clock)
    except (NotFoundError, ParcelStateError) as e:
        _raise_http(e)


@router.delete("/parcels/{parcel_id}", response_model=ParcelRead)
def delete_parcel(
    parcel_id: UUID,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return parcel_service.soft_delete_parcel(db, parcel_id, actor, clock)
    except (NotFoundError, ParcelStateError) as e:
        _raise_http(e)


@router.post("/parcels/{parcel_id}/pickup", response_model=ParcelRead)
def mark_picked_up(
    parcel_id: UUID,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return parcel_service.mark_picked_up(db, parcel_id, actor, clock)
    except (NotFoundError, ParcelStateError) as e:
        _raise_http(e)


@router.post("/parcels/{parcel_id}/no-show", response_model=ParcelRead)
def mark_no_show(
    parcel_id: UUID,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        return parcel_service.mark_no_show(db, parcel_id, actor, clock)
    except (NotFoundError, ParcelStateError) as e:
        _raise_http(e)
