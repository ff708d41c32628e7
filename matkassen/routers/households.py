"""Households router - removal, anonymization and no-show follow-up."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from matkassen.core.deps import get_clock, get_db, require_admin
from matkassen.schemas.noshow import NoShowFollowupItem
from matkassen.services import anonymization_service, noshow_service
from matkassen.services.anonymization_service import HouseholdRemovalBlockedError
from matkassen.utils.clock import Clock

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/households/{household_id}/removal-check")
def removal_check(
    household_id: UUID,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    check = anonymization_service.can_remove_household(db, household_id, clock)
    return {
        "allowed": check.allowed,
        "reason": check.reason,
        "upcoming_parcel_count": check.upcoming_parcel_count,
    }


@router.delete("/households/{household_id}")
def remove_household(
    household_id: UUID,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Hard delete without history, otherwise anonymize."""
    try:
        result = anonymization_service.remove_household(db, household_id, actor, clock)
    except anonymization_service.HouseholdNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except HouseholdRemovalBlockedError as e:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "upcoming_parcels",
                "message": str(e),
                "upcoming_parcel_count": e.upcoming_parcel_count,
            },
        ) from e
    return {"method": result.method, "household_id": str(result.household_id)}


@router.get("/households/{household_id}/noshow-stats", response_model=NoShowFollowupItem)
def noshow_stats(household_id: UUID, db: Session = Depends(get_db)):
    try:
        return noshow_service.get_household_noshow_stats(db, household_id).to_dict()
    except noshow_service.HouseholdNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.post("/households/{household_id}/noshow-followup/dismiss")
def dismiss_followup(
    household_id: UUID,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        household = noshow_service.dismiss_noshow_followup(db, household_id, actor, clock)
    except noshow_service.HouseholdNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return {
        "household_id": str(household.id),
        "dismissed_at": household.noshow_followup_dismissed_at.isoformat(),
    }
