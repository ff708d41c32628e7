"""No-show router - follow-up list and thresholds."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from matkassen.core.deps import get_db, require_admin
from matkassen.schemas.noshow import NoShowConfigRead, NoShowConfigUpdate, NoShowFollowupList
from matkassen.services import noshow_service, settings_service

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/config", response_model=NoShowConfigRead)
def get_config(db: Session = Depends(get_db)):
    config = settings_service.get_noshow_config(db)
    return NoShowConfigRead(
        enabled=config.enabled,
        consecutive_threshold=config.consecutive_threshold,
        total_threshold=config.total_threshold,
    )


@router.put("/config", response_model=NoShowConfigRead)
def update_config(
    data: NoShowConfigUpdate,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        config = settings_service.update_noshow_config(
            db,
            enabled=data.enabled,
            consecutive_threshold=data.consecutive_threshold,
            total_threshold=data.total_threshold,
            actor=actor,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return NoShowConfigRead(
        enabled=config.enabled,
        consecutive_threshold=config.consecutive_threshold,
        total_threshold=config.total_threshold,
    )


@router.get("/followups", response_model=NoShowFollowupList)
def list_followups(db: Session = Depends(get_db)):
    """Households over a no-show threshold, latest no-show first (max 100)."""
    config = settings_service.get_noshow_config(db)
    rows, total = noshow_service.get_households_needing_followup(db, config)
    return {"items": [row.to_dict() for row in rows], "total_count": total}
