from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from clinic_queue.db.session import get_db
from clinic_queue.deps import get_current_actor
from clinic_queue.schemas.day_closure import (
    ClosurePreviewOut,
    DayClosureOut,
    DayClosureSummaryOut,
    DayReopenOut,
    EndDayIn,
    ReopenDayIn,
)
from clinic_queue.services.day_closure import (
    end_day,
    get_closure,
    list_closures,
    preview_closure,
    reopen_day,
)
from clinic_queue.services.locking import with_lock_retry

router = APIRouter(prefix="/day-closures", tags=["day-closures"])


@router.get("", response_model=list[DayClosureOut])
def list_day_closures(
    clinic_id: int = Query(...),
    staff_id: int | None = Query(default=None),
    date_value: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return list_closures(db, clinic_id, staff_id=staff_id, closure_date=date_value)


@router.get("/preview", response_model=ClosurePreviewOut)
def preview(
    clinic_id: int = Query(...),
    staff_id: int = Query(...),
    date_value: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return preview_closure(db, clinic_id, staff_id, date_value)


@router.post("", response_model=DayClosureSummaryOut, status_code=status.HTTP_201_CREATED)
def close_day(
    payload: EndDayIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: end_day(
            db,
            payload.clinic_id,
            payload.staff_id,
            payload.date,
            actor_id=actor,
            reason=payload.reason,
            notes=payload.notes,
        )
    )


@router.get("/{closure_id}", response_model=DayClosureOut)
def get_day_closure(
    closure_id: int,
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return get_closure(db, closure_id)


@router.post("/{closure_id}/reopen", response_model=DayReopenOut)
def reopen(
    closure_id: int,
    payload: ReopenDayIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(lambda: reopen_day(db, closure_id, actor_id=actor, reason=payload.reason))
