from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from clinic_queue.db.session import get_db
from clinic_queue.deps import get_current_actor
from clinic_queue.schemas.absence import AbsenceOutcomeOut, AbsenceRecordOut, ResolveAbsenceIn
from clinic_queue.schemas.queue import QueueDayIn, ReasonIn
from clinic_queue.services.absence import (
    expire_absences,
    list_open_absences,
    mark_absent,
    resolve_absence,
)
from clinic_queue.services.locking import with_lock_retry

router = APIRouter(prefix="/absences", tags=["absences"])


@router.get("", response_model=list[AbsenceRecordOut])
def list_absences(
    clinic_id: int = Query(...),
    date_value: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return list_open_absences(db, clinic_id, date_value)


@router.post(
    "/appointments/{appointment_id}",
    response_model=AbsenceRecordOut,
    status_code=status.HTTP_201_CREATED,
)
def create_absence(
    appointment_id: int,
    payload: ReasonIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: mark_absent(db, appointment_id, actor_id=actor, reason=payload.reason)
    )


@router.post("/appointments/{appointment_id}/resolve", response_model=AbsenceOutcomeOut)
def resolve(
    appointment_id: int,
    payload: ResolveAbsenceIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: resolve_absence(
            db,
            appointment_id,
            actor_id=actor,
            resolution=payload.resolution,
            reason=payload.reason,
            rebook_date=payload.rebook_date,
            scheduled_start=payload.scheduled_start,
            scheduled_end=payload.scheduled_end,
            waitlist_priority=payload.waitlist_priority,
        )
    )


@router.post("/expire", response_model=list[AbsenceRecordOut])
def expire(
    payload: QueueDayIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: expire_absences(
            db, payload.clinic_id, payload.staff_id, payload.date, actor_id=actor
        )
    )
