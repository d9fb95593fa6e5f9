from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from clinic_queue.db.session import get_db
from clinic_queue.deps import get_current_actor
from clinic_queue.models.waitlist import WaitlistStatus
from clinic_queue.schemas.queue import QueueDayIn, ReasonIn
from clinic_queue.schemas.waitlist import ExpireWaitlistIn, WaitlistEntryOut, WaitlistPromotionOut
from clinic_queue.services.locking import with_lock_retry
from clinic_queue.services.waitlist import (
    cancel_waitlist_entry,
    expire_waitlist,
    list_waitlist,
    promote_from_waitlist,
)

router = APIRouter(prefix="/waitlist", tags=["waitlist"])


@router.get("", response_model=list[WaitlistEntryOut])
def list_entries(
    clinic_id: int = Query(...),
    date_value: date | None = Query(default=None, alias="date"),
    status_filter: WaitlistStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return list_waitlist(db, clinic_id, target_date=date_value, status=status_filter)


@router.post("/promote", response_model=WaitlistPromotionOut)
def promote(
    payload: QueueDayIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    promotion = with_lock_retry(
        lambda: promote_from_waitlist(
            db, payload.clinic_id, payload.staff_id, payload.date, actor_id=actor
        )
    )
    if promotion is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return promotion


@router.post("/{entry_id}/cancel", response_model=WaitlistEntryOut)
def cancel_entry(
    entry_id: int,
    payload: ReasonIn,
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return cancel_waitlist_entry(db, entry_id, reason=payload.reason)


@router.post("/expire", response_model=list[int])
def expire(
    payload: ExpireWaitlistIn,
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return expire_waitlist(db, payload.clinic_id, payload.before_date)
