from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from clinic_queue.db.session import get_db
from clinic_queue.deps import get_current_actor
from clinic_queue.schemas.queue import (
    AppointmentOut,
    ForceAddIn,
    QueueDayIn,
    ReasonIn,
    SlotRequestIn,
    SwapIn,
)
from clinic_queue.schemas.schedule import DailyScheduleOut, StaffOut
from clinic_queue.schemas.waitlist import SlotRequestOut
from clinic_queue.services import queue as queue_service
from clinic_queue.services.locking import with_lock_retry
from clinic_queue.services.roster import get_active_staff
from clinic_queue.services.schedule_view import get_daily_schedule
from clinic_queue.services.waitlist import force_add, request_slot

router = APIRouter(prefix="/queue", tags=["queue"])


@router.get("/schedule", response_model=DailyScheduleOut)
def daily_schedule(
    clinic_id: int = Query(...),
    staff_id: int = Query(...),
    date_value: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return get_daily_schedule(db, clinic_id, staff_id, date_value)


@router.get("/staff", response_model=list[StaffOut])
def active_staff(
    clinic_id: int = Query(...),
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return get_active_staff(db, clinic_id)


@router.post("/slots", response_model=SlotRequestOut, status_code=status.HTTP_201_CREATED)
def create_slot(
    payload: SlotRequestIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    patient = payload.to_ref()
    return with_lock_retry(
        lambda: request_slot(
            db,
            payload.clinic_id,
            payload.staff_id,
            payload.date,
            patient,
            actor_id=actor,
            scheduled_start=payload.scheduled_start,
            scheduled_end=payload.scheduled_end,
            appointment_type=payload.appointment_type,
            is_walk_in=payload.is_walk_in,
            is_emergency=payload.is_emergency,
            requested_time_start=payload.requested_time_start,
            requested_time_end=payload.requested_time_end,
            waitlist_priority=payload.waitlist_priority,
            notes=payload.notes,
        )
    )


@router.post("/force-add", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
def force_add_entry(
    payload: ForceAddIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    patient = payload.to_ref()
    return with_lock_retry(
        lambda: force_add(
            db,
            payload.clinic_id,
            payload.staff_id,
            payload.date,
            patient,
            actor_id=actor,
            reason=payload.reason,
            is_emergency=payload.is_emergency,
            appointment_type=payload.appointment_type,
        )
    )


@router.post("/call-next", response_model=AppointmentOut)
def call_next(
    payload: QueueDayIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: queue_service.call_next(
            db, payload.clinic_id, payload.staff_id, payload.date, actor_id=actor
        )
    )


@router.post("/recalculate", response_model=list[AppointmentOut])
def recalculate(
    payload: QueueDayIn,
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: queue_service.recalculate_queue(db, payload.clinic_id, payload.staff_id, payload.date)
    )


@router.post("/swap", response_model=list[AppointmentOut])
def swap(
    payload: SwapIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    first, second = with_lock_retry(
        lambda: queue_service.swap_entries(
            db, payload.first_id, payload.second_id, actor_id=actor, reason=payload.reason
        )
    )
    return [first, second]


@router.post("/appointments/{appointment_id}/check-in", response_model=AppointmentOut)
def check_in(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(lambda: queue_service.check_in(db, appointment_id, actor_id=actor))


@router.post("/appointments/{appointment_id}/present", response_model=AppointmentOut)
def mark_present(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(lambda: queue_service.mark_present(db, appointment_id, actor_id=actor))


@router.post("/appointments/{appointment_id}/not-present", response_model=AppointmentOut)
def mark_not_present(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: queue_service.mark_not_present(db, appointment_id, actor_id=actor)
    )


@router.post("/appointments/{appointment_id}/call", response_model=AppointmentOut)
def call_present(
    appointment_id: int,
    payload: ReasonIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: queue_service.call_present(db, appointment_id, actor_id=actor, reason=payload.reason)
    )


@router.post("/appointments/{appointment_id}/complete", response_model=AppointmentOut)
def complete(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: queue_service.complete_appointment(db, appointment_id, actor_id=actor)
    )


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentOut)
def cancel(
    appointment_id: int,
    payload: ReasonIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: queue_service.cancel_appointment(
            db, appointment_id, actor_id=actor, reason=payload.reason
        )
    )


@router.post("/appointments/{appointment_id}/boost", response_model=AppointmentOut)
def boost(
    appointment_id: int,
    payload: ReasonIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: queue_service.boost_priority(db, appointment_id, actor_id=actor, reason=payload.reason)
    )


@router.post("/appointments/{appointment_id}/emergency", response_model=AppointmentOut)
def emergency(
    appointment_id: int,
    payload: ReasonIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return with_lock_retry(
        lambda: queue_service.mark_emergency(db, appointment_id, actor_id=actor, reason=payload.reason)
    )
