from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_queue.core.errors import AlreadyClosedError, InvalidStateError, NotFoundError
from clinic_queue.models.absence import AbsenceRecord
from clinic_queue.models.appointment import Appointment, AppointmentStatus
from clinic_queue.models.base import as_utc, utcnow
from clinic_queue.models.day_closure import DayClosure
from clinic_queue.models.patient import GuestPatient, Patient, PatientRef, patient_columns
from clinic_queue.services.locking import queue_transaction


def resolve_now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else utcnow()


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appt = db.get(Appointment, appointment_id)
    if appt is None:
        raise NotFoundError("Appointment", appointment_id)
    return appt


@contextmanager
def appointment_transaction(db: Session, appointment_id: int) -> Iterator[Appointment]:
    """Lock the appointment's (staff, date) queue and yield a fresh copy of it."""
    appt = get_appointment(db, appointment_id)
    with queue_transaction(db, appt.staff_id, appt.appointment_date):
        db.refresh(appt)
        yield appt


def touch(appt: Appointment, actor_id: str | None, now: datetime) -> None:
    appt.updated_at = now
    if actor_id is not None:
        appt.override_by = str(actor_id)


def require_queued(appt: Appointment) -> None:
    if appt.is_terminal:
        raise InvalidStateError(f"Appointment {appt.id} is already {appt.status.value}")
    if appt.is_absent:
        raise InvalidStateError(f"Appointment {appt.id} is marked absent; resolve the absence first")
    if not appt.is_queued:
        raise InvalidStateError(f"Appointment {appt.id} is not waiting in the queue")


def position_map(entries: Iterable[Appointment]) -> dict[int, int | None]:
    return {appt.id: appt.queue_position for appt in entries}


def current_in_progress(db: Session, staff_id: int, target_date: date) -> Appointment | None:
    db.flush()
    stmt = select(Appointment).where(
        Appointment.staff_id == staff_id,
        Appointment.appointment_date == target_date,
        Appointment.status == AppointmentStatus.in_progress,
    )
    return db.scalars(stmt).first()


def open_absence(db: Session, appointment_id: int) -> AbsenceRecord | None:
    db.flush()
    stmt = select(AbsenceRecord).where(
        AbsenceRecord.appointment_id == appointment_id,
        AbsenceRecord.resolution.is_(None),
    )
    return db.scalars(stmt).first()


def require_patient(db: Session, ref: PatientRef) -> None:
    columns = patient_columns(ref)
    if columns["patient_id"] is not None:
        if db.get(Patient, columns["patient_id"]) is None:
            raise NotFoundError("Patient", columns["patient_id"])
    elif db.get(GuestPatient, columns["guest_patient_id"]) is None:
        raise NotFoundError("Guest patient", columns["guest_patient_id"])


def open_closure(db: Session, staff_id: int, target_date: date) -> DayClosure | None:
    db.flush()
    stmt = select(DayClosure).where(
        DayClosure.staff_id == staff_id,
        DayClosure.closure_date == target_date,
        DayClosure.reopened_at.is_(None),
    )
    return db.scalars(stmt).first()


def require_open_day(db: Session, staff_id: int, target_date: date) -> None:
    closure = open_closure(db, staff_id, target_date)
    if closure is not None:
        raise AlreadyClosedError(staff_id, target_date, closure.id)
