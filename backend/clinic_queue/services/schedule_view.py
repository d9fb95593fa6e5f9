from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from clinic_queue.core.errors import NotFoundError
from clinic_queue.models.appointment import Appointment, AppointmentStatus
from clinic_queue.models.clinic import Clinic, ClinicStaff
from clinic_queue.models.base import as_utc
from clinic_queue.schemas.schedule import (
    DailyScheduleOut,
    ScheduleClinicOut,
    ScheduleEntryOut,
    ScheduleFlagsOut,
)
from clinic_queue.services.entries import open_closure
from clinic_queue.services.positions import load_day_entries
from clinic_queue.services.queue_config import effective_config

# in service, queued, absent, then everything already finished
_SECTION_ORDER = {"in_progress": 0, "queued": 1, "absent": 2, "done": 3}


def _section(appt: Appointment) -> str:
    if appt.status == AppointmentStatus.in_progress:
        return "in_progress"
    if appt.is_queued:
        return "queued"
    if appt.is_absent:
        return "absent"
    return "done"


def _sort_key(appt: Appointment) -> tuple:
    section = _section(appt)
    if section == "queued":
        rank = appt.queue_position or 0
    elif section == "absent":
        rank = appt.original_queue_position or 0
    else:
        rank = 0
    start = as_utc(appt.scheduled_start) or as_utc(appt.created_at)
    return (_SECTION_ORDER[section], rank, start, appt.id)


def _patient_display(appt: Appointment) -> tuple[str, str | None]:
    person = appt.guest_patient if appt.is_guest else appt.patient
    if person is None:
        return "Unknown patient", None
    name = (person.full_name or "").strip()
    if not name:
        prefix = "Guest" if appt.is_guest else "Patient"
        name = f"{prefix} {person.id}"
    return name, person.phone_number


def get_daily_schedule(db: Session, clinic_id: int, staff_id: int, target_date: date) -> DailyScheduleOut:
    """Lock-free read of one staff member's day, in serving order."""
    clinic = db.get(Clinic, clinic_id)
    if clinic is None:
        raise NotFoundError("Clinic", clinic_id)
    staff = db.get(ClinicStaff, staff_id)
    if staff is None or staff.clinic_id != clinic_id:
        raise NotFoundError("Staff", staff_id)

    config = effective_config(clinic, target_date)
    appointments = [
        appt for appt in load_day_entries(db, clinic_id, target_date) if appt.staff_id == staff_id
    ]
    appointments.sort(key=_sort_key)

    summary: dict[str, int] = {
        "total": len(appointments),
        "queued": 0,
        "present": 0,
        "absent": 0,
    }
    entries: list[ScheduleEntryOut] = []
    for appt in appointments:
        status_key = f"status_{appt.status.value}"
        summary[status_key] = summary.get(status_key, 0) + 1
        if appt.is_queued:
            summary["queued"] += 1
            if appt.is_present:
                summary["present"] += 1
        if appt.is_absent:
            summary["absent"] += 1

        name, phone = _patient_display(appt)
        entries.append(
            ScheduleEntryOut(
                id=appt.id,
                status=appt.status,
                queue_position=appt.queue_position,
                original_queue_position=appt.original_queue_position,
                priority_score=appt.priority_score,
                scheduled_start=appt.scheduled_start,
                scheduled_end=appt.scheduled_end,
                appointment_type=appt.appointment_type,
                is_present=appt.is_present,
                is_absent=appt.is_absent,
                checked_in_at=appt.checked_in_at,
                marked_absent_at=appt.marked_absent_at,
                skip_reason=appt.skip_reason,
                skip_count=appt.skip_count or 0,
                patient_id=appt.patient_id,
                guest_patient_id=appt.guest_patient_id,
                is_guest=appt.is_guest,
                patient_display_name=name,
                patient_phone=phone,
                flags=ScheduleFlagsOut(
                    is_walk_in=appt.is_walk_in,
                    is_gap_filler=appt.is_gap_filler,
                    promoted_from_waitlist=appt.promoted_from_waitlist,
                    late_arrival_converted=appt.late_arrival_converted,
                ),
            )
        )

    return DailyScheduleOut(
        date=target_date,
        clinic=ScheduleClinicOut(
            id=clinic.id,
            name=clinic.name,
            specialty=clinic.specialty,
            city=clinic.city,
            address=clinic.address,
            phone=clinic.phone,
        ),
        staff_id=staff.id,
        staff_name=staff.full_name or f"Staff {staff.id}",
        mode=config.mode,
        is_closed=open_closure(db, staff_id, target_date) is not None,
        entries=entries,
        summary=summary,
    )
