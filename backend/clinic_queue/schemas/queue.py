from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict

from clinic_queue.models.appointment import AppointmentStatus, SkipReason
from clinic_queue.models.patient import PatientRef, patient_ref_from_ids


class PatientRefIn(BaseModel):
    patient_id: Optional[int] = None
    guest_patient_id: Optional[int] = None

    def to_ref(self) -> PatientRef:
        return patient_ref_from_ids(self.patient_id, self.guest_patient_id)


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: int
    staff_id: int
    patient_id: Optional[int] = None
    guest_patient_id: Optional[int] = None
    appointment_date: date
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    appointment_type: Optional[str] = None
    status: AppointmentStatus
    is_present: bool
    checked_in_at: Optional[datetime] = None
    marked_absent_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    queue_position: Optional[int] = None
    original_queue_position: Optional[int] = None
    priority_score: int
    skip_reason: Optional[SkipReason] = None
    skip_count: int = 0
    is_walk_in: bool = False
    is_gap_filler: bool = False
    promoted_from_waitlist: bool = False
    late_arrival_converted: bool = False
    override_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class QueueDayIn(BaseModel):
    clinic_id: int
    staff_id: int
    date: date


class ReasonIn(BaseModel):
    reason: Optional[str] = None


class SwapIn(BaseModel):
    first_id: int
    second_id: int
    reason: Optional[str] = None


class SlotRequestIn(PatientRefIn):
    clinic_id: int
    staff_id: int
    date: date
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    appointment_type: Optional[str] = None
    is_walk_in: bool = False
    is_emergency: bool = False
    requested_time_start: Optional[time] = None
    requested_time_end: Optional[time] = None
    waitlist_priority: int = 0
    notes: Optional[str] = None


class ForceAddIn(PatientRefIn):
    clinic_id: int
    staff_id: int
    date: date
    reason: Optional[str] = None
    is_emergency: bool = False
    appointment_type: Optional[str] = None
