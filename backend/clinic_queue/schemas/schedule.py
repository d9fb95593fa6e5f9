from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from clinic_queue.models.appointment import AppointmentStatus, SkipReason
from clinic_queue.services.queue_config import QueueMode


class ScheduleClinicOut(BaseModel):
    id: int
    name: str
    specialty: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None


class StaffOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: int
    full_name: str
    is_active: bool


class ScheduleFlagsOut(BaseModel):
    is_walk_in: bool = False
    is_gap_filler: bool = False
    promoted_from_waitlist: bool = False
    late_arrival_converted: bool = False


class ScheduleEntryOut(BaseModel):
    id: int
    status: AppointmentStatus
    queue_position: Optional[int] = None
    original_queue_position: Optional[int] = None
    priority_score: int
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    appointment_type: Optional[str] = None
    is_present: bool
    is_absent: bool
    checked_in_at: Optional[datetime] = None
    marked_absent_at: Optional[datetime] = None
    skip_reason: Optional[SkipReason] = None
    skip_count: int = 0
    patient_id: Optional[int] = None
    guest_patient_id: Optional[int] = None
    is_guest: bool
    patient_display_name: str
    patient_phone: Optional[str] = None
    flags: ScheduleFlagsOut


class DailyScheduleOut(BaseModel):
    date: date
    clinic: ScheduleClinicOut
    staff_id: int
    staff_name: str
    mode: QueueMode
    is_closed: bool
    entries: list[ScheduleEntryOut]
    summary: dict[str, int]
