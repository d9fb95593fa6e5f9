from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict

from clinic_queue.models.waitlist import WaitlistStatus
from clinic_queue.schemas.queue import AppointmentOut


class WaitlistEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: int
    patient_id: Optional[int] = None
    guest_patient_id: Optional[int] = None
    requested_date: date
    requested_time_start: Optional[time] = None
    requested_time_end: Optional[time] = None
    priority_score: int
    status: WaitlistStatus
    notes: Optional[str] = None
    promoted_appointment_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class SlotRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    waitlisted: bool
    appointment: Optional[AppointmentOut] = None
    waitlist_entry: Optional[WaitlistEntryOut] = None


class WaitlistPromotionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    appointment: AppointmentOut
    entry: WaitlistEntryOut


class ExpireWaitlistIn(BaseModel):
    clinic_id: int
    before_date: date
