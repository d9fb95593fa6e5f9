from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from clinic_queue.models.absence import AbsenceResolution
from clinic_queue.schemas.queue import AppointmentOut
from clinic_queue.schemas.waitlist import WaitlistEntryOut


class AbsenceRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: int
    clinic_id: int
    marked_absent_at: datetime
    grace_period_ends_at: datetime
    returned_at: Optional[datetime] = None
    new_position: Optional[int] = None
    auto_cancelled: bool = False
    resolution: Optional[AbsenceResolution] = None
    resolved_at: Optional[datetime] = None
    rebooked_appointment_id: Optional[int] = None


class ResolveAbsenceIn(BaseModel):
    resolution: AbsenceResolution = AbsenceResolution.returned
    reason: Optional[str] = None
    rebook_date: Optional[date] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    waitlist_priority: int = 0


class AbsenceOutcomeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expired: bool
    appointment: AppointmentOut
    record: AbsenceRecordOut
    rebooked_appointment: Optional[AppointmentOut] = None
    waitlist_entry: Optional[WaitlistEntryOut] = None
