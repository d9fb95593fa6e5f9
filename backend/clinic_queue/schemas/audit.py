from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from clinic_queue.models.appointment import AppointmentStatus, SkipReason
from clinic_queue.models.queue_override import QueueActionType


class QueueEntrySnapshot(BaseModel):
    """Versioned state of one queue entry as recorded in the override log."""

    model_config = ConfigDict(from_attributes=True)

    schema_version: Literal[1] = 1
    appointment_id: int
    appointment_date: date
    status: AppointmentStatus
    queue_position: Optional[int] = None
    original_queue_position: Optional[int] = None
    priority_score: int
    is_present: bool
    skip_reason: Optional[SkipReason] = None
    skip_count: int = 0
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None


class QueueOverrideOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    clinic_id: int
    appointment_id: Optional[int] = None
    action_type: QueueActionType
    performed_by: str
    reason: Optional[str] = None
    previous_position: Optional[int] = None
    new_position: Optional[int] = None
    previous_state: Optional[QueueEntrySnapshot] = None
    new_state: Optional[QueueEntrySnapshot] = None
    skipped_appointment_ids: list[int] = []
    affected_appointment_ids: list[int] = []
