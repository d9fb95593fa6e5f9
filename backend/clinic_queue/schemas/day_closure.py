from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EndDayIn(BaseModel):
    clinic_id: int
    staff_id: int
    date: date
    reason: Optional[str] = None
    notes: Optional[str] = None


class ReopenDayIn(BaseModel):
    reason: str = Field(min_length=1)


class DayClosureSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    closure_id: int
    clinic_id: int
    staff_id: int
    closure_date: date
    total_appointments: int
    waiting_count: int
    in_progress_count: int
    absent_count: int
    completed_count: int
    marked_no_show_ids: list[int]
    marked_completed_ids: list[int]
    closed_absence_ids: list[int]


class DayClosureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: int
    staff_id: int
    closure_date: date
    performed_by: str
    performed_at: datetime
    total_appointments: int
    waiting_count: int
    in_progress_count: int
    absent_count: int
    completed_count: int
    marked_no_show_ids: list[int]
    marked_completed_ids: list[int]
    closed_absence_ids: list[int]
    reason: Optional[str] = None
    notes: Optional[str] = None
    can_reopen: bool
    reopened_at: Optional[datetime] = None
    reopened_by: Optional[str] = None


class DayReopenOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    closure: DayClosureOut
    restored_ids: list[int]
    left_unchanged_ids: list[int]


class ClosurePreviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    clinic_id: int
    staff_id: int
    closure_date: date
    total_appointments: int
    waiting_count: int
    in_progress_count: int
    absent_count: int
    completed_count: int
    already_no_show: int
    will_mark_no_show: list[int]
    will_mark_completed: list[int]
    is_closed: bool
    closure_id: Optional[int] = None
