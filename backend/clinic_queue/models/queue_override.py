from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from clinic_queue.models.base import Base, utcnow


class QueueActionType(str, enum.Enum):
    call_present = "call_present"
    mark_absent = "mark_absent"
    late_arrival = "late_arrival"
    emergency = "emergency"
    reorder = "reorder"
    swap = "swap"
    force_add = "force_add"
    priority_boost = "priority_boost"
    manual_move = "manual_move"
    call_next = "call_next"
    book = "book"
    check_in = "check_in"
    presence_change = "presence_change"
    complete = "complete"
    cancel = "cancel"
    absence_resolved = "absence_resolved"
    absence_expired = "absence_expired"
    waitlist_promote = "waitlist_promote"
    day_close = "day_close"
    day_reopen = "day_reopen"


class QueueOverride(Base):
    __tablename__ = "queue_overrides"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False, index=True)
    appointment_id: Mapped[int | None] = mapped_column(
        ForeignKey("appointments.id"), nullable=True, index=True
    )
    action_type: Mapped[QueueActionType] = mapped_column(
        Enum(QueueActionType, name="queue_action_type"), nullable=False
    )
    performed_by: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    skipped_appointment_ids: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    affected_appointment_ids: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
