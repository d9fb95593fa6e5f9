from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_queue.models.base import Base, TimestampMixin


class AbsenceResolution(str, enum.Enum):
    returned = "returned"
    expired = "expired"
    rebooked = "rebooked"
    waitlisted = "waitlisted"
    day_closed = "day_closed"


class AbsenceRecord(Base, TimestampMixin):
    __tablename__ = "absence_records"
    __table_args__ = (
        CheckConstraint(
            "grace_period_ends_at >= marked_absent_at",
            name="ck_absence_records_grace_after_start",
        ),
        Index(
            "uq_absence_records_one_open",
            "appointment_id",
            unique=True,
            postgresql_where=text("resolution IS NULL"),
            sqlite_where=text("resolution IS NULL"),
        ),
        Index("ix_absence_records_clinic_marked", "clinic_id", "marked_absent_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id"), nullable=False)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False)
    marked_absent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    grace_period_ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    new_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolution: Mapped[AbsenceResolution | None] = mapped_column(
        Enum(AbsenceResolution, name="absence_resolution"), nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rebooked_appointment_id: Mapped[int | None] = mapped_column(
        ForeignKey("appointments.id"), nullable=True
    )

    appointment = relationship("Appointment", foreign_keys=[appointment_id], lazy="joined")

    @property
    def is_open(self) -> bool:
        return self.resolution is None
