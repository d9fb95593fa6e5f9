from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from clinic_queue.models.base import Base, TimestampMixin


class DayClosure(Base, TimestampMixin):
    __tablename__ = "day_closures"
    __table_args__ = (
        Index(
            "uq_day_closures_staff_date_open",
            "staff_id",
            "closure_date",
            unique=True,
            postgresql_where=text("reopened_at IS NULL"),
            sqlite_where=text("reopened_at IS NULL"),
        ),
        Index("ix_day_closures_clinic_date", "clinic_id", "closure_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False)
    staff_id: Mapped[int] = mapped_column(ForeignKey("clinic_staff.id"), nullable=False)
    closure_date: Mapped[date] = mapped_column(Date, nullable=False)
    performed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    total_appointments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    waiting_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    in_progress_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    absent_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    marked_no_show_ids: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    marked_completed_ids: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    closed_absence_ids: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    can_reopen: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    @property
    def is_reopened(self) -> bool:
        return self.reopened_at is not None
