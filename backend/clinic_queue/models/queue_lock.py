from __future__ import annotations

from datetime import date

from sqlalchemy import Date, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinic_queue.models.base import Base, TimestampMixin


class QueueLock(Base, TimestampMixin):
    __tablename__ = "queue_locks"
    __table_args__ = (UniqueConstraint("staff_id", "lock_date", name="uq_queue_locks_staff_date"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    staff_id: Mapped[int] = mapped_column(ForeignKey("clinic_staff.id"), nullable=False)
    lock_date: Mapped[date] = mapped_column(Date, nullable=False)


class ClinicDayLock(Base, TimestampMixin):
    """Serializes position rewrites across every staff queue of a clinic day."""

    __tablename__ = "clinic_day_locks"
    __table_args__ = (UniqueConstraint("clinic_id", "lock_date", name="uq_clinic_day_locks_clinic_date"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False)
    lock_date: Mapped[date] = mapped_column(Date, nullable=False)
