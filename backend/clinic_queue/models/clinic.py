from __future__ import annotations

import enum

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_queue.models.base import Base, TimestampMixin


class LateArrivalPolicy(str, enum.Enum):
    priority_walk_in = "priority_walk_in"
    reschedule_only = "reschedule_only"


class Clinic(Base, TimestampMixin):
    __tablename__ = "clinics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(120), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)

    # Stored as written by clinic administration; may hold legacy mode names.
    queue_mode: Mapped[str] = mapped_column(String(32), default="fluid", nullable=False)
    grace_period_minutes: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    allow_overflow: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    daily_capacity_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    late_arrival_policy: Mapped[LateArrivalPolicy] = mapped_column(
        Enum(LateArrivalPolicy, name="late_arrival_policy"),
        default=LateArrivalPolicy.priority_walk_in,
        nullable=False,
    )
    auto_cancel_after_grace: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    day_modes = relationship(
        "ClinicDayMode", back_populates="clinic", cascade="all, delete-orphan", lazy="selectin"
    )
    staff = relationship("ClinicStaff", back_populates="clinic")


class ClinicDayMode(Base):
    __tablename__ = "clinic_day_modes"
    __table_args__ = (UniqueConstraint("clinic_id", "day_name", name="uq_clinic_day_modes_day"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False, index=True)
    day_name: Mapped[str] = mapped_column(String(16), nullable=False)
    mode: Mapped[str] = mapped_column(String(32), nullable=False)

    clinic = relationship("Clinic", back_populates="day_modes")


class ClinicStaff(Base, TimestampMixin):
    __tablename__ = "clinic_staff"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    clinic = relationship("Clinic", back_populates="staff")
