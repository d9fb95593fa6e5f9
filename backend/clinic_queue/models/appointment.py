from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_queue.models.base import Base, TimestampMixin
from clinic_queue.models.patient import PatientRef, patient_columns, patient_ref_from_ids


class AppointmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    waiting = "waiting"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"
    rescheduled = "rescheduled"


TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.completed,
        AppointmentStatus.cancelled,
        AppointmentStatus.no_show,
        AppointmentStatus.rescheduled,
    }
)
QUEUED_STATUSES = frozenset({AppointmentStatus.scheduled, AppointmentStatus.waiting})


class SkipReason(str, enum.Enum):
    patient_absent = "patient_absent"
    patient_present = "patient_present"
    emergency_case = "emergency_case"
    doctor_preference = "doctor_preference"
    late_arrival = "late_arrival"
    technical_issue = "technical_issue"
    other = "other"


class Appointment(Base, TimestampMixin):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint(
            "(patient_id IS NULL) <> (guest_patient_id IS NULL)",
            name="ck_appointments_single_patient",
        ),
        Index(
            "uq_appointments_one_in_progress",
            "staff_id",
            "appointment_date",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("ix_appointments_clinic_date", "clinic_id", "appointment_date"),
        Index("ix_appointments_staff_date", "staff_id", "appointment_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False)
    staff_id: Mapped[int] = mapped_column(ForeignKey("clinic_staff.id"), nullable=False)
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("patients.id"), nullable=True)
    guest_patient_id: Mapped[int | None] = mapped_column(
        ForeignKey("guest_patients.id"), nullable=True
    )
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    appointment_type: Mapped[str | None] = mapped_column(String(120), nullable=True)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.scheduled,
        nullable=False,
    )

    is_present: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    marked_absent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    queue_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    original_queue_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    priority_score: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    skip_reason: Mapped[SkipReason | None] = mapped_column(
        Enum(SkipReason, name="skip_reason"), nullable=True
    )
    skip_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_walk_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_gap_filler: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    promoted_from_waitlist: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    late_arrival_converted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    override_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    clinic = relationship("Clinic", lazy="joined")
    staff = relationship("ClinicStaff", lazy="joined")
    patient = relationship("Patient", lazy="joined")
    guest_patient = relationship("GuestPatient", lazy="joined")

    @property
    def patient_ref(self) -> PatientRef:
        return patient_ref_from_ids(self.patient_id, self.guest_patient_id)

    @patient_ref.setter
    def patient_ref(self, ref: PatientRef) -> None:
        for key, value in patient_columns(ref).items():
            setattr(self, key, value)

    @property
    def is_guest(self) -> bool:
        return self.guest_patient_id is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_absent(self) -> bool:
        return self.skip_reason == SkipReason.patient_absent and not self.is_terminal

    @property
    def is_active(self) -> bool:
        return not self.is_terminal and not self.is_absent

    @property
    def is_queued(self) -> bool:
        return self.status in QUEUED_STATUSES and not self.is_absent
