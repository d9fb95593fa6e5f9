from __future__ import annotations

import enum
from datetime import date, time

from sqlalchemy import CheckConstraint, Date, Enum, ForeignKey, Index, Integer, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_queue.models.base import Base, TimestampMixin
from clinic_queue.models.patient import PatientRef, patient_columns, patient_ref_from_ids


class WaitlistStatus(str, enum.Enum):
    waiting = "waiting"
    notified = "notified"
    promoted = "promoted"
    expired = "expired"
    cancelled = "cancelled"


class WaitlistEntry(Base, TimestampMixin):
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        CheckConstraint(
            "(patient_id IS NULL) <> (guest_patient_id IS NULL)",
            name="ck_waitlist_entries_single_patient",
        ),
        Index("ix_waitlist_entries_clinic_date", "clinic_id", "requested_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False)
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("patients.id"), nullable=True)
    guest_patient_id: Mapped[int | None] = mapped_column(
        ForeignKey("guest_patients.id"), nullable=True
    )
    requested_date: Mapped[date] = mapped_column(Date, nullable=False)
    requested_time_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    requested_time_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    priority_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[WaitlistStatus] = mapped_column(
        Enum(WaitlistStatus, name="waitlist_status"),
        default=WaitlistStatus.waiting,
        nullable=False,
        index=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    promoted_appointment_id: Mapped[int | None] = mapped_column(
        ForeignKey("appointments.id"), nullable=True
    )

    patient = relationship("Patient", lazy="joined")
    guest_patient = relationship("GuestPatient", lazy="joined")

    @property
    def patient_ref(self) -> PatientRef:
        return patient_ref_from_ids(self.patient_id, self.guest_patient_id)

    @patient_ref.setter
    def patient_ref(self, ref: PatientRef) -> None:
        for key, value in patient_columns(ref).items():
            setattr(self, key, value)
