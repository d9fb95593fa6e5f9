from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from clinic_queue.core.errors import InvalidPatientReference
from clinic_queue.models.base import Base, TimestampMixin


class Patient(Base, TimestampMixin):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)


class GuestPatient(Base, TimestampMixin):
    __tablename__ = "guest_patients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(40), nullable=True)


@dataclass(frozen=True)
class RegisteredPatientRef:
    patient_id: int


@dataclass(frozen=True)
class GuestPatientRef:
    guest_patient_id: int


PatientRef = Union[RegisteredPatientRef, GuestPatientRef]


def patient_ref_from_ids(patient_id: int | None, guest_patient_id: int | None) -> PatientRef:
    if (patient_id is None) == (guest_patient_id is None):
        raise InvalidPatientReference(patient_id, guest_patient_id)
    if patient_id is not None:
        return RegisteredPatientRef(patient_id)
    return GuestPatientRef(guest_patient_id)


def patient_columns(ref: PatientRef) -> dict[str, int | None]:
    """Column values for a model that stores the reference as two nullable keys."""
    if isinstance(ref, RegisteredPatientRef):
        return {"patient_id": ref.patient_id, "guest_patient_id": None}
    if isinstance(ref, GuestPatientRef):
        return {"patient_id": None, "guest_patient_id": ref.guest_patient_id}
    raise InvalidPatientReference(None, None)
