from clinic_queue.models.base import Base
from clinic_queue.models.clinic import Clinic, ClinicDayMode, ClinicStaff, LateArrivalPolicy
from clinic_queue.models.patient import (
    GuestPatient,
    GuestPatientRef,
    Patient,
    PatientRef,
    RegisteredPatientRef,
)
from clinic_queue.models.appointment import Appointment, AppointmentStatus, SkipReason
from clinic_queue.models.absence import AbsenceRecord, AbsenceResolution
from clinic_queue.models.waitlist import WaitlistEntry, WaitlistStatus
from clinic_queue.models.queue_override import QueueActionType, QueueOverride
from clinic_queue.models.day_closure import DayClosure
from clinic_queue.models.queue_lock import ClinicDayLock, QueueLock

__all__ = [
    "Base",
    "Clinic",
    "ClinicDayMode",
    "ClinicStaff",
    "LateArrivalPolicy",
    "Patient",
    "GuestPatient",
    "PatientRef",
    "RegisteredPatientRef",
    "GuestPatientRef",
    "Appointment",
    "AppointmentStatus",
    "SkipReason",
    "AbsenceRecord",
    "AbsenceResolution",
    "WaitlistEntry",
    "WaitlistStatus",
    "QueueActionType",
    "QueueOverride",
    "DayClosure",
    "QueueLock",
    "ClinicDayLock",
]
