"""
Queue engine exceptions.

Every error raised by a queue operation derives from ``QueueEngineError``.
``retryable`` tells the caller whether the same call may simply be repeated
(lock contention) or must not be retried blindly (everything else).
"""

from __future__ import annotations

from datetime import date


class QueueEngineError(Exception):
    """Base exception for queue engine errors."""

    retryable = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(QueueEngineError):
    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidPatientReference(QueueEngineError):
    """Raised when zero or two patient references are supplied."""

    def __init__(self, patient_id: int | None, guest_patient_id: int | None) -> None:
        self.patient_id = patient_id
        self.guest_patient_id = guest_patient_id
        if patient_id is None and guest_patient_id is None:
            message = "A registered patient or a guest patient is required"
        else:
            message = "Only one of registered patient or guest patient may be set"
        super().__init__(message)


class InvalidStateError(QueueEngineError):
    """Raised when an entry is not in a state that allows the requested action."""


class AlreadyServingError(QueueEngineError):
    def __init__(self, staff_id: int, target_date: date, appointment_id: int) -> None:
        self.staff_id = staff_id
        self.target_date = target_date
        self.appointment_id = appointment_id
        super().__init__(
            f"Appointment {appointment_id} is already in progress for this staff member; "
            "complete it before calling the next patient"
        )


class NotPresentError(QueueEngineError):
    def __init__(self, appointment_id: int) -> None:
        self.appointment_id = appointment_id
        super().__init__("Patient not present - mark present or absent")


class QueueEmptyError(QueueEngineError):
    def __init__(self, staff_id: int | None, target_date: date, *, clinic_id: int | None = None) -> None:
        self.staff_id = staff_id
        self.clinic_id = clinic_id
        self.target_date = target_date
        super().__init__("No patients waiting in queue")


class AlreadyClosedError(QueueEngineError):
    def __init__(self, staff_id: int, target_date: date, closure_id: int) -> None:
        self.staff_id = staff_id
        self.target_date = target_date
        self.closure_id = closure_id
        super().__init__("Day already closed for this staff member; reopen it first")


class ReopenNotAllowedError(QueueEngineError):
    def __init__(self, closure_id: int, reason: str) -> None:
        self.closure_id = closure_id
        super().__init__(f"Closure {closure_id} cannot be reopened: {reason}")


class CapacityExceededError(QueueEngineError):
    def __init__(self, clinic_id: int, target_date: date, limit: int) -> None:
        self.clinic_id = clinic_id
        self.target_date = target_date
        self.limit = limit
        super().__init__(f"Daily capacity of {limit} reached and overflow is not allowed")


class LockContention(QueueEngineError):
    """Another operation holds the queue lock; safe to retry."""

    retryable = True

    def __init__(self, staff_id: int | None, target_date: date, *, clinic_id: int | None = None) -> None:
        self.staff_id = staff_id
        self.clinic_id = clinic_id
        self.target_date = target_date
        super().__init__("Queue is busy, try again")


class InvariantViolation(QueueEngineError):
    """A queue invariant does not hold; indicates a bug and needs operator attention."""
