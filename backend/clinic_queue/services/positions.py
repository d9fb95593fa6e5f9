from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_queue.core.errors import InvariantViolation
from clinic_queue.models.appointment import Appointment
from clinic_queue.models.base import as_utc
from clinic_queue.services.locking import acquire_clinic_lock
from clinic_queue.services.queue_config import EffectiveQueueConfig, QueueMode

EMERGENCY_PRIORITY = 500
STANDARD_PRIORITY = 100
WALK_IN_PRIORITY = 50
PRIORITY_BOOST = 50

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def calculate_priority_score(*, is_walk_in: bool = False, is_emergency: bool = False) -> int:
    if is_emergency:
        return EMERGENCY_PRIORITY
    if is_walk_in:
        return WALK_IN_PRIORITY
    return STANDARD_PRIORITY


def load_day_entries(
    db: Session, clinic_id: int, target_date: date, *, fresh: bool = False
) -> list[Appointment]:
    db.flush()
    stmt = (
        select(Appointment)
        .where(Appointment.clinic_id == clinic_id, Appointment.appointment_date == target_date)
        .order_by(Appointment.id.asc())
    )
    if fresh:
        # Other staff rows may have been loaded before the clinic lock was held.
        stmt = stmt.execution_options(populate_existing=True)
    return list(db.scalars(stmt))


def _time_key(value: datetime | None) -> tuple[bool, datetime]:
    if value is None:
        return True, _EPOCH
    return False, as_utc(value)


def _fluid_key(appt: Appointment) -> tuple:
    return (
        -(appt.priority_score or 0),
        _time_key(appt.scheduled_start),
        _time_key(appt.created_at),
        appt.id,
    )


def _slotted_key(appt: Appointment) -> tuple:
    return (_time_key(appt.scheduled_start), _time_key(appt.created_at), appt.id)


def order_queue(entries: Iterable[Appointment], mode: QueueMode) -> list[Appointment]:
    """Queued entries in serving order for the given mode."""
    key = _fluid_key if mode == QueueMode.fluid else _slotted_key
    return sorted((appt for appt in entries if appt.is_queued), key=key)


def recalculate_positions(
    db: Session,
    clinic_id: int,
    target_date: date,
    config: EffectiveQueueConfig,
) -> list[Appointment]:
    """
    Assign dense 1..N positions to the queued entries of a clinic day.

    Absent, in-progress and terminal entries get a null position. Only rows
    whose position actually changes are written, so running this twice on an
    unchanged day is a no-op. Runs inside the caller's transaction and takes
    the (clinic, date) lock, since the rewrite reaches other staff queues.
    """
    acquire_clinic_lock(db, clinic_id, target_date)
    entries = load_day_entries(db, clinic_id, target_date, fresh=True)
    queued = order_queue(entries, config.mode)
    queued_ids = {appt.id for appt in queued}

    for index, appt in enumerate(queued, start=1):
        if appt.queue_position != index:
            appt.queue_position = index
    for appt in entries:
        if appt.id not in queued_ids and appt.queue_position is not None:
            appt.queue_position = None
    db.flush()

    _verify_positions(entries, queued_ids)
    return queued


def _verify_positions(entries: list[Appointment], queued_ids: set[int]) -> None:
    positions = sorted(appt.queue_position for appt in entries if appt.id in queued_ids)
    if positions != list(range(1, len(queued_ids) + 1)):
        raise InvariantViolation(f"Queue positions are not a dense sequence: {positions}")
    stray = [appt.id for appt in entries if appt.id not in queued_ids and appt.queue_position is not None]
    if stray:
        raise InvariantViolation(f"Entries outside the queue still hold positions: {stray}")
