from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_queue.core.errors import InvalidStateError
from clinic_queue.models.absence import AbsenceRecord, AbsenceResolution
from clinic_queue.models.appointment import Appointment, AppointmentStatus, SkipReason
from clinic_queue.models.base import as_utc
from clinic_queue.models.clinic import LateArrivalPolicy
from clinic_queue.models.queue_override import QueueActionType
from clinic_queue.models.waitlist import WaitlistEntry, WaitlistStatus
from clinic_queue.services.audit import log_override, snapshot_entry
from clinic_queue.services.entries import (
    appointment_transaction,
    open_absence,
    position_map,
    require_queued,
    resolve_now,
    touch,
)
from clinic_queue.services.locking import acquire_queue_lock, queue_transaction
from clinic_queue.services.notifications import (
    QueueEvent,
    QueueEventType,
    notifier,
    position_events,
)
from clinic_queue.services.positions import (
    WALK_IN_PRIORITY,
    load_day_entries,
    recalculate_positions,
)
from clinic_queue.services.queue_config import EffectiveQueueConfig, resolve_mode
from clinic_queue.services.waitlist import book_appointment, promote_locked

logger = logging.getLogger("clinic_queue.absence")

MANUAL_RESOLUTIONS = frozenset(
    {AbsenceResolution.returned, AbsenceResolution.rebooked, AbsenceResolution.waitlisted}
)


@dataclass
class AbsenceOutcome:
    appointment: Appointment
    record: AbsenceRecord
    rebooked_appointment: Appointment | None = None
    waitlist_entry: WaitlistEntry | None = None

    @property
    def expired(self) -> bool:
        return self.record.resolution == AbsenceResolution.expired


def _event(event_type: QueueEventType, appt: Appointment, **payload) -> QueueEvent:
    return QueueEvent(
        event_type,
        clinic_id=appt.clinic_id,
        target_date=appt.appointment_date,
        appointment_id=appt.id,
        staff_id=appt.staff_id,
        queue_position=appt.queue_position,
        payload=payload,
    )


def mark_absent(
    db: Session,
    appointment_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> AbsenceRecord:
    """
    Take a queued entry out of the active set and start its grace period.

    The current position is kept in ``original_queue_position`` and the
    absence record expires ``grace_period_minutes`` after ``now``.
    """
    now = resolve_now(now)
    with appointment_transaction(db, appointment_id) as appt:
        require_queued(appt)
        config = resolve_mode(db, appt.clinic_id, appt.appointment_date)
        before = position_map(load_day_entries(db, appt.clinic_id, appt.appointment_date))
        previous = snapshot_entry(appt)

        appt.original_queue_position = appt.queue_position
        appt.queue_position = None
        appt.skip_reason = SkipReason.patient_absent
        appt.is_present = False
        appt.marked_absent_at = now
        appt.returned_at = None
        appt.skip_count = (appt.skip_count or 0) + 1
        touch(appt, actor_id, now)

        record = AbsenceRecord(
            appointment_id=appt.id,
            clinic_id=appt.clinic_id,
            marked_absent_at=now,
            grace_period_ends_at=now + timedelta(minutes=config.grace_period_minutes),
            auto_cancelled=False,
            created_at=now,
            updated_at=now,
        )
        db.add(record)
        queued = recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)
        log_override(
            db,
            clinic_id=appt.clinic_id,
            action=QueueActionType.mark_absent,
            actor_id=actor_id,
            appointment_id=appt.id,
            reason=reason,
            before=previous,
            after=snapshot_entry(appt),
        )
        events = [_event(QueueEventType.marked_absent, appt, grace_minutes=config.grace_period_minutes)]
        events.extend(
            position_events(before, queued, clinic_id=appt.clinic_id, target_date=appt.appointment_date)
        )

    logger.info(
        "Appointment %s marked absent, grace period ends %s",
        appt.id,
        record.grace_period_ends_at,
    )
    notifier.emit(events)
    return record


def _close_record(
    record: AbsenceRecord, resolution: AbsenceResolution, now: datetime
) -> None:
    record.resolution = resolution
    record.resolved_at = now
    record.updated_at = now


def _expire_locked(
    db: Session,
    appt: Appointment,
    record: AbsenceRecord,
    config: EffectiveQueueConfig,
    *,
    actor_id: str,
    now: datetime,
    events: list[QueueEvent],
) -> None:
    previous = snapshot_entry(appt)
    _close_record(record, AbsenceResolution.expired, now)
    record.auto_cancelled = True
    appt.status = AppointmentStatus.no_show
    appt.is_present = False
    touch(appt, actor_id, now)
    recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)
    log_override(
        db,
        clinic_id=appt.clinic_id,
        action=QueueActionType.absence_expired,
        actor_id=actor_id,
        appointment_id=appt.id,
        reason="Grace period elapsed",
        before=previous,
        after=snapshot_entry(appt),
    )
    events.append(_event(QueueEventType.absence_expired, appt))
    promote_locked(
        db,
        appt.clinic_id,
        appt.staff_id,
        appt.appointment_date,
        config,
        actor_id=actor_id,
        now=now,
        events=events,
        freed_slot=(appt.scheduled_start, appt.scheduled_end),
    )


def _readmit_locked(
    db: Session,
    appt: Appointment,
    record: AbsenceRecord,
    config: EffectiveQueueConfig,
    *,
    actor_id: str,
    reason: str | None,
    now: datetime,
    events: list[QueueEvent],
) -> None:
    before = position_map(load_day_entries(db, appt.clinic_id, appt.appointment_date))
    previous = snapshot_entry(appt)
    appt.status = AppointmentStatus.waiting
    appt.is_present = True
    appt.returned_at = now
    appt.skip_reason = SkipReason.late_arrival
    appt.priority_score = WALK_IN_PRIORITY
    appt.late_arrival_converted = True
    touch(appt, actor_id, now)
    queued = recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)

    _close_record(record, AbsenceResolution.returned, now)
    record.returned_at = now
    record.new_position = appt.queue_position
    log_override(
        db,
        clinic_id=appt.clinic_id,
        action=QueueActionType.late_arrival,
        actor_id=actor_id,
        appointment_id=appt.id,
        reason=reason,
        before=previous,
        after=snapshot_entry(appt),
    )
    events.append(_event(QueueEventType.returned, appt))
    events.extend(
        position_events(before, queued, clinic_id=appt.clinic_id, target_date=appt.appointment_date)
    )


def _rebook_locked(
    db: Session,
    appt: Appointment,
    record: AbsenceRecord,
    config: EffectiveQueueConfig,
    *,
    actor_id: str,
    reason: str | None,
    now: datetime,
    rebook_date: date | None,
    scheduled_start: datetime | None,
    scheduled_end: datetime | None,
    returned: bool,
) -> Appointment:
    target_date = rebook_date or appt.appointment_date
    if target_date != appt.appointment_date:
        acquire_queue_lock(db, appt.staff_id, target_date)

    previous = snapshot_entry(appt)
    appt.status = AppointmentStatus.rescheduled
    touch(appt, actor_id, now)
    new_appt = book_appointment(
        db,
        clinic_id=appt.clinic_id,
        staff_id=appt.staff_id,
        target_date=target_date,
        patient=appt.patient_ref,
        now=now,
        actor_id=actor_id,
        scheduled_start=scheduled_start,
        scheduled_end=scheduled_end,
        appointment_type=appt.appointment_type,
    )
    recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)
    if target_date != appt.appointment_date:
        recalculate_positions(db, appt.clinic_id, target_date, resolve_mode(db, appt.clinic_id, target_date))

    _close_record(record, AbsenceResolution.rebooked, now)
    record.rebooked_appointment_id = new_appt.id
    if returned:
        record.returned_at = now
    log_override(
        db,
        clinic_id=appt.clinic_id,
        action=QueueActionType.absence_resolved,
        actor_id=actor_id,
        appointment_id=appt.id,
        reason=reason or f"Rebooked as appointment {new_appt.id}",
        before=previous,
        after=snapshot_entry(appt),
        affected_ids=[appt.id, new_appt.id],
    )
    return new_appt


def _waitlist_locked(
    db: Session,
    appt: Appointment,
    record: AbsenceRecord,
    config: EffectiveQueueConfig,
    *,
    actor_id: str,
    reason: str | None,
    now: datetime,
    requested_date: date | None,
    waitlist_priority: int,
) -> WaitlistEntry:
    previous = snapshot_entry(appt)
    appt.status = AppointmentStatus.cancelled
    touch(appt, actor_id, now)
    entry = WaitlistEntry(
        clinic_id=appt.clinic_id,
        requested_date=requested_date or appt.appointment_date,
        priority_score=waitlist_priority,
        status=WaitlistStatus.waiting,
        notes=reason,
        created_at=now,
        updated_at=now,
    )
    entry.patient_ref = appt.patient_ref
    db.add(entry)
    recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)

    _close_record(record, AbsenceResolution.waitlisted, now)
    log_override(
        db,
        clinic_id=appt.clinic_id,
        action=QueueActionType.absence_resolved,
        actor_id=actor_id,
        appointment_id=appt.id,
        reason=reason or "Moved to waitlist",
        before=previous,
        after=snapshot_entry(appt),
    )
    return entry


def resolve_absence(
    db: Session,
    appointment_id: int,
    *,
    actor_id: str,
    resolution: AbsenceResolution = AbsenceResolution.returned,
    reason: str | None = None,
    rebook_date: date | None = None,
    scheduled_start: datetime | None = None,
    scheduled_end: datetime | None = None,
    waitlist_priority: int = 0,
    now: datetime | None = None,
) -> AbsenceOutcome:
    """
    Close an open absence episode.

    ``returned`` re-admits the patient under the clinic's late-arrival policy.
    A return after the grace period on a clinic that auto-cancels is not an
    error: the episode expires, the appointment becomes ``no_show`` and the
    outcome says so. ``rebooked`` and ``waitlisted`` are staff decisions and
    apply regardless of the grace period.
    """
    if resolution not in MANUAL_RESOLUTIONS:
        raise InvalidStateError(f"Absence cannot be resolved manually as {resolution.value}")
    now = resolve_now(now)
    events: list[QueueEvent] = []
    with appointment_transaction(db, appointment_id) as appt:
        record = open_absence(db, appt.id)
        if record is None or not appt.is_absent:
            raise InvalidStateError(f"Appointment {appt.id} has no open absence")
        config = resolve_mode(db, appt.clinic_id, appt.appointment_date)
        outcome = AbsenceOutcome(appointment=appt, record=record)

        if resolution == AbsenceResolution.returned:
            grace_over = now > as_utc(record.grace_period_ends_at)
            if grace_over and config.auto_cancel_after_grace:
                _expire_locked(db, appt, record, config, actor_id=actor_id, now=now, events=events)
            elif config.late_arrival_policy == LateArrivalPolicy.reschedule_only:
                outcome.rebooked_appointment = _rebook_locked(
                    db,
                    appt,
                    record,
                    config,
                    actor_id=actor_id,
                    reason=reason,
                    now=now,
                    rebook_date=rebook_date,
                    scheduled_start=scheduled_start,
                    scheduled_end=scheduled_end,
                    returned=True,
                )
            else:
                _readmit_locked(
                    db, appt, record, config, actor_id=actor_id, reason=reason, now=now, events=events
                )
        elif resolution == AbsenceResolution.rebooked:
            outcome.rebooked_appointment = _rebook_locked(
                db,
                appt,
                record,
                config,
                actor_id=actor_id,
                reason=reason,
                now=now,
                rebook_date=rebook_date,
                scheduled_start=scheduled_start,
                scheduled_end=scheduled_end,
                returned=False,
            )
        else:
            outcome.waitlist_entry = _waitlist_locked(
                db,
                appt,
                record,
                config,
                actor_id=actor_id,
                reason=reason,
                now=now,
                requested_date=rebook_date,
                waitlist_priority=waitlist_priority,
            )

    logger.info(
        "Absence %s for appointment %s resolved as %s",
        record.id,
        appt.id,
        record.resolution.value,
    )
    notifier.emit(events)
    return outcome


def expire_absences(
    db: Session,
    clinic_id: int,
    staff_id: int,
    target_date: date,
    *,
    actor_id: str,
    now: datetime | None = None,
) -> list[AbsenceRecord]:
    """Expire every open absence for the staff queue whose grace period has passed."""
    now = resolve_now(now)
    events: list[QueueEvent] = []
    expired: list[AbsenceRecord] = []
    with queue_transaction(db, staff_id, target_date):
        config = resolve_mode(db, clinic_id, target_date)
        if not config.auto_cancel_after_grace:
            return expired
        stmt = (
            select(AbsenceRecord)
            .join(Appointment, AbsenceRecord.appointment_id == Appointment.id)
            .where(
                AbsenceRecord.clinic_id == clinic_id,
                AbsenceRecord.resolution.is_(None),
                Appointment.staff_id == staff_id,
                Appointment.appointment_date == target_date,
            )
            .order_by(AbsenceRecord.grace_period_ends_at.asc(), AbsenceRecord.id.asc())
        )
        for record in list(db.scalars(stmt)):
            if as_utc(record.grace_period_ends_at) >= now:
                continue
            _expire_locked(
                db, record.appointment, record, config, actor_id=actor_id, now=now, events=events
            )
            expired.append(record)

    if expired:
        logger.info(
            "Expired %s absences for staff %s on %s", len(expired), staff_id, target_date
        )
    notifier.emit(events)
    return expired


def list_open_absences(db: Session, clinic_id: int, target_date: date | None = None) -> list[AbsenceRecord]:
    stmt = select(AbsenceRecord).where(
        AbsenceRecord.clinic_id == clinic_id, AbsenceRecord.resolution.is_(None)
    )
    if target_date is not None:
        stmt = stmt.join(Appointment, AbsenceRecord.appointment_id == Appointment.id).where(
            Appointment.appointment_date == target_date
        )
    stmt = stmt.order_by(AbsenceRecord.grace_period_ends_at.asc(), AbsenceRecord.id.asc())
    return list(db.scalars(stmt))
