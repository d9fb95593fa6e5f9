from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy.orm import Session

from clinic_queue.core.errors import (
    AlreadyServingError,
    InvalidStateError,
    NotPresentError,
    QueueEmptyError,
)
from clinic_queue.models.appointment import Appointment, AppointmentStatus, SkipReason
from clinic_queue.models.queue_override import QueueActionType
from clinic_queue.services.audit import log_override, snapshot_entry
from clinic_queue.services.entries import (
    appointment_transaction,
    current_in_progress,
    get_appointment,
    position_map,
    require_queued,
    resolve_now,
    touch,
)
from clinic_queue.services.locking import queue_transaction
from clinic_queue.services.notifications import (
    QueueEvent,
    QueueEventType,
    notifier,
    position_events,
)
from clinic_queue.services.positions import (
    EMERGENCY_PRIORITY,
    PRIORITY_BOOST,
    load_day_entries,
    recalculate_positions,
)
from clinic_queue.services.queue_config import resolve_mode
from clinic_queue.services.waitlist import promote_locked

logger = logging.getLogger("clinic_queue.queue")


def _called_event(appt: Appointment) -> QueueEvent:
    return QueueEvent(
        QueueEventType.patient_called,
        clinic_id=appt.clinic_id,
        target_date=appt.appointment_date,
        appointment_id=appt.id,
        staff_id=appt.staff_id,
    )


def _start_service(appt: Appointment, actor_id: str, now: datetime) -> None:
    appt.status = AppointmentStatus.in_progress
    appt.started_at = now
    if appt.checked_in_at is None:
        appt.checked_in_at = now
    touch(appt, actor_id, now)


def call_next(
    db: Session,
    clinic_id: int,
    staff_id: int,
    target_date: date,
    *,
    actor_id: str,
    now: datetime | None = None,
) -> Appointment:
    """
    Move the first queued entry for a staff member into service.

    Fails with ``AlreadyServingError`` while another entry is in progress for
    the same staff and date, ``QueueEmptyError`` when nobody is queued and
    ``NotPresentError`` when the first entry has not arrived. The last case
    changes nothing: the front desk decides whether to mark the patient
    present, mark them absent, or wait.
    """
    now = resolve_now(now)
    with queue_transaction(db, staff_id, target_date):
        config = resolve_mode(db, clinic_id, target_date)
        serving = current_in_progress(db, staff_id, target_date)
        if serving is not None:
            raise AlreadyServingError(staff_id, target_date, serving.id)

        before = position_map(load_day_entries(db, clinic_id, target_date))
        queued = recalculate_positions(db, clinic_id, target_date, config)
        candidates = [appt for appt in queued if appt.staff_id == staff_id]
        if not candidates:
            raise QueueEmptyError(staff_id, target_date)
        candidate = candidates[0]
        if not candidate.is_present:
            raise NotPresentError(candidate.id)

        previous = snapshot_entry(candidate)
        _start_service(candidate, actor_id, now)
        queued = recalculate_positions(db, clinic_id, target_date, config)
        log_override(
            db,
            clinic_id=clinic_id,
            action=QueueActionType.call_next,
            actor_id=actor_id,
            appointment_id=candidate.id,
            before=previous,
            after=snapshot_entry(candidate),
        )
        events = [_called_event(candidate)]
        events.extend(position_events(before, queued, clinic_id=clinic_id, target_date=target_date))

    logger.info("Called appointment %s for staff %s on %s", candidate.id, staff_id, target_date)
    notifier.emit(events)
    return candidate


def call_present(
    db: Session,
    appointment_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Serve a present patient ahead of absent or late ones queued before them."""
    now = resolve_now(now)
    with appointment_transaction(db, appointment_id) as appt:
        require_queued(appt)
        if not appt.is_present:
            raise NotPresentError(appt.id)
        serving = current_in_progress(db, appt.staff_id, appt.appointment_date)
        if serving is not None:
            raise AlreadyServingError(appt.staff_id, appt.appointment_date, serving.id)

        config = resolve_mode(db, appt.clinic_id, appt.appointment_date)
        before = position_map(load_day_entries(db, appt.clinic_id, appt.appointment_date))
        queued = recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)
        skipped: list[int] = []
        for other in queued:
            if other.id == appt.id:
                break
            if other.staff_id != appt.staff_id:
                continue
            other.skip_count = (other.skip_count or 0) + 1
            if other.skip_reason is None:
                other.skip_reason = SkipReason.patient_present
            touch(other, None, now)
            skipped.append(other.id)

        previous = snapshot_entry(appt)
        _start_service(appt, actor_id, now)
        queued = recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)
        log_override(
            db,
            clinic_id=appt.clinic_id,
            action=QueueActionType.call_present,
            actor_id=actor_id,
            appointment_id=appt.id,
            reason=reason,
            before=previous,
            after=snapshot_entry(appt),
            skipped_ids=skipped,
        )
        events = [_called_event(appt)]
        events.extend(
            position_events(before, queued, clinic_id=appt.clinic_id, target_date=appt.appointment_date)
        )

    logger.info("Called present appointment %s, skipping %s", appt.id, skipped)
    notifier.emit(events)
    return appt


def _set_presence(
    db: Session, appointment_id: int, present: bool, actor_id: str, now: datetime | None
) -> Appointment:
    now = resolve_now(now)
    with appointment_transaction(db, appointment_id) as appt:
        require_queued(appt)
        config = resolve_mode(db, appt.clinic_id, appt.appointment_date)
        previous = snapshot_entry(appt)
        appt.is_present = present
        if present and appt.checked_in_at is None:
            appt.checked_in_at = now
        touch(appt, actor_id, now)
        recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)
        log_override(
            db,
            clinic_id=appt.clinic_id,
            action=QueueActionType.presence_change,
            actor_id=actor_id,
            appointment_id=appt.id,
            before=previous,
            after=snapshot_entry(appt),
        )
        event = QueueEvent(
            QueueEventType.presence_changed,
            clinic_id=appt.clinic_id,
            target_date=appt.appointment_date,
            appointment_id=appt.id,
            staff_id=appt.staff_id,
            queue_position=appt.queue_position,
            payload={"is_present": present},
        )

    notifier.emit([event])
    return appt


def mark_present(
    db: Session, appointment_id: int, *, actor_id: str, now: datetime | None = None
) -> Appointment:
    return _set_presence(db, appointment_id, True, actor_id, now)


def mark_not_present(
    db: Session, appointment_id: int, *, actor_id: str, now: datetime | None = None
) -> Appointment:
    return _set_presence(db, appointment_id, False, actor_id, now)


def check_in(
    db: Session, appointment_id: int, *, actor_id: str, now: datetime | None = None
) -> Appointment:
    """Patient arrived: scheduled becomes waiting and present."""
    now = resolve_now(now)
    with appointment_transaction(db, appointment_id) as appt:
        require_queued(appt)
        if appt.status == AppointmentStatus.waiting and appt.is_present:
            raise InvalidStateError(f"Appointment {appt.id} is already checked in")
        config = resolve_mode(db, appt.clinic_id, appt.appointment_date)
        previous = snapshot_entry(appt)
        appt.status = AppointmentStatus.waiting
        appt.is_present = True
        appt.checked_in_at = now
        touch(appt, actor_id, now)
        recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)
        log_override(
            db,
            clinic_id=appt.clinic_id,
            action=QueueActionType.check_in,
            actor_id=actor_id,
            appointment_id=appt.id,
            before=previous,
            after=snapshot_entry(appt),
        )

    logger.info("Checked in appointment %s", appt.id)
    notifier.emit(
        [
            QueueEvent(
                QueueEventType.presence_changed,
                clinic_id=appt.clinic_id,
                target_date=appt.appointment_date,
                appointment_id=appt.id,
                staff_id=appt.staff_id,
                queue_position=appt.queue_position,
                payload={"is_present": True},
            )
        ]
    )
    return appt


def complete_appointment(
    db: Session, appointment_id: int, *, actor_id: str, now: datetime | None = None
) -> Appointment:
    now = resolve_now(now)
    with appointment_transaction(db, appointment_id) as appt:
        if appt.status != AppointmentStatus.in_progress:
            raise InvalidStateError(f"Appointment {appt.id} is not in progress")
        previous = snapshot_entry(appt)
        appt.status = AppointmentStatus.completed
        appt.ended_at = now
        touch(appt, actor_id, now)
        log_override(
            db,
            clinic_id=appt.clinic_id,
            action=QueueActionType.complete,
            actor_id=actor_id,
            appointment_id=appt.id,
            before=previous,
            after=snapshot_entry(appt),
        )

    logger.info("Completed appointment %s", appt.id)
    return appt


def cancel_appointment(
    db: Session,
    appointment_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Cancel an entry and offer its slot to the waitlist."""
    now = resolve_now(now)
    events: list[QueueEvent] = []
    with appointment_transaction(db, appointment_id) as appt:
        if appt.is_terminal:
            raise InvalidStateError(f"Appointment {appt.id} is already {appt.status.value}")
        if appt.is_absent:
            raise InvalidStateError(f"Appointment {appt.id} is marked absent; resolve the absence first")
        config = resolve_mode(db, appt.clinic_id, appt.appointment_date)
        before = position_map(load_day_entries(db, appt.clinic_id, appt.appointment_date))
        previous = snapshot_entry(appt)
        appt.status = AppointmentStatus.cancelled
        appt.is_present = False
        touch(appt, actor_id, now)
        queued = recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)
        log_override(
            db,
            clinic_id=appt.clinic_id,
            action=QueueActionType.cancel,
            actor_id=actor_id,
            appointment_id=appt.id,
            reason=reason,
            before=previous,
            after=snapshot_entry(appt),
        )
        events.extend(
            position_events(before, queued, clinic_id=appt.clinic_id, target_date=appt.appointment_date)
        )
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

    logger.info("Cancelled appointment %s", appt.id)
    notifier.emit(events)
    return appt


def swap_entries(
    db: Session,
    first_id: int,
    second_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> tuple[Appointment, Appointment]:
    """Swap two queued entries by exchanging priority and scheduled times."""
    if first_id == second_id:
        raise InvalidStateError("Cannot swap an appointment with itself")
    now = resolve_now(now)
    second = get_appointment(db, second_id)
    with appointment_transaction(db, first_id) as first:
        db.refresh(second)
        if (first.clinic_id, first.staff_id, first.appointment_date) != (
            second.clinic_id,
            second.staff_id,
            second.appointment_date,
        ):
            raise InvalidStateError("Only entries in the same staff queue on the same day can be swapped")
        require_queued(first)
        require_queued(second)
        config = resolve_mode(db, first.clinic_id, first.appointment_date)
        before = position_map(load_day_entries(db, first.clinic_id, first.appointment_date))
        previous = {first.id: snapshot_entry(first), second.id: snapshot_entry(second)}

        first.priority_score, second.priority_score = second.priority_score, first.priority_score
        first.scheduled_start, second.scheduled_start = second.scheduled_start, first.scheduled_start
        first.scheduled_end, second.scheduled_end = second.scheduled_end, first.scheduled_end
        touch(first, actor_id, now)
        touch(second, actor_id, now)
        queued = recalculate_positions(db, first.clinic_id, first.appointment_date, config)

        for appt, other in ((first, second), (second, first)):
            log_override(
                db,
                clinic_id=appt.clinic_id,
                action=QueueActionType.swap,
                actor_id=actor_id,
                appointment_id=appt.id,
                reason=reason or f"Swapped with appointment {other.id}",
                before=previous[appt.id],
                after=snapshot_entry(appt),
                affected_ids=[first.id, second.id],
            )
        events = position_events(before, queued, clinic_id=first.clinic_id, target_date=first.appointment_date)

    logger.info("Swapped appointments %s and %s", first.id, second.id)
    notifier.emit(events)
    return first, second


def _reprioritize(
    db: Session,
    appointment_id: int,
    *,
    action: QueueActionType,
    actor_id: str,
    reason: str | None,
    now: datetime | None,
    emergency: bool,
) -> Appointment:
    now = resolve_now(now)
    with appointment_transaction(db, appointment_id) as appt:
        require_queued(appt)
        config = resolve_mode(db, appt.clinic_id, appt.appointment_date)
        before = position_map(load_day_entries(db, appt.clinic_id, appt.appointment_date))
        previous = snapshot_entry(appt)
        if emergency:
            appt.priority_score = EMERGENCY_PRIORITY
            appt.skip_reason = SkipReason.emergency_case
        else:
            appt.priority_score = (appt.priority_score or 0) + PRIORITY_BOOST
        touch(appt, actor_id, now)
        queued = recalculate_positions(db, appt.clinic_id, appt.appointment_date, config)
        log_override(
            db,
            clinic_id=appt.clinic_id,
            action=action,
            actor_id=actor_id,
            appointment_id=appt.id,
            reason=reason,
            before=previous,
            after=snapshot_entry(appt),
        )
        events = position_events(before, queued, clinic_id=appt.clinic_id, target_date=appt.appointment_date)

    logger.info(
        "Appointment %s priority now %s (%s)", appt.id, appt.priority_score, action.value
    )
    notifier.emit(events)
    return appt


def boost_priority(
    db: Session,
    appointment_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    return _reprioritize(
        db,
        appointment_id,
        action=QueueActionType.priority_boost,
        actor_id=actor_id,
        reason=reason,
        now=now,
        emergency=False,
    )


def mark_emergency(
    db: Session,
    appointment_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    return _reprioritize(
        db,
        appointment_id,
        action=QueueActionType.emergency,
        actor_id=actor_id,
        reason=reason,
        now=now,
        emergency=True,
    )


def recalculate_queue(db: Session, clinic_id: int, staff_id: int, target_date: date) -> list[Appointment]:
    """Standalone recompute under the queue lock, for repair and admin use."""
    with queue_transaction(db, staff_id, target_date):
        config = resolve_mode(db, clinic_id, target_date)
        queued = recalculate_positions(db, clinic_id, target_date, config)
    return queued
