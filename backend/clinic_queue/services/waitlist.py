from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from clinic_queue.core.errors import CapacityExceededError, InvalidStateError, NotFoundError
from clinic_queue.models.appointment import (
    TERMINAL_STATUSES,
    Appointment,
    AppointmentStatus,
    SkipReason,
)
from clinic_queue.models.base import as_utc
from clinic_queue.models.patient import PatientRef
from clinic_queue.models.queue_override import QueueActionType
from clinic_queue.models.waitlist import WaitlistEntry, WaitlistStatus
from clinic_queue.services.audit import log_override, snapshot_entry
from clinic_queue.services.entries import (
    position_map,
    require_open_day,
    require_patient,
    resolve_now,
)
from clinic_queue.services.locking import queue_transaction
from clinic_queue.services.notifications import (
    QueueEvent,
    QueueEventType,
    notifier,
    position_events,
)
from clinic_queue.services.positions import (
    STANDARD_PRIORITY,
    calculate_priority_score,
    load_day_entries,
    recalculate_positions,
)
from clinic_queue.services.queue_config import EffectiveQueueConfig, resolve_mode
from clinic_queue.services.roster import require_active_staff

logger = logging.getLogger("clinic_queue.waitlist")

FreedSlot = tuple[datetime | None, datetime | None]


@dataclass
class SlotRequestResult:
    appointment: Appointment | None = None
    waitlist_entry: WaitlistEntry | None = None

    @property
    def waitlisted(self) -> bool:
        return self.waitlist_entry is not None


@dataclass
class WaitlistPromotion:
    appointment: Appointment
    entry: WaitlistEntry


def active_count(db: Session, clinic_id: int, target_date: date) -> int:
    """Entries that occupy capacity: not terminal and not absent."""
    db.flush()
    stmt = select(func.count(Appointment.id)).where(
        Appointment.clinic_id == clinic_id,
        Appointment.appointment_date == target_date,
        Appointment.status.not_in(list(TERMINAL_STATUSES)),
        or_(
            Appointment.skip_reason.is_(None),
            Appointment.skip_reason != SkipReason.patient_absent,
        ),
    )
    return db.scalar(stmt) or 0


def has_capacity(db: Session, clinic_id: int, target_date: date, config: EffectiveQueueConfig) -> bool:
    if config.daily_capacity_limit is None:
        return True
    return active_count(db, clinic_id, target_date) < config.daily_capacity_limit


def _combine(target_date: date, value: time | None) -> datetime | None:
    if value is None:
        return None
    return datetime.combine(target_date, value, tzinfo=timezone.utc)


def book_appointment(
    db: Session,
    *,
    clinic_id: int,
    staff_id: int,
    target_date: date,
    patient: PatientRef,
    now: datetime,
    actor_id: str | None,
    scheduled_start: datetime | None = None,
    scheduled_end: datetime | None = None,
    appointment_type: str | None = None,
    is_walk_in: bool = False,
    is_emergency: bool = False,
    priority_score: int | None = None,
) -> Appointment:
    """Add a new entry to the day. Caller holds the queue lock and recomputes positions."""
    appt = Appointment(
        clinic_id=clinic_id,
        staff_id=staff_id,
        appointment_date=target_date,
        scheduled_start=scheduled_start,
        scheduled_end=scheduled_end,
        appointment_type=appointment_type,
        status=AppointmentStatus.scheduled,
        priority_score=(
            priority_score
            if priority_score is not None
            else calculate_priority_score(is_walk_in=is_walk_in, is_emergency=is_emergency)
        ),
        skip_reason=SkipReason.emergency_case if is_emergency else None,
        skip_count=0,
        is_present=False,
        is_walk_in=is_walk_in,
        override_by=str(actor_id) if actor_id is not None else None,
        created_at=now,
        updated_at=now,
    )
    appt.patient_ref = patient
    if is_walk_in or is_emergency:
        # Walk-ins and emergencies are in the building when they are added.
        appt.status = AppointmentStatus.waiting
        appt.is_present = True
        appt.checked_in_at = now
    db.add(appt)
    db.flush()
    return appt


def request_slot(
    db: Session,
    clinic_id: int,
    staff_id: int,
    target_date: date,
    patient: PatientRef,
    *,
    actor_id: str,
    scheduled_start: datetime | None = None,
    scheduled_end: datetime | None = None,
    appointment_type: str | None = None,
    is_walk_in: bool = False,
    is_emergency: bool = False,
    requested_time_start: time | None = None,
    requested_time_end: time | None = None,
    waitlist_priority: int = 0,
    notes: str | None = None,
    now: datetime | None = None,
) -> SlotRequestResult:
    """
    Book an entry for the day, or waitlist it when the clinic is full.

    Capacity is the number of active entries for the clinic on that date.
    With no limit configured every request is booked. At the limit the
    request goes to the waitlist when overflow is allowed and is refused
    with ``CapacityExceededError`` otherwise.
    """
    now = resolve_now(now)
    events: list[QueueEvent] = []
    with queue_transaction(db, staff_id, target_date):
        config = resolve_mode(db, clinic_id, target_date)
        require_active_staff(db, clinic_id, staff_id)
        require_patient(db, patient)
        require_open_day(db, staff_id, target_date)

        if not has_capacity(db, clinic_id, target_date, config):
            if not config.allow_overflow:
                raise CapacityExceededError(clinic_id, target_date, config.daily_capacity_limit)
            entry = WaitlistEntry(
                clinic_id=clinic_id,
                requested_date=target_date,
                requested_time_start=requested_time_start,
                requested_time_end=requested_time_end,
                priority_score=waitlist_priority,
                status=WaitlistStatus.waiting,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            entry.patient_ref = patient
            db.add(entry)
            db.flush()
            events.append(
                QueueEvent(
                    QueueEventType.waitlisted,
                    clinic_id=clinic_id,
                    target_date=target_date,
                    staff_id=staff_id,
                    payload={"waitlist_entry_id": entry.id},
                )
            )
            result = SlotRequestResult(waitlist_entry=entry)
        else:
            before = position_map(load_day_entries(db, clinic_id, target_date))
            appt = book_appointment(
                db,
                clinic_id=clinic_id,
                staff_id=staff_id,
                target_date=target_date,
                patient=patient,
                now=now,
                actor_id=actor_id,
                scheduled_start=scheduled_start,
                scheduled_end=scheduled_end,
                appointment_type=appointment_type,
                is_walk_in=is_walk_in,
                is_emergency=is_emergency,
            )
            queued = recalculate_positions(db, clinic_id, target_date, config)
            log_override(
                db,
                clinic_id=clinic_id,
                action=QueueActionType.book,
                actor_id=actor_id,
                appointment_id=appt.id,
                after=snapshot_entry(appt),
            )
            events.extend(position_events(before, queued, clinic_id=clinic_id, target_date=target_date))
            result = SlotRequestResult(appointment=appt)

    if result.waitlisted:
        logger.info(
            "Clinic %s full on %s, waitlisted request as entry %s",
            clinic_id,
            target_date,
            result.waitlist_entry.id,
        )
    else:
        logger.info("Booked appointment %s for staff %s on %s", result.appointment.id, staff_id, target_date)
    notifier.emit(events)
    return result


def force_add(
    db: Session,
    clinic_id: int,
    staff_id: int,
    target_date: date,
    patient: PatientRef,
    *,
    actor_id: str,
    reason: str | None = None,
    is_emergency: bool = False,
    appointment_type: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Front-desk add of a present patient, ignoring the capacity limit."""
    now = resolve_now(now)
    with queue_transaction(db, staff_id, target_date):
        config = resolve_mode(db, clinic_id, target_date)
        require_active_staff(db, clinic_id, staff_id)
        require_patient(db, patient)
        require_open_day(db, staff_id, target_date)

        before = position_map(load_day_entries(db, clinic_id, target_date))
        appt = book_appointment(
            db,
            clinic_id=clinic_id,
            staff_id=staff_id,
            target_date=target_date,
            patient=patient,
            now=now,
            actor_id=actor_id,
            appointment_type=appointment_type,
            is_walk_in=True,
            is_emergency=is_emergency,
        )
        queued = recalculate_positions(db, clinic_id, target_date, config)
        log_override(
            db,
            clinic_id=clinic_id,
            action=QueueActionType.force_add,
            actor_id=actor_id,
            appointment_id=appt.id,
            reason=reason,
            after=snapshot_entry(appt),
        )
        events = position_events(before, queued, clinic_id=clinic_id, target_date=target_date)

    logger.info("Force-added appointment %s at position %s", appt.id, appt.queue_position)
    notifier.emit(events)
    return appt


def _next_waiting_entry(db: Session, clinic_id: int, target_date: date) -> WaitlistEntry | None:
    db.flush()
    stmt = (
        select(WaitlistEntry)
        .where(
            WaitlistEntry.clinic_id == clinic_id,
            WaitlistEntry.requested_date == target_date,
            WaitlistEntry.status == WaitlistStatus.waiting,
        )
        .order_by(
            WaitlistEntry.priority_score.desc(),
            WaitlistEntry.created_at.asc(),
            WaitlistEntry.id.asc(),
        )
    )
    return db.scalars(stmt).first()


def _is_gap_filler(appt: Appointment, queued: list[Appointment]) -> bool:
    if appt.queue_position is None:
        return False
    created = as_utc(appt.created_at)
    return any(
        other.id != appt.id
        and as_utc(other.created_at) < created
        and other.queue_position is not None
        and other.queue_position > appt.queue_position
        for other in queued
    )


def promote_locked(
    db: Session,
    clinic_id: int,
    staff_id: int,
    target_date: date,
    config: EffectiveQueueConfig,
    *,
    actor_id: str,
    now: datetime,
    events: list[QueueEvent],
    freed_slot: FreedSlot | None = None,
) -> WaitlistPromotion | None:
    """Promote the best waiting entry. Caller holds the lock; no commit here."""
    if not has_capacity(db, clinic_id, target_date, config):
        return None
    entry = _next_waiting_entry(db, clinic_id, target_date)
    if entry is None:
        return None

    if freed_slot is not None:
        start, end = freed_slot
    else:
        start = _combine(target_date, entry.requested_time_start)
        end = _combine(target_date, entry.requested_time_end)

    before = position_map(load_day_entries(db, clinic_id, target_date))
    appt = book_appointment(
        db,
        clinic_id=clinic_id,
        staff_id=staff_id,
        target_date=target_date,
        patient=entry.patient_ref,
        now=now,
        actor_id=actor_id,
        scheduled_start=start,
        scheduled_end=end,
        priority_score=STANDARD_PRIORITY + (entry.priority_score or 0),
    )
    appt.promoted_from_waitlist = True
    queued = recalculate_positions(db, clinic_id, target_date, config)
    appt.is_gap_filler = _is_gap_filler(appt, queued)

    entry.status = WaitlistStatus.promoted
    entry.promoted_appointment_id = appt.id
    entry.updated_at = now

    log_override(
        db,
        clinic_id=clinic_id,
        action=QueueActionType.waitlist_promote,
        actor_id=actor_id,
        appointment_id=appt.id,
        reason=f"Promoted from waitlist entry {entry.id}",
        after=snapshot_entry(appt),
    )
    events.append(
        QueueEvent(
            QueueEventType.waitlist_promoted,
            clinic_id=clinic_id,
            target_date=target_date,
            appointment_id=appt.id,
            staff_id=staff_id,
            queue_position=appt.queue_position,
            payload={"waitlist_entry_id": entry.id, "is_gap_filler": appt.is_gap_filler},
        )
    )
    events.extend(position_events(before, queued, clinic_id=clinic_id, target_date=target_date))
    logger.info(
        "Promoted waitlist entry %s to appointment %s (gap filler: %s)",
        entry.id,
        appt.id,
        appt.is_gap_filler,
    )
    return WaitlistPromotion(appointment=appt, entry=entry)


def promote_from_waitlist(
    db: Session,
    clinic_id: int,
    staff_id: int,
    target_date: date,
    *,
    actor_id: str,
    freed_slot: FreedSlot | None = None,
    now: datetime | None = None,
) -> WaitlistPromotion | None:
    now = resolve_now(now)
    events: list[QueueEvent] = []
    with queue_transaction(db, staff_id, target_date):
        config = resolve_mode(db, clinic_id, target_date)
        require_active_staff(db, clinic_id, staff_id)
        promotion = promote_locked(
            db,
            clinic_id,
            staff_id,
            target_date,
            config,
            actor_id=actor_id,
            now=now,
            events=events,
            freed_slot=freed_slot,
        )
    notifier.emit(events)
    return promotion


def get_waitlist_entry(db: Session, entry_id: int) -> WaitlistEntry:
    entry = db.get(WaitlistEntry, entry_id)
    if entry is None:
        raise NotFoundError("Waitlist entry", entry_id)
    return entry


def list_waitlist(
    db: Session,
    clinic_id: int,
    *,
    target_date: date | None = None,
    status: WaitlistStatus | None = None,
) -> list[WaitlistEntry]:
    stmt = select(WaitlistEntry).where(WaitlistEntry.clinic_id == clinic_id)
    if target_date is not None:
        stmt = stmt.where(WaitlistEntry.requested_date == target_date)
    if status is not None:
        stmt = stmt.where(WaitlistEntry.status == status)
    stmt = stmt.order_by(
        WaitlistEntry.requested_date.asc(),
        WaitlistEntry.priority_score.desc(),
        WaitlistEntry.created_at.asc(),
        WaitlistEntry.id.asc(),
    )
    return list(db.scalars(stmt))


def cancel_waitlist_entry(
    db: Session, entry_id: int, *, reason: str | None = None, now: datetime | None = None
) -> WaitlistEntry:
    now = resolve_now(now)
    entry = get_waitlist_entry(db, entry_id)
    if entry.status not in (WaitlistStatus.waiting, WaitlistStatus.notified):
        raise InvalidStateError(f"Waitlist entry {entry_id} is already {entry.status.value}")
    entry.status = WaitlistStatus.cancelled
    if reason:
        entry.notes = f"{entry.notes}\nCANCELLED: {reason}" if entry.notes else f"CANCELLED: {reason}"
    entry.updated_at = now
    db.commit()
    db.refresh(entry)
    logger.info("Cancelled waitlist entry %s", entry_id)
    return entry


def expire_waitlist(
    db: Session, clinic_id: int, before_date: date, *, now: datetime | None = None
) -> list[int]:
    """Expire waiting entries whose requested date has passed."""
    now = resolve_now(now)
    stmt = select(WaitlistEntry).where(
        WaitlistEntry.clinic_id == clinic_id,
        WaitlistEntry.requested_date < before_date,
        WaitlistEntry.status.in_([WaitlistStatus.waiting, WaitlistStatus.notified]),
    )
    expired: list[int] = []
    for entry in db.scalars(stmt):
        entry.status = WaitlistStatus.expired
        entry.updated_at = now
        expired.append(entry.id)
    db.commit()
    if expired:
        logger.info("Expired %s waitlist entries for clinic %s", len(expired), clinic_id)
    return expired
