from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_queue.core.errors import AlreadyClosedError, NotFoundError, ReopenNotAllowedError
from clinic_queue.core.settings import settings
from clinic_queue.models.absence import AbsenceRecord, AbsenceResolution
from clinic_queue.models.appointment import QUEUED_STATUSES, Appointment, AppointmentStatus
from clinic_queue.models.base import as_utc
from clinic_queue.models.day_closure import DayClosure
from clinic_queue.models.queue_override import QueueActionType
from clinic_queue.services.audit import log_override
from clinic_queue.services.entries import open_absence, open_closure, resolve_now, touch
from clinic_queue.services.locking import queue_transaction
from clinic_queue.services.notifications import QueueEvent, QueueEventType, notifier
from clinic_queue.services.positions import load_day_entries, recalculate_positions
from clinic_queue.services.queue_config import resolve_mode

logger = logging.getLogger("clinic_queue.day_closure")


@dataclass
class DayClosureSummary:
    closure_id: int
    clinic_id: int
    staff_id: int
    closure_date: date
    total_appointments: int
    waiting_count: int
    in_progress_count: int
    absent_count: int
    completed_count: int
    marked_no_show_ids: list[int] = field(default_factory=list)
    marked_completed_ids: list[int] = field(default_factory=list)
    closed_absence_ids: list[int] = field(default_factory=list)

    @classmethod
    def from_closure(cls, closure: DayClosure) -> "DayClosureSummary":
        return cls(
            closure_id=closure.id,
            clinic_id=closure.clinic_id,
            staff_id=closure.staff_id,
            closure_date=closure.closure_date,
            total_appointments=closure.total_appointments,
            waiting_count=closure.waiting_count,
            in_progress_count=closure.in_progress_count,
            absent_count=closure.absent_count,
            completed_count=closure.completed_count,
            marked_no_show_ids=list(closure.marked_no_show_ids or []),
            marked_completed_ids=list(closure.marked_completed_ids or []),
            closed_absence_ids=list(closure.closed_absence_ids or []),
        )


@dataclass
class ClosurePreview:
    clinic_id: int
    staff_id: int
    closure_date: date
    total_appointments: int
    waiting_count: int
    in_progress_count: int
    absent_count: int
    completed_count: int
    already_no_show: int
    will_mark_no_show: list[int]
    will_mark_completed: list[int]
    is_closed: bool
    closure_id: int | None = None


@dataclass
class DayReopenResult:
    closure: DayClosure
    restored_ids: list[int]
    left_unchanged_ids: list[int]


def _staff_entries(db: Session, clinic_id: int, staff_id: int, target_date: date) -> list[Appointment]:
    return [appt for appt in load_day_entries(db, clinic_id, target_date) if appt.staff_id == staff_id]


def _counts(entries: list[Appointment]) -> dict[str, int]:
    return {
        "total_appointments": len(entries),
        "waiting_count": sum(1 for appt in entries if appt.is_queued),
        "in_progress_count": sum(1 for appt in entries if appt.status == AppointmentStatus.in_progress),
        "absent_count": sum(1 for appt in entries if appt.is_absent),
        "completed_count": sum(1 for appt in entries if appt.status == AppointmentStatus.completed),
    }


def end_day(
    db: Session,
    clinic_id: int,
    staff_id: int,
    target_date: date,
    *,
    actor_id: str,
    reason: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> DayClosureSummary:
    """
    Close a staff member's queue for the day in one transaction.

    Waiting and scheduled entries, absent ones included, become ``no_show``;
    the entry in service becomes ``completed``; open absence episodes are
    closed. Presence flags are left alone so a reopen gets the queue back as
    it was. A second call for the same staff and date fails with
    ``AlreadyClosedError`` until the closure is reopened.
    """
    now = resolve_now(now)
    with queue_transaction(db, staff_id, target_date):
        existing = open_closure(db, staff_id, target_date)
        if existing is not None:
            raise AlreadyClosedError(staff_id, target_date, existing.id)

        config = resolve_mode(db, clinic_id, target_date)
        entries = _staff_entries(db, clinic_id, staff_id, target_date)
        counts = _counts(entries)

        no_show_ids: list[int] = []
        completed_ids: list[int] = []
        closed_absence_ids: list[int] = []
        for appt in entries:
            if appt.status in QUEUED_STATUSES:
                record = open_absence(db, appt.id) if appt.is_absent else None
                if record is not None:
                    record.resolution = AbsenceResolution.day_closed
                    record.resolved_at = now
                    record.updated_at = now
                    closed_absence_ids.append(record.id)
                appt.status = AppointmentStatus.no_show
                touch(appt, actor_id, now)
                no_show_ids.append(appt.id)
            elif appt.status == AppointmentStatus.in_progress:
                appt.status = AppointmentStatus.completed
                appt.ended_at = now
                touch(appt, actor_id, now)
                completed_ids.append(appt.id)

        recalculate_positions(db, clinic_id, target_date, config)
        closure = DayClosure(
            clinic_id=clinic_id,
            staff_id=staff_id,
            closure_date=target_date,
            performed_by=str(actor_id),
            performed_at=now,
            marked_no_show_ids=no_show_ids,
            marked_completed_ids=completed_ids,
            closed_absence_ids=closed_absence_ids,
            reason=reason,
            notes=notes,
            can_reopen=True,
            created_at=now,
            updated_at=now,
            **counts,
        )
        db.add(closure)
        log_override(
            db,
            clinic_id=clinic_id,
            action=QueueActionType.day_close,
            actor_id=actor_id,
            reason=reason,
            affected_ids=no_show_ids + completed_ids,
        )
        db.flush()
        summary = DayClosureSummary.from_closure(closure)

    logger.info(
        "Closed day %s for staff %s: %s no-show, %s completed",
        target_date,
        staff_id,
        len(no_show_ids),
        len(completed_ids),
    )
    notifier.emit(
        [
            QueueEvent(
                QueueEventType.day_closed,
                clinic_id=clinic_id,
                target_date=target_date,
                staff_id=staff_id,
                payload={"closure_id": summary.closure_id, "no_show_ids": no_show_ids},
            )
        ]
    )
    return summary


def get_closure(db: Session, closure_id: int) -> DayClosure:
    closure = db.get(DayClosure, closure_id)
    if closure is None:
        raise NotFoundError("Day closure", closure_id)
    return closure


def _reopen_absence(db: Session, closure: DayClosure, appointment_id: int, now: datetime) -> None:
    if not closure.closed_absence_ids:
        return
    stmt = select(AbsenceRecord).where(
        AbsenceRecord.appointment_id == appointment_id,
        AbsenceRecord.id.in_(list(closure.closed_absence_ids)),
        AbsenceRecord.resolution == AbsenceResolution.day_closed,
    )
    for record in db.scalars(stmt):
        record.resolution = None
        record.resolved_at = None
        record.updated_at = now


def reopen_day(
    db: Session,
    closure_id: int,
    *,
    actor_id: str,
    reason: str,
    now: datetime | None = None,
) -> DayReopenResult:
    """
    Undo a day closure for the entries nobody has touched since.

    An entry marked ``no_show`` by the closure goes back to ``waiting`` only
    if it is still ``no_show`` and was last updated no later than the
    configured safety window after the closure. Anything else is left as it
    is. Entries completed by the closure stay completed.
    """
    now = resolve_now(now)
    closure = get_closure(db, closure_id)
    with queue_transaction(db, closure.staff_id, closure.closure_date):
        db.refresh(closure)
        if closure.is_reopened:
            raise ReopenNotAllowedError(closure.id, "already reopened")
        if not closure.can_reopen:
            raise ReopenNotAllowedError(closure.id, "closure is not reopenable")

        config = resolve_mode(db, closure.clinic_id, closure.closure_date)
        window_ends = as_utc(closure.performed_at) + timedelta(minutes=settings.reopen_safety_window_minutes)
        restored: list[int] = []
        unchanged: list[int] = []
        for appointment_id in closure.marked_no_show_ids or []:
            appt = db.get(Appointment, appointment_id)
            if (
                appt is None
                or appt.status != AppointmentStatus.no_show
                or as_utc(appt.updated_at) > window_ends
            ):
                unchanged.append(appointment_id)
                continue
            appt.status = AppointmentStatus.waiting
            touch(appt, actor_id, now)
            _reopen_absence(db, closure, appt.id, now)
            restored.append(appt.id)

        closure.reopened_at = now
        closure.reopened_by = str(actor_id)
        closure.updated_at = now
        stamp = f"REOPENED: {reason}"
        closure.notes = f"{closure.notes}\n{stamp}" if closure.notes else stamp

        recalculate_positions(db, closure.clinic_id, closure.closure_date, config)
        log_override(
            db,
            clinic_id=closure.clinic_id,
            action=QueueActionType.day_reopen,
            actor_id=actor_id,
            reason=reason,
            affected_ids=restored,
        )

    logger.info(
        "Reopened closure %s: restored %s, left %s unchanged",
        closure.id,
        restored,
        unchanged,
    )
    notifier.emit(
        [
            QueueEvent(
                QueueEventType.day_reopened,
                clinic_id=closure.clinic_id,
                target_date=closure.closure_date,
                staff_id=closure.staff_id,
                payload={"closure_id": closure.id, "restored_ids": restored},
            )
        ]
    )
    return DayReopenResult(closure=closure, restored_ids=restored, left_unchanged_ids=unchanged)


def preview_closure(db: Session, clinic_id: int, staff_id: int, target_date: date) -> ClosurePreview:
    """What ``end_day`` would do right now. Reads only."""
    entries = _staff_entries(db, clinic_id, staff_id, target_date)
    existing = open_closure(db, staff_id, target_date)
    return ClosurePreview(
        clinic_id=clinic_id,
        staff_id=staff_id,
        closure_date=target_date,
        already_no_show=sum(1 for appt in entries if appt.status == AppointmentStatus.no_show),
        will_mark_no_show=[appt.id for appt in entries if appt.status in QUEUED_STATUSES],
        will_mark_completed=[
            appt.id for appt in entries if appt.status == AppointmentStatus.in_progress
        ],
        is_closed=existing is not None,
        closure_id=existing.id if existing is not None else None,
        **_counts(entries),
    )


def list_closures(
    db: Session,
    clinic_id: int,
    *,
    staff_id: int | None = None,
    closure_date: date | None = None,
) -> list[DayClosure]:
    stmt = select(DayClosure).where(DayClosure.clinic_id == clinic_id)
    if staff_id is not None:
        stmt = stmt.where(DayClosure.staff_id == staff_id)
    if closure_date is not None:
        stmt = stmt.where(DayClosure.closure_date == closure_date)
    stmt = stmt.order_by(DayClosure.closure_date.desc(), DayClosure.performed_at.desc())
    return list(db.scalars(stmt))
