from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_queue.models.appointment import Appointment
from clinic_queue.models.queue_override import QueueActionType, QueueOverride
from clinic_queue.schemas.audit import QueueEntrySnapshot


def snapshot_entry(appt: Appointment | None) -> QueueEntrySnapshot | None:
    if appt is None:
        return None
    return QueueEntrySnapshot(
        appointment_id=appt.id,
        appointment_date=appt.appointment_date,
        status=appt.status,
        queue_position=appt.queue_position,
        original_queue_position=appt.original_queue_position,
        priority_score=appt.priority_score,
        is_present=appt.is_present,
        skip_reason=appt.skip_reason,
        skip_count=appt.skip_count or 0,
        scheduled_start=appt.scheduled_start,
        scheduled_end=appt.scheduled_end,
    )


def _dump(snapshot: QueueEntrySnapshot | None) -> dict | None:
    if snapshot is None:
        return None
    return snapshot.model_dump(mode="json")


def log_override(
    db: Session,
    *,
    clinic_id: int,
    action: QueueActionType,
    actor_id: str,
    appointment_id: int | None = None,
    reason: str | None = None,
    before: QueueEntrySnapshot | None = None,
    after: QueueEntrySnapshot | None = None,
    skipped_ids: Iterable[int] = (),
    affected_ids: Iterable[int] = (),
) -> QueueOverride:
    entry = QueueOverride(
        clinic_id=clinic_id,
        appointment_id=appointment_id,
        action_type=action,
        performed_by=str(actor_id),
        reason=reason,
        previous_position=before.queue_position if before else None,
        new_position=after.queue_position if after else None,
        previous_state=_dump(before),
        new_state=_dump(after),
        skipped_appointment_ids=list(skipped_ids),
        affected_appointment_ids=list(affected_ids),
    )
    db.add(entry)
    return entry


def list_overrides(
    db: Session,
    *,
    clinic_id: int | None = None,
    appointment_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[QueueOverride]:
    stmt = select(QueueOverride)
    if clinic_id is not None:
        stmt = stmt.where(QueueOverride.clinic_id == clinic_id)
    if appointment_id is not None:
        stmt = stmt.where(QueueOverride.appointment_id == appointment_id)
    stmt = (
        stmt.order_by(QueueOverride.created_at.desc(), QueueOverride.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.scalars(stmt))
