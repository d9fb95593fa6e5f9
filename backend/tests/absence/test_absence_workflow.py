from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from clinic_queue.core.errors import InvalidStateError
from clinic_queue.models import (
    AbsenceResolution,
    Appointment,
    AppointmentStatus,
    LateArrivalPolicy,
    QueueActionType,
    QueueOverride,
    RegisteredPatientRef,
    SkipReason,
    WaitlistStatus,
)
from clinic_queue.models.base import as_utc
from clinic_queue.services.absence import (
    expire_absences,
    list_open_absences,
    mark_absent,
    resolve_absence,
)
from clinic_queue.services.notifications import QueueEventType
from clinic_queue.services.positions import WALK_IN_PRIORITY, recalculate_positions
from clinic_queue.services.queue_config import resolve_mode
from clinic_queue.services.waitlist import request_slot

QUEUE_DAY = date(2026, 3, 2)
T = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def queue(db, clinic, patients, make_appointment):
    rows = [make_appointment(patients[idx]) for idx in range(3)]
    config = resolve_mode(db, clinic.id, QUEUE_DAY)
    recalculate_positions(db, clinic.id, QUEUE_DAY, config)
    db.commit()
    return rows


def test_mark_absent_starts_grace_period(db, queue):
    first, second, third = queue

    record = mark_absent(db, first.id, actor_id="desk-1", reason="Not in waiting room", now=T)

    assert as_utc(record.grace_period_ends_at) == T + timedelta(minutes=15)
    assert record.resolution is None
    db.refresh(first)
    db.refresh(second)
    db.refresh(third)
    assert first.skip_reason == SkipReason.patient_absent
    assert first.queue_position is None
    assert first.original_queue_position == 1
    assert first.is_present is False
    assert (second.queue_position, third.queue_position) == (1, 2)


def test_mark_absent_twice_is_refused(db, queue):
    mark_absent(db, queue[0].id, actor_id="desk-1", now=T)

    with pytest.raises(InvalidStateError):
        mark_absent(db, queue[0].id, actor_id="desk-1", now=T + timedelta(minutes=1))

    assert len(list_open_absences(db, queue[0].clinic_id, QUEUE_DAY)) == 1


def test_return_within_grace_readmits_as_walk_in(db, queue, events):
    first, second, third = queue
    mark_absent(db, first.id, actor_id="desk-1", now=T)

    outcome = resolve_absence(db, first.id, actor_id="desk-1", now=T + timedelta(minutes=10))

    assert outcome.expired is False
    assert outcome.record.resolution == AbsenceResolution.returned
    appt = outcome.appointment
    assert appt.status == AppointmentStatus.waiting
    assert appt.is_present is True
    assert appt.priority_score == WALK_IN_PRIORITY
    assert appt.skip_reason == SkipReason.late_arrival
    assert appt.late_arrival_converted is True
    # Walk-in priority sorts behind the two standard entries.
    assert appt.queue_position == 3
    assert outcome.record.new_position == 3
    assert QueueEventType.returned in [event.event_type for event in events]


def test_return_exactly_at_grace_end_is_still_in_time(db, queue):
    mark_absent(db, queue[0].id, actor_id="desk-1", now=T)

    outcome = resolve_absence(db, queue[0].id, actor_id="desk-1", now=T + timedelta(minutes=15))

    assert outcome.expired is False
    assert outcome.appointment.status == AppointmentStatus.waiting


def test_return_after_grace_with_auto_cancel_becomes_no_show(db, queue):
    mark_absent(db, queue[0].id, actor_id="desk-1", now=T)

    outcome = resolve_absence(db, queue[0].id, actor_id="desk-1", now=T + timedelta(minutes=20))

    assert outcome.expired is True
    assert outcome.appointment.status == AppointmentStatus.no_show
    assert outcome.appointment.queue_position is None
    assert outcome.record.auto_cancelled is True
    actions = db.scalars(
        select(QueueOverride.action_type).where(QueueOverride.appointment_id == queue[0].id)
    ).all()
    assert QueueActionType.absence_expired in actions


def test_return_after_grace_without_auto_cancel_readmits(db, clinic, queue):
    clinic.auto_cancel_after_grace = False
    db.commit()
    mark_absent(db, queue[0].id, actor_id="desk-1", now=T)

    outcome = resolve_absence(db, queue[0].id, actor_id="desk-1", now=T + timedelta(hours=1))

    assert outcome.expired is False
    assert outcome.appointment.status == AppointmentStatus.waiting


def test_reschedule_only_policy_rebooks_on_return(db, clinic, queue):
    clinic.late_arrival_policy = LateArrivalPolicy.reschedule_only
    db.commit()
    mark_absent(db, queue[0].id, actor_id="desk-1", now=T)

    outcome = resolve_absence(
        db,
        queue[0].id,
        actor_id="desk-1",
        rebook_date=QUEUE_DAY + timedelta(days=1),
        now=T + timedelta(minutes=5),
    )

    assert outcome.appointment.status == AppointmentStatus.rescheduled
    rebooked = outcome.rebooked_appointment
    assert rebooked is not None
    assert rebooked.appointment_date == QUEUE_DAY + timedelta(days=1)
    assert rebooked.patient_id == queue[0].patient_id
    assert rebooked.queue_position == 1
    assert outcome.record.resolution == AbsenceResolution.rebooked
    assert outcome.record.rebooked_appointment_id == rebooked.id


def test_staff_can_move_absent_patient_to_waitlist(db, queue):
    mark_absent(db, queue[1].id, actor_id="desk-1", now=T)

    outcome = resolve_absence(
        db,
        queue[1].id,
        actor_id="desk-1",
        resolution=AbsenceResolution.waitlisted,
        waitlist_priority=5,
        now=T + timedelta(minutes=2),
    )

    assert outcome.appointment.status == AppointmentStatus.cancelled
    entry = outcome.waitlist_entry
    assert entry.status == WaitlistStatus.waiting
    assert entry.priority_score == 5
    assert entry.requested_date == QUEUE_DAY
    assert outcome.record.resolution == AbsenceResolution.waitlisted


def test_resolve_without_open_absence(db, queue):
    with pytest.raises(InvalidStateError):
        resolve_absence(db, queue[0].id, actor_id="desk-1", now=T)


def test_expired_is_not_a_manual_resolution(db, queue):
    mark_absent(db, queue[0].id, actor_id="desk-1", now=T)

    with pytest.raises(InvalidStateError):
        resolve_absence(
            db, queue[0].id, actor_id="desk-1", resolution=AbsenceResolution.expired, now=T
        )


def test_expire_absences_only_touches_overdue_records(db, clinic, staff, queue, events):
    mark_absent(db, queue[0].id, actor_id="desk-1", now=T)
    mark_absent(db, queue[1].id, actor_id="desk-1", now=T + timedelta(minutes=10))

    expired = expire_absences(
        db, clinic.id, staff.id, QUEUE_DAY, actor_id="system", now=T + timedelta(minutes=20)
    )

    assert [record.appointment_id for record in expired] == [queue[0].id]
    db.refresh(queue[0])
    db.refresh(queue[1])
    assert queue[0].status == AppointmentStatus.no_show
    assert queue[1].is_absent is True
    assert [record.appointment_id for record in list_open_absences(db, clinic.id)] == [queue[1].id]
    assert QueueEventType.absence_expired in [event.event_type for event in events]


def test_expire_absences_is_a_no_op_without_auto_cancel(db, clinic, staff, queue):
    clinic.auto_cancel_after_grace = False
    db.commit()
    mark_absent(db, queue[0].id, actor_id="desk-1", now=T)

    expired = expire_absences(
        db, clinic.id, staff.id, QUEUE_DAY, actor_id="system", now=T + timedelta(hours=2)
    )

    assert expired == []
    db.refresh(queue[0])
    assert queue[0].is_absent is True


def test_expiry_promotes_waitlist_entry(db, clinic, staff, patients, queue, events):
    clinic.daily_capacity_limit = 3
    clinic.allow_overflow = True
    db.commit()
    overflow = request_slot(
        db,
        clinic.id,
        staff.id,
        QUEUE_DAY,
        RegisteredPatientRef(patients[3].id),
        actor_id="desk-1",
        waitlist_priority=5,
        now=T,
    )
    assert overflow.waitlisted is True
    mark_absent(db, queue[0].id, actor_id="desk-1", now=T)

    expired = expire_absences(
        db, clinic.id, staff.id, QUEUE_DAY, actor_id="system", now=T + timedelta(minutes=20)
    )

    assert [record.appointment_id for record in expired] == [queue[0].id]
    entry = overflow.waitlist_entry
    db.refresh(entry)
    assert entry.status == WaitlistStatus.promoted
    promoted = db.get(Appointment, entry.promoted_appointment_id)
    assert promoted.patient_id == patients[3].id
    assert promoted.promoted_from_waitlist is True
    assert promoted.priority_score == 105
    assert promoted.queue_position == 1
    db.refresh(queue[1])
    db.refresh(queue[2])
    assert (queue[1].queue_position, queue[2].queue_position) == (2, 3)
    assert QueueEventType.waitlist_promoted in [event.event_type for event in events]
