from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from clinic_queue.core.errors import (
    AlreadyServingError,
    InvalidStateError,
    NotPresentError,
    QueueEmptyError,
)
from clinic_queue.models import (
    Appointment,
    AppointmentStatus,
    ClinicStaff,
    QueueActionType,
    QueueOverride,
    SkipReason,
)
from clinic_queue.services import queue as queue_service
from clinic_queue.services.notifications import QueueEventType
from clinic_queue.services.positions import EMERGENCY_PRIORITY, recalculate_positions
from clinic_queue.services.queue_config import resolve_mode

QUEUE_DAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _queue(db, clinic):
    config = resolve_mode(db, clinic.id, QUEUE_DAY)
    recalculate_positions(db, clinic.id, QUEUE_DAY, config)
    db.commit()


def _override_count(db, action=None):
    stmt = select(func.count(QueueOverride.id))
    if action is not None:
        stmt = stmt.where(QueueOverride.action_type == action)
    return db.scalar(stmt)


def test_call_next_serves_first_present_entry(db, clinic, staff, patients, make_appointment):
    first = make_appointment(patients[0])
    second = make_appointment(patients[1])
    _queue(db, clinic)

    called = queue_service.call_next(db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-1", now=NOW)

    assert called.id == first.id
    assert called.status == AppointmentStatus.in_progress
    assert called.queue_position is None
    assert called.started_at is not None
    db.refresh(second)
    assert second.queue_position == 1

    override = db.scalars(select(QueueOverride)).one()
    assert override.action_type == QueueActionType.call_next
    assert override.appointment_id == first.id
    assert override.previous_position == 1
    assert override.new_position is None
    assert override.previous_state["status"] == "waiting"
    assert override.new_state["status"] == "in_progress"
    assert override.new_state["schema_version"] == 1


def test_call_next_refuses_absent_candidate_without_changes(db, clinic, staff, patients, make_appointment):
    first = make_appointment(patients[0], is_present=False)
    make_appointment(patients[1])
    _queue(db, clinic)

    with pytest.raises(NotPresentError) as excinfo:
        queue_service.call_next(db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-1", now=NOW)

    assert "mark present or absent" in str(excinfo.value)
    db.refresh(first)
    assert first.status == AppointmentStatus.waiting
    assert first.queue_position == 1
    assert _override_count(db) == 0


def test_call_next_blocks_while_serving(db, clinic, staff, patients, make_appointment):
    make_appointment(patients[0])
    make_appointment(patients[1])
    _queue(db, clinic)

    queue_service.call_next(db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-1", now=NOW)
    with pytest.raises(AlreadyServingError):
        queue_service.call_next(db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-2", now=NOW)

    in_progress = db.scalar(
        select(func.count(Appointment.id)).where(Appointment.status == AppointmentStatus.in_progress)
    )
    assert in_progress == 1


def test_call_next_after_completion(db, clinic, staff, patients, make_appointment):
    make_appointment(patients[0])
    second = make_appointment(patients[1])
    _queue(db, clinic)

    first = queue_service.call_next(db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-1", now=NOW)
    queue_service.complete_appointment(
        db, first.id, actor_id="desk-1", now=NOW + timedelta(minutes=10)
    )
    called = queue_service.call_next(
        db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-1", now=NOW + timedelta(minutes=11)
    )

    assert first.status == AppointmentStatus.completed
    assert called.id == second.id


def test_call_next_on_empty_queue(db, clinic, staff):
    with pytest.raises(QueueEmptyError):
        queue_service.call_next(db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-1", now=NOW)


def test_presence_flag_changes_do_not_move_entries(db, clinic, patients, make_appointment):
    first = make_appointment(patients[0], is_present=False)
    second = make_appointment(patients[1], is_present=False)
    _queue(db, clinic)

    queue_service.mark_present(db, second.id, actor_id="desk-1", now=NOW)
    db.refresh(first)
    db.refresh(second)
    assert second.is_present is True
    assert (first.queue_position, second.queue_position) == (1, 2)

    queue_service.mark_not_present(db, second.id, actor_id="desk-1", now=NOW)
    db.refresh(second)
    assert second.is_present is False
    assert _override_count(db, QueueActionType.presence_change) == 2


def test_check_in_moves_scheduled_to_waiting(db, clinic, patients, make_appointment):
    appt = make_appointment(patients[0], status=AppointmentStatus.scheduled, is_present=False)
    _queue(db, clinic)

    checked = queue_service.check_in(db, appt.id, actor_id="desk-1", now=NOW)

    assert checked.status == AppointmentStatus.waiting
    assert checked.is_present is True
    assert checked.checked_in_at is not None
    with pytest.raises(InvalidStateError):
        queue_service.check_in(db, appt.id, actor_id="desk-1", now=NOW)


def test_call_present_skips_entries_ahead(db, clinic, staff, patients, make_appointment):
    missing = make_appointment(patients[0], is_present=False)
    late = make_appointment(patients[1], is_present=False)
    here = make_appointment(patients[2])
    _queue(db, clinic)

    called = queue_service.call_present(
        db, here.id, actor_id="desk-1", reason="Doctor ready, first two not back", now=NOW
    )

    assert called.status == AppointmentStatus.in_progress
    db.refresh(missing)
    db.refresh(late)
    assert missing.skip_count == 1
    assert late.skip_count == 1
    assert missing.skip_reason == SkipReason.patient_present
    assert (missing.queue_position, late.queue_position) == (1, 2)

    override = db.scalars(
        select(QueueOverride).where(QueueOverride.action_type == QueueActionType.call_present)
    ).one()
    assert override.skipped_appointment_ids == [missing.id, late.id]
    assert override.reason == "Doctor ready, first two not back"


def test_call_present_requires_presence(db, clinic, patients, make_appointment):
    appt = make_appointment(patients[0], is_present=False)
    _queue(db, clinic)

    with pytest.raises(NotPresentError):
        queue_service.call_present(db, appt.id, actor_id="desk-1", now=NOW)


def test_emergency_and_boost_reorder_fluid_queue(db, clinic, patients, make_appointment):
    first = make_appointment(patients[0])
    second = make_appointment(patients[1])
    third = make_appointment(patients[2])
    _queue(db, clinic)

    queue_service.mark_emergency(db, third.id, actor_id="desk-1", reason="Chest pain", now=NOW)
    db.refresh(third)
    assert third.priority_score == EMERGENCY_PRIORITY
    assert third.skip_reason == SkipReason.emergency_case
    assert third.queue_position == 1

    queue_service.boost_priority(db, second.id, actor_id="desk-1", now=NOW)
    db.refresh(first)
    db.refresh(second)
    assert second.priority_score == 150
    assert (second.queue_position, first.queue_position) == (2, 3)


def test_swap_exchanges_order(db, clinic, patients, make_appointment):
    first = make_appointment(patients[0], priority_score=150)
    second = make_appointment(patients[1], priority_score=100)
    _queue(db, clinic)

    queue_service.swap_entries(db, first.id, second.id, actor_id="desk-1", now=NOW)
    db.refresh(first)
    db.refresh(second)

    assert (first.priority_score, second.priority_score) == (100, 150)
    assert (second.queue_position, first.queue_position) == (1, 2)
    assert _override_count(db, QueueActionType.swap) == 2


def test_notifications_fire_after_commit(db, clinic, staff, patients, make_appointment, events):
    make_appointment(patients[0])
    make_appointment(patients[1])
    _queue(db, clinic)

    queue_service.call_next(db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-1", now=NOW)

    kinds = [event.event_type for event in events]
    assert kinds[0] == QueueEventType.patient_called
    assert QueueEventType.position_changed in kinds


def test_failing_hook_does_not_undo_the_call(db, clinic, staff, patients, make_appointment, caplog):
    from clinic_queue.services.notifications import notifier

    def _broken(event):
        raise RuntimeError("sms gateway down")

    notifier.register(_broken)
    appt = make_appointment(patients[0])
    _queue(db, clinic)

    with caplog.at_level("ERROR", logger="clinic_queue.notifications"):
        queue_service.call_next(db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-1", now=NOW)

    db.refresh(appt)
    assert appt.status == AppointmentStatus.in_progress
    assert "Notification hook failed" in caplog.text


def test_two_staff_share_clinic_positions_but_call_their_own(
    db, clinic, staff, patients, make_appointment
):
    colleague = ClinicStaff(clinic_id=clinic.id, full_name="Dr Lena Fischer")
    db.add(colleague)
    db.commit()
    mine = make_appointment(patients[0])
    theirs_urgent = make_appointment(patients[1], staff_id=colleague.id, priority_score=EMERGENCY_PRIORITY)
    theirs = make_appointment(patients[2], staff_id=colleague.id)
    _queue(db, clinic)

    assert [theirs_urgent.queue_position, mine.queue_position, theirs.queue_position] == [1, 2, 3]

    called = queue_service.call_next(db, clinic.id, staff.id, QUEUE_DAY, actor_id="desk-1", now=NOW)

    assert called.id == mine.id
    db.refresh(theirs_urgent)
    db.refresh(theirs)
    assert (theirs_urgent.queue_position, theirs.queue_position) == (1, 2)

    called = queue_service.call_next(db, clinic.id, colleague.id, QUEUE_DAY, actor_id="desk-2", now=NOW)

    assert called.id == theirs_urgent.id
    db.refresh(theirs)
    assert theirs.queue_position == 1
