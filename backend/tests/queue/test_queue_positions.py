from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import event

from clinic_queue.models import AppointmentStatus, SkipReason
from clinic_queue.services.positions import (
    EMERGENCY_PRIORITY,
    STANDARD_PRIORITY,
    WALK_IN_PRIORITY,
    calculate_priority_score,
    load_day_entries,
    recalculate_positions,
)
from clinic_queue.services.queue_config import QueueMode, resolve_mode

QUEUE_DAY = date(2026, 3, 2)
DAY_START = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "is_walk_in,is_emergency,expected",
    [
        (False, False, STANDARD_PRIORITY),
        (True, False, WALK_IN_PRIORITY),
        (False, True, EMERGENCY_PRIORITY),
        (True, True, EMERGENCY_PRIORITY),
    ],
)
def test_calculate_priority_score(is_walk_in, is_emergency, expected):
    assert calculate_priority_score(is_walk_in=is_walk_in, is_emergency=is_emergency) == expected


def test_fluid_orders_by_priority_then_creation(db, clinic, patients, make_appointment):
    first = make_appointment(patients[0], priority_score=100)
    second = make_appointment(patients[1], priority_score=100)
    urgent = make_appointment(patients[2], priority_score=500)

    config = resolve_mode(db, clinic.id, QUEUE_DAY)
    queued = recalculate_positions(db, clinic.id, QUEUE_DAY, config)
    db.commit()

    assert [appt.id for appt in queued] == [urgent.id, first.id, second.id]
    assert urgent.queue_position == 1
    assert first.queue_position == 2
    assert second.queue_position == 3


def test_fluid_puts_unscheduled_entries_after_scheduled_ones(db, clinic, patients, make_appointment):
    unscheduled = make_appointment(patients[0])
    late = make_appointment(patients[1], scheduled_start=DAY_START + timedelta(hours=2))
    early = make_appointment(patients[2], scheduled_start=DAY_START + timedelta(hours=1))

    config = resolve_mode(db, clinic.id, QUEUE_DAY)
    queued = recalculate_positions(db, clinic.id, QUEUE_DAY, config)

    assert [appt.id for appt in queued] == [early.id, late.id, unscheduled.id]


def test_slotted_ignores_priority(db, clinic, patients, make_appointment):
    clinic.queue_mode = "time_grid_fixed"
    db.commit()
    urgent_late = make_appointment(
        patients[0], priority_score=500, scheduled_start=DAY_START + timedelta(hours=3)
    )
    standard_early = make_appointment(
        patients[1], priority_score=100, scheduled_start=DAY_START + timedelta(hours=1)
    )

    config = resolve_mode(db, clinic.id, QUEUE_DAY)
    assert config.mode == QueueMode.slotted
    queued = recalculate_positions(db, clinic.id, QUEUE_DAY, config)

    assert [appt.id for appt in queued] == [standard_early.id, urgent_late.id]


def test_positions_are_dense_and_exclude_absent_and_terminal(db, clinic, patients, make_appointment):
    kept = [make_appointment(patients[idx]) for idx in range(3)]
    absent = make_appointment(patients[3])
    absent.skip_reason = SkipReason.patient_absent
    absent.queue_position = 9
    done = make_appointment(patients[4], status=AppointmentStatus.completed)
    done.queue_position = 4
    serving = make_appointment(patients[5], status=AppointmentStatus.in_progress)
    db.commit()

    config = resolve_mode(db, clinic.id, QUEUE_DAY)
    recalculate_positions(db, clinic.id, QUEUE_DAY, config)
    db.commit()

    assert sorted(appt.queue_position for appt in kept) == [1, 2, 3]
    assert absent.queue_position is None
    assert done.queue_position is None
    assert serving.queue_position is None


def test_recalculate_is_idempotent(db, engine, clinic, patients, make_appointment):
    for idx in range(4):
        make_appointment(patients[idx], priority_score=100 + (idx % 2) * 50)

    config = resolve_mode(db, clinic.id, QUEUE_DAY)
    recalculate_positions(db, clinic.id, QUEUE_DAY, config)
    db.commit()
    first_pass = {appt.id: appt.queue_position for appt in load_day_entries(db, clinic.id, QUEUE_DAY)}

    updates = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("UPDATE"):
            updates.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    try:
        recalculate_positions(db, clinic.id, QUEUE_DAY, config)
        db.commit()
    finally:
        event.remove(engine, "before_cursor_execute", _record)

    assert updates == []
    second_pass = {appt.id: appt.queue_position for appt in load_day_entries(db, clinic.id, QUEUE_DAY)}

    assert first_pass == second_pass
