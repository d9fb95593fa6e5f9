from datetime import date, timedelta

import pytest

from clinic_queue.core.errors import NotFoundError
from clinic_queue.models import ClinicDayMode, LateArrivalPolicy
from clinic_queue.services.queue_config import (
    QueueMode,
    day_name,
    effective_config,
    normalize_mode,
    resolve_mode,
)

MONDAY = date(2026, 3, 2)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("slotted", QueueMode.slotted),
        ("fixed", QueueMode.slotted),
        ("time_grid_fixed", QueueMode.slotted),
        ("hybrid", QueueMode.slotted),
        ("fluid", QueueMode.fluid),
        ("ordinal_queue", QueueMode.fluid),
        (" Fluid ", QueueMode.fluid),
        ("", None),
        (None, None),
        ("round_robin", None),
    ],
)
def test_normalize_mode(raw, expected):
    assert normalize_mode(raw) == expected


def test_day_name_uses_lowercase_english_weekday():
    assert day_name(MONDAY) == "monday"
    assert day_name(MONDAY + timedelta(days=6)) == "sunday"


def test_weekday_override_beats_clinic_default(db, clinic):
    clinic.queue_mode = "fluid"
    clinic.day_modes.append(ClinicDayMode(day_name="monday", mode="fixed"))
    db.commit()

    assert resolve_mode(db, clinic.id, MONDAY).mode == QueueMode.slotted
    assert resolve_mode(db, clinic.id, MONDAY + timedelta(days=1)).mode == QueueMode.fluid


def test_unknown_modes_fall_back_to_fluid(db, clinic):
    clinic.queue_mode = "something_new"
    clinic.day_modes.append(ClinicDayMode(day_name="monday", mode="also_unknown"))
    db.commit()

    assert resolve_mode(db, clinic.id, MONDAY).mode == QueueMode.fluid


def test_effective_config_carries_clinic_policy(db, clinic):
    clinic.grace_period_minutes = 20
    clinic.allow_overflow = True
    clinic.daily_capacity_limit = 12
    clinic.late_arrival_policy = LateArrivalPolicy.reschedule_only
    clinic.auto_cancel_after_grace = False
    db.commit()

    config = effective_config(clinic, MONDAY)

    assert config.grace_period_minutes == 20
    assert config.allow_overflow is True
    assert config.daily_capacity_limit == 12
    assert config.late_arrival_policy == LateArrivalPolicy.reschedule_only
    assert config.auto_cancel_after_grace is False


def test_resolve_mode_unknown_clinic(db):
    with pytest.raises(NotFoundError):
        resolve_mode(db, 9999, MONDAY)
