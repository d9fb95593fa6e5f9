from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from clinic_queue.core.errors import NotFoundError
from clinic_queue.core.settings import settings
from clinic_queue.models.clinic import Clinic, LateArrivalPolicy


class QueueMode(str, enum.Enum):
    slotted = "slotted"
    fluid = "fluid"


LEGACY_MODE_ALIASES = {
    "slotted": QueueMode.slotted,
    "fixed": QueueMode.slotted,
    "time_grid_fixed": QueueMode.slotted,
    "hybrid": QueueMode.slotted,
    "fluid": QueueMode.fluid,
    "ordinal_queue": QueueMode.fluid,
}

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class EffectiveQueueConfig:
    mode: QueueMode
    grace_period_minutes: int
    allow_overflow: bool
    daily_capacity_limit: int | None
    late_arrival_policy: LateArrivalPolicy
    auto_cancel_after_grace: bool


def normalize_mode(value: str | None) -> QueueMode | None:
    if not value:
        return None
    return LEGACY_MODE_ALIASES.get(value.strip().lower())


def day_name(target: date) -> str:
    return DAY_NAMES[target.weekday()]


def effective_config(clinic: Clinic, target: date) -> EffectiveQueueConfig:
    overrides = {row.day_name.strip().lower(): row.mode for row in clinic.day_modes}
    mode = normalize_mode(overrides.get(day_name(target)))
    if mode is None:
        mode = normalize_mode(clinic.queue_mode) or QueueMode.fluid
    grace = clinic.grace_period_minutes
    if grace is None:
        grace = settings.default_grace_period_minutes
    return EffectiveQueueConfig(
        mode=mode,
        grace_period_minutes=max(0, grace),
        allow_overflow=bool(clinic.allow_overflow),
        daily_capacity_limit=clinic.daily_capacity_limit,
        late_arrival_policy=clinic.late_arrival_policy or LateArrivalPolicy.priority_walk_in,
        auto_cancel_after_grace=bool(clinic.auto_cancel_after_grace),
    )


def resolve_mode(db: Session, clinic_id: int, target: date) -> EffectiveQueueConfig:
    clinic = db.get(Clinic, clinic_id)
    if clinic is None:
        raise NotFoundError("Clinic", clinic_id)
    return effective_config(clinic, target)
