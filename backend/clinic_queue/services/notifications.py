from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

logger = logging.getLogger("clinic_queue.notifications")


class QueueEventType(str, enum.Enum):
    position_changed = "position_changed"
    patient_called = "patient_called"
    presence_changed = "presence_changed"
    marked_absent = "marked_absent"
    returned = "returned"
    absence_expired = "absence_expired"
    waitlisted = "waitlisted"
    waitlist_promoted = "waitlist_promoted"
    day_closed = "day_closed"
    day_reopened = "day_reopened"


@dataclass(frozen=True)
class QueueEvent:
    event_type: QueueEventType
    clinic_id: int
    target_date: date
    appointment_id: int | None = None
    staff_id: int | None = None
    queue_position: int | None = None
    payload: dict = field(default_factory=dict)


QueueHook = Callable[[QueueEvent], None]


class QueueNotifier:
    """Fire-and-forget fan-out to the notification collaborator."""

    def __init__(self) -> None:
        self._hooks: list[QueueHook] = []

    def register(self, hook: QueueHook) -> None:
        self._hooks.append(hook)

    def unregister(self, hook: QueueHook) -> None:
        if hook in self._hooks:
            self._hooks.remove(hook)

    def clear(self) -> None:
        self._hooks.clear()

    def emit(self, events: list[QueueEvent]) -> None:
        for event in events:
            for hook in list(self._hooks):
                try:
                    hook(event)
                except Exception:
                    logger.exception(
                        "Notification hook failed for %s on appointment %s",
                        event.event_type.value,
                        event.appointment_id,
                    )


notifier = QueueNotifier()


def position_events(
    before: dict[int, int | None],
    after: list,
    *,
    clinic_id: int,
    target_date: date,
) -> list[QueueEvent]:
    """One ``position_changed`` event per queued entry whose position moved."""
    events: list[QueueEvent] = []
    for appt in after:
        if before.get(appt.id) != appt.queue_position:
            events.append(
                QueueEvent(
                    QueueEventType.position_changed,
                    clinic_id=clinic_id,
                    target_date=target_date,
                    appointment_id=appt.id,
                    staff_id=appt.staff_id,
                    queue_position=appt.queue_position,
                )
            )
    return events
