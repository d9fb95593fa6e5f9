from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import date
from typing import Callable, Iterator, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from clinic_queue.core.errors import InvariantViolation, LockContention
from clinic_queue.core.settings import settings
from clinic_queue.models.queue_lock import ClinicDayLock, QueueLock

logger = logging.getLogger("clinic_queue.locking")

T = TypeVar("T")

LOCK_NOT_AVAILABLE_SQLSTATE = "55P03"


def _is_lock_contention(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "sqlstate", None) == LOCK_NOT_AVAILABLE_SQLSTATE:
        return True
    if getattr(orig, "pgcode", None) == LOCK_NOT_AVAILABLE_SQLSTATE:
        return True
    message = str(orig or exc).lower()
    return "could not obtain lock" in message or "database is locked" in message


def acquire_queue_lock(db: Session, staff_id: int, target_date: date) -> QueueLock:
    """Take the exclusive (staff, date) lock for the rest of the current transaction."""
    stmt = (
        select(QueueLock)
        .where(QueueLock.staff_id == staff_id, QueueLock.lock_date == target_date)
        .with_for_update(nowait=True)
    )
    lock = db.scalar(stmt)
    if lock is not None:
        return lock
    lock = QueueLock(staff_id=staff_id, lock_date=target_date)
    db.add(lock)
    try:
        db.flush()
    except IntegrityError as exc:
        # Another transaction created the row first and holds it.
        raise LockContention(staff_id, target_date) from exc
    return lock


def acquire_clinic_lock(db: Session, clinic_id: int, target_date: date) -> ClinicDayLock:
    """
    Take the (clinic, date) lock that guards position rewrites.

    Positions span every staff queue of the clinic day, so whoever rewrites
    them must hold this on top of their (staff, date) lock. Always taken
    after the staff lock.
    """
    stmt = (
        select(ClinicDayLock)
        .where(ClinicDayLock.clinic_id == clinic_id, ClinicDayLock.lock_date == target_date)
        .with_for_update(nowait=True)
    )
    lock = db.scalar(stmt)
    if lock is not None:
        return lock
    lock = ClinicDayLock(clinic_id=clinic_id, lock_date=target_date)
    db.add(lock)
    try:
        db.flush()
    except IntegrityError as exc:
        raise LockContention(None, target_date, clinic_id=clinic_id) from exc
    return lock


@contextmanager
def queue_transaction(db: Session, staff_id: int, target_date: date) -> Iterator[Session]:
    """
    Run a queue mutation atomically under the (staff, date) lock.

    Commits when the block finishes and rolls back on any error, so positions,
    statuses and audit rows either all change or none do.
    """
    try:
        acquire_queue_lock(db, staff_id, target_date)
        yield db
        db.commit()
    except OperationalError as exc:
        db.rollback()
        if _is_lock_contention(exc):
            raise LockContention(staff_id, target_date) from exc
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.exception("Queue invariant rejected by database for staff %s on %s", staff_id, target_date)
        raise InvariantViolation(f"Database rejected queue change: {exc.orig}") from exc
    except Exception:
        db.rollback()
        raise


def with_lock_retry(
    operation: Callable[[], T],
    *,
    attempts: int | None = None,
    base_sleep: float | None = None,
    max_sleep: float | None = None,
) -> T:
    """Call ``operation``, retrying on ``LockContention`` with exponential backoff."""
    max_attempts = settings.lock_retry_attempts if attempts is None else attempts
    base = settings.lock_retry_base_sleep if base_sleep is None else base_sleep
    ceiling = settings.lock_retry_max_sleep if max_sleep is None else max_sleep
    attempt = 0
    while True:
        try:
            return operation()
        except LockContention as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "Queue lock still busy for staff %s on %s after %s retries",
                    exc.staff_id,
                    exc.target_date,
                    attempt,
                )
                raise
            sleep_for = min(base * (2**attempt), ceiling)
            attempt += 1
            logger.warning(
                "Queue lock busy for staff %s on %s, retry %s in %.2fs",
                exc.staff_id,
                exc.target_date,
                attempt,
                sleep_for,
            )
            time.sleep(sleep_for)
