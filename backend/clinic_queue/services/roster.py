from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_queue.core.errors import InvalidStateError, NotFoundError
from clinic_queue.models.clinic import ClinicStaff


def get_active_staff(db: Session, clinic_id: int) -> list[ClinicStaff]:
    stmt = (
        select(ClinicStaff)
        .where(ClinicStaff.clinic_id == clinic_id, ClinicStaff.is_active.is_(True))
        .order_by(ClinicStaff.full_name.asc(), ClinicStaff.id.asc())
    )
    return list(db.scalars(stmt))


def require_active_staff(db: Session, clinic_id: int, staff_id: int) -> ClinicStaff:
    staff = db.get(ClinicStaff, staff_id)
    if staff is None or staff.clinic_id != clinic_id:
        raise NotFoundError("Staff", staff_id)
    if not staff.is_active:
        raise InvalidStateError(f"Staff {staff_id} is not active")
    return staff
