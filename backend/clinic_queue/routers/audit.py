from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from clinic_queue.db.session import get_db
from clinic_queue.deps import get_current_actor
from clinic_queue.schemas.audit import QueueOverrideOut
from clinic_queue.services.audit import list_overrides

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=list[QueueOverrideOut])
def list_audit(
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
    clinic_id: int | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return list_overrides(db, clinic_id=clinic_id, limit=limit, offset=offset)


@router.get("/appointments/{appointment_id}", response_model=list[QueueOverrideOut])
def appointment_audit(
    appointment_id: int,
    db: Session = Depends(get_db),
    _actor: str = Depends(get_current_actor),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    return list_overrides(db, appointment_id=appointment_id, limit=limit, offset=offset)
