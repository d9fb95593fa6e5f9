import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from clinic_queue.core.errors import (
    AlreadyClosedError,
    AlreadyServingError,
    CapacityExceededError,
    InvalidPatientReference,
    InvalidStateError,
    InvariantViolation,
    LockContention,
    NotFoundError,
    NotPresentError,
    QueueEmptyError,
    QueueEngineError,
    ReopenNotAllowedError,
)
from clinic_queue.core.settings import settings, validate_settings
from clinic_queue.db.session import engine
from clinic_queue.models import Base
from clinic_queue.routers.absences import router as absences_router
from clinic_queue.routers.audit import router as audit_router
from clinic_queue.routers.day_closures import router as day_closures_router
from clinic_queue.routers.queue import router as queue_router
from clinic_queue.routers.waitlist import router as waitlist_router
from clinic_queue.services.notifications import QueueEvent, notifier

app = FastAPI(title="Clinic Queue API", version="0.1.0")
logger = logging.getLogger("clinic_queue.startup")
event_logger = logging.getLogger("clinic_queue.events")

RETRY_AFTER_SECONDS = 1

_STATUS_BY_ERROR: list[tuple[type[QueueEngineError], int]] = [
    (NotFoundError, 404),
    (InvalidPatientReference, 422),
    (InvalidStateError, 409),
    (AlreadyServingError, 409),
    (NotPresentError, 409),
    (QueueEmptyError, 409),
    (AlreadyClosedError, 409),
    (ReopenNotAllowedError, 409),
    (CapacityExceededError, 409),
    (LockContention, 503),
    (InvariantViolation, 500),
]


def status_for_error(exc: QueueEngineError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


@app.exception_handler(QueueEngineError)
async def queue_engine_error_handler(request: Request, exc: QueueEngineError):
    request_id = request.headers.get("x-request-id")
    status_code = status_for_error(exc)
    if status_code >= 500 and not exc.retryable:
        logger.error(
            "Queue invariant violated: %s",
            exc.message,
            exc_info=exc,
            extra={"request_id": request_id},
        )
    payload = {"detail": exc.message, "error": type(exc).__name__, "retryable": exc.retryable}
    if request_id:
        payload["request_id"] = request_id
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=payload, headers=headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


def _log_queue_event(event: QueueEvent) -> None:
    event_logger.debug(
        "Queue event %s for appointment %s (position %s)",
        event.event_type.value,
        event.appointment_id,
        event.queue_position,
    )


@app.on_event("startup")
def startup():
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)
    notifier.register(_log_queue_event)
    logger.info("Clinic queue API started (%s).", settings.app_env)


@app.on_event("shutdown")
def shutdown():
    notifier.unregister(_log_queue_event)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(queue_router)
app.include_router(absences_router)
app.include_router(waitlist_router)
app.include_router(day_closures_router)
app.include_router(audit_router)
