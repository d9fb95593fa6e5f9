from datetime import date

from sqlalchemy.exc import OperationalError

from clinic_queue.models import ClinicStaff
from clinic_queue.services import locking
from clinic_queue.services.locking import LOCK_NOT_AVAILABLE_SQLSTATE

QUEUE_DAY = date(2026, 3, 2)


class _LockNotAvailable(Exception):
    sqlstate = LOCK_NOT_AVAILABLE_SQLSTATE


def _day(clinic, staff):
    return {"clinic_id": clinic.id, "staff_id": staff.id, "date": QUEUE_DAY.isoformat()}


def _book(api_client, auth_headers, clinic, staff, patient_id, **extra):
    body = {**_day(clinic, staff), "patient_id": patient_id, **extra}
    return api_client.post("/queue/slots", json=body, headers=auth_headers)


def test_health(api_client):
    res = api_client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_queue_routes_require_a_token(api_client, clinic, staff):
    res = api_client.post("/queue/call-next", json=_day(clinic, staff))
    assert res.status_code == 401

    res = api_client.post(
        "/queue/call-next", json=_day(clinic, staff), headers={"Authorization": "Bearer nope"}
    )
    assert res.status_code == 401


def test_book_check_in_and_call(api_client, auth_headers, clinic, staff, patients):
    res = _book(api_client, auth_headers, clinic, staff, patients[0].id)
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["waitlisted"] is False
    appt = body["appointment"]
    assert appt["status"] == "scheduled"
    assert appt["queue_position"] == 1
    assert appt["override_by"] == "frontdesk-7"

    res = api_client.post("/queue/call-next", json=_day(clinic, staff), headers=auth_headers)
    assert res.status_code == 409
    assert res.json()["error"] == "NotPresentError"
    assert res.json()["retryable"] is False

    res = api_client.post(f"/queue/appointments/{appt['id']}/check-in", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["is_present"] is True

    res = api_client.post("/queue/call-next", json=_day(clinic, staff), headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["status"] == "in_progress"

    res = api_client.post("/queue/call-next", json=_day(clinic, staff), headers=auth_headers)
    assert res.status_code == 409
    assert res.json()["error"] == "AlreadyServingError"

    res = api_client.get(
        "/queue/schedule",
        params={"clinic_id": clinic.id, "staff_id": staff.id, "date": QUEUE_DAY.isoformat()},
        headers=auth_headers,
    )
    assert res.status_code == 200
    assert res.json()["entries"][0]["status"] == "in_progress"

    res = api_client.get(f"/audit/appointments/{appt['id']}", headers=auth_headers)
    assert res.status_code == 200
    actions = [row["action_type"] for row in res.json()]
    assert sorted(actions) == ["book", "call_next", "check_in"]


def test_empty_queue_is_a_conflict(api_client, auth_headers, clinic, staff):
    res = api_client.post("/queue/call-next", json=_day(clinic, staff), headers=auth_headers)
    assert res.status_code == 409
    assert res.json()["error"] == "QueueEmptyError"


def test_capacity_and_patient_errors(api_client, auth_headers, db, clinic, staff, patients):
    clinic.daily_capacity_limit = 1
    db.commit()

    assert _book(api_client, auth_headers, clinic, staff, patients[0].id).status_code == 201
    res = _book(api_client, auth_headers, clinic, staff, patients[1].id)
    assert res.status_code == 409
    assert res.json()["error"] == "CapacityExceededError"

    res = api_client.post("/queue/slots", json=_day(clinic, staff), headers=auth_headers)
    assert res.status_code == 422
    assert res.json()["error"] == "InvalidPatientReference"

    res = _book(api_client, auth_headers, clinic, staff, 9999)
    assert res.status_code == 404


def test_overflow_goes_to_waitlist_and_listing(api_client, auth_headers, db, clinic, staff, patients):
    clinic.daily_capacity_limit = 1
    clinic.allow_overflow = True
    db.commit()
    _book(api_client, auth_headers, clinic, staff, patients[0].id)

    res = _book(api_client, auth_headers, clinic, staff, patients[1].id, waitlist_priority=2)
    assert res.status_code == 201
    assert res.json()["waitlisted"] is True
    assert res.json()["waitlist_entry"]["status"] == "waiting"

    res = api_client.get("/waitlist", params={"clinic_id": clinic.id}, headers=auth_headers)
    assert res.status_code == 200
    assert [row["patient_id"] for row in res.json()] == [patients[1].id]


def test_end_day_then_second_close_conflicts(api_client, auth_headers, clinic, staff, patients):
    _book(api_client, auth_headers, clinic, staff, patients[0].id)

    res = api_client.post("/day-closures", json=_day(clinic, staff), headers=auth_headers)
    assert res.status_code == 201
    closure = res.json()
    assert len(closure["marked_no_show_ids"]) == 1

    res = api_client.post("/day-closures", json=_day(clinic, staff), headers=auth_headers)
    assert res.status_code == 409
    assert res.json()["error"] == "AlreadyClosedError"

    res = api_client.post(
        f"/day-closures/{closure['closure_id']}/reopen", json={"reason": ""}, headers=auth_headers
    )
    assert res.status_code == 422

    res = api_client.post(
        f"/day-closures/{closure['closure_id']}/reopen",
        json={"reason": "Closed too early"},
        headers=auth_headers,
    )
    assert res.status_code == 200
    assert res.json()["restored_ids"] == closure["marked_no_show_ids"]


def test_mark_absent_over_http(api_client, auth_headers, clinic, staff, patients):
    appt = _book(api_client, auth_headers, clinic, staff, patients[0].id, is_walk_in=True).json()["appointment"]

    res = api_client.post(
        f"/absences/appointments/{appt['id']}", json={"reason": "Stepped out"}, headers=auth_headers
    )
    assert res.status_code == 201
    assert res.json()["resolution"] is None

    res = api_client.get(
        "/absences", params={"clinic_id": clinic.id, "date": QUEUE_DAY.isoformat()}, headers=auth_headers
    )
    assert [row["appointment_id"] for row in res.json()] == [appt["id"]]

    res = api_client.post(f"/absences/appointments/{appt['id']}/resolve", json={}, headers=auth_headers)
    assert res.status_code == 200


def test_unknown_appointment_is_not_found(api_client, auth_headers):
    res = api_client.post("/queue/appointments/4242/complete", headers=auth_headers)
    assert res.status_code == 404
    assert res.json()["error"] == "NotFoundError"


def test_busy_queue_returns_retry_after(api_client, auth_headers, clinic, staff, patients, monkeypatch):
    def _busy(session, staff_id, target_date):
        raise OperationalError("SELECT ... FOR UPDATE NOWAIT", {}, _LockNotAvailable("lock not available"))

    monkeypatch.setattr(locking, "acquire_queue_lock", _busy)
    monkeypatch.setattr(locking.time, "sleep", lambda seconds: None)

    res = _book(api_client, auth_headers, clinic, staff, patients[0].id)

    assert res.status_code == 503
    assert res.headers["Retry-After"] == "1"
    assert res.json()["retryable"] is True


def test_active_staff_listing(api_client, auth_headers, db, clinic, staff):
    db.add(ClinicStaff(clinic_id=clinic.id, full_name="Dr Retired", is_active=False))
    db.commit()

    res = api_client.get("/queue/staff", params={"clinic_id": clinic.id}, headers=auth_headers)

    assert res.status_code == 200
    assert [row["full_name"] for row in res.json()] == ["Dr Amara Osei"]
