import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-clinic-queue-suite-0001")

from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinic_queue.core.settings import settings
from clinic_queue.db.session import get_db
from clinic_queue.models import (
    Appointment,
    AppointmentStatus,
    Base,
    Clinic,
    ClinicStaff,
    GuestPatient,
    Patient,
)
from clinic_queue.services.notifications import notifier

# A Monday.
QUEUE_DAY = date(2026, 3, 2)
DAY_START = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_notifier():
    notifier.clear()
    yield
    notifier.clear()


@pytest.fixture
def events():
    received = []
    notifier.register(received.append)
    return received


@pytest.fixture
def clinic(db):
    clinic = Clinic(
        name="Riverside Family Clinic",
        specialty="General practice",
        city="Leeds",
        queue_mode="fluid",
        grace_period_minutes=15,
    )
    db.add(clinic)
    db.commit()
    return clinic


@pytest.fixture
def staff(db, clinic):
    member = ClinicStaff(clinic_id=clinic.id, full_name="Dr Amara Osei")
    db.add(member)
    db.commit()
    return member


@pytest.fixture
def patients(db):
    names = ["Ada Brennan", "Ben Okafor", "Chloe Martin", "Dev Patel", "Ewa Nowak", "Farah Aziz"]
    rows = [Patient(full_name=name, phone_number=f"07700 90000{idx}") for idx, name in enumerate(names)]
    db.add_all(rows)
    db.commit()
    return rows


@pytest.fixture
def guest(db):
    row = GuestPatient(full_name="Walk-in Guest", phone_number="07700 900999")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def make_appointment(db, clinic, staff):
    counter = {"n": 0}

    def _make(
        patient,
        *,
        status=AppointmentStatus.waiting,
        priority_score=100,
        is_present=True,
        scheduled_start=None,
        created_at=None,
        staff_id=None,
        guest=False,
    ):
        counter["n"] += 1
        created = created_at or DAY_START + timedelta(minutes=counter["n"])
        appt = Appointment(
            clinic_id=clinic.id,
            staff_id=staff_id or staff.id,
            patient_id=None if guest else patient.id,
            guest_patient_id=patient.id if guest else None,
            appointment_date=QUEUE_DAY,
            scheduled_start=scheduled_start,
            status=status,
            priority_score=priority_score,
            is_present=is_present,
            created_at=created,
            updated_at=created,
        )
        db.add(appt)
        db.commit()
        return appt

    return _make


@pytest.fixture
def api_client(session_factory):
    from clinic_queue.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def create_access_token(subject: str, expires_minutes: int = 30) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_alg)


@pytest.fixture
def auth_headers():
    token = create_access_token("frontdesk-7")
    return {"Authorization": f"Bearer {token}"}
