"""Shared fixtures for the scheduling backend tests."""

from datetime import datetime, timezone

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.patient import Patient
from models.pharmacy import Pharmacy
from models.user import User
from scheduling import clock
from scheduling.context import SessionContext
from security.password import hash_password

# 2024-05-27 10:00 in America/Lima (UTC-5, no DST)
NOW = datetime(2024, 5, 27, 15, 0, tzinfo=timezone.utc)
LIMA = "America/Lima"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def frozen_now(monkeypatch):
    """Pin the server clock used by the routes."""
    monkeypatch.setattr(clock, "utcnow", lambda: NOW)
    return NOW


@pytest.fixture
def pharmacy(app) -> Pharmacy:
    p = Pharmacy(name="Farmacia Centro", business_hours="Lunes a sábado 09:00 - 13:00 y 14:00 - 18:00")
    db.session.add(p)
    db.session.commit()
    return p


@pytest.fixture
def patient(app) -> Patient:
    user = User(email="ana@example.com", password_hash=hash_password("s3cret-pass", rounds=4))
    db.session.add(user)
    db.session.flush()
    p = Patient(user_id=user.id, full_name="Ana Pérez")
    db.session.add(p)
    db.session.commit()
    return p


@pytest.fixture
def ctx(patient) -> SessionContext:
    return SessionContext(user_id=patient.user_id, patient_id=patient.id, timezone=LIMA)


@pytest.fixture
def auth_client(client):
    """Client logged in as a freshly registered patient."""
    resp = client.post("/auth/register", json={
        "email": "luis@example.com",
        "password": "correct-horse",
        "full_name": "Luis Gómez",
    })
    assert resp.status_code == 201
    resp = client.post("/auth/login", json={"email": "luis@example.com", "password": "correct-horse"})
    assert resp.status_code == 200
    return client
