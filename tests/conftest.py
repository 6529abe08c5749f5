"""
Shared fixtures for the HTTP tests.

The app runs against an in-memory SQLite database, the in-memory WhatsApp
dispatcher and no intent classifier, so tests are fast and offline.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from prima import settings
from prima.app import app
from prima.db import models  # noqa: F401
from prima.db.base import Base
from prima.db.enums import ReminderStatus, VerificationStatus
from prima.db.models import Patient, Reminder
from prima.db.session import get_db
from prima.gateway.channels import DispatcherRegistry
from prima.gateway.dispatchers.test_harness_dispatcher import TestHarnessDispatcher

TOKEN = "test-webhook-token"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def harness():
    return TestHarnessDispatcher()


@pytest.fixture
def test_client(session_factory, harness, monkeypatch):
    registry = DispatcherRegistry()
    registry.register(harness)

    monkeypatch.setattr(settings, "WEBHOOK_TOKEN", TOKEN)
    monkeypatch.setattr(settings, "USE_LLM", False)
    monkeypatch.setattr("prima.routers.webhook.get_dispatcher_registry", lambda: registry)
    monkeypatch.setattr("prima.routers.webhook.get_classifier", lambda: None)
    monkeypatch.setattr("prima.routers.webhook.get_redis", lambda: None)
    monkeypatch.setattr("prima.routers.prompts.get_dispatcher_registry", lambda: registry)

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def token():
    return TOKEN


@pytest.fixture
def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def patient(db):
    record = Patient(
        name="Budi",
        phone_number="081234567890",
        verification_status=VerificationStatus.PENDING.value,
    )
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def pending_reminder(db, patient):
    patient.verification_status = VerificationStatus.VERIFIED.value
    reminder = Reminder(
        patient_id=patient.id,
        medication_name="Tamoxifen",
        status=ReminderStatus.PENDING.value,
    )
    db.add(reminder)
    db.commit()
    return reminder
