"""
Shared fixtures for gateway tests: an in-memory SQLite database, record
factories and an in-memory WhatsApp dispatcher.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from prima.db import models  # noqa: F401  (registers mappers)
from prima.db.base import Base
from prima.db.enums import ConfirmationStatus, ReminderStatus, VerificationStatus
from prima.db.models import Patient, Reminder
from prima.gateway.channels import DispatcherRegistry
from prima.gateway.dispatchers.test_harness_dispatcher import TestHarnessDispatcher


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def harness():
    return TestHarnessDispatcher()


@pytest.fixture
def registry(harness):
    registry = DispatcherRegistry()
    registry.register(harness)
    return registry


@pytest.fixture
def make_patient(db):
    def _make(
        name: str = "Budi",
        phone: str = "6281234567890",
        status: VerificationStatus = VerificationStatus.VERIFIED,
        is_active: bool = True,
        created_at: datetime | None = None,
    ) -> Patient:
        patient = Patient(
            name=name,
            phone_number=phone,
            verification_status=status.value,
            is_active=is_active,
        )
        if created_at is not None:
            patient.created_at = created_at
        db.add(patient)
        db.commit()
        return patient
    return _make


@pytest.fixture
def make_reminder(db):
    def _make(
        patient: Patient,
        sent_hours_ago: float | None = 1.0,
        status: ReminderStatus = ReminderStatus.SENT,
        confirmation: ConfirmationStatus = ConfirmationStatus.PENDING,
        medication: str = "Tamoxifen",
    ) -> Reminder:
        sent_at = None
        if sent_hours_ago is not None:
            sent_at = datetime.now(timezone.utc) - timedelta(hours=sent_hours_ago)
        reminder = Reminder(
            patient_id=patient.id,
            medication_name=medication,
            status=status.value,
            sent_at=sent_at,
            confirmation_status=confirmation.value,
        )
        db.add(reminder)
        db.commit()
        return reminder
    return _make
