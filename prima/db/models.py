"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from prima.db.base import Base, utcnow
from prima.db.enums import (
    ConfirmationStatus,
    NotificationPriority,
    NotificationStatus,
    ReminderStatus,
    VerificationStatus,
)


class Patient(Base):
    """
    A patient registered by a volunteer.

    ``verification_status`` is only changed by the verification flow;
    ``is_active`` flips to false when the patient unsubscribes.
    """

    __tablename__ = "patients"
    __table_args__ = (Index("idx_patients_phone_active", "phone_number", "is_active"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    verification_status: Mapped[str] = mapped_column(
        String(20), default=VerificationStatus.PENDING.value, nullable=False
    )
    verification_response_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    assigned_volunteer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )

    reminders: Mapped[list[Reminder]] = relationship(back_populates="patient")


class Reminder(Base):
    """
    One scheduled reminder and its delivery/confirmation outcome.

    Awaiting confirmation iff status=SENT and confirmation_status=PENDING.
    """

    __tablename__ = "reminders"
    __table_args__ = (
        Index("idx_reminders_patient_status", "patient_id", "status", "sent_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    reminder_type: Mapped[str] = mapped_column(String(30), default="medication", nullable=False)
    message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    medication_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ReminderStatus.PENDING.value, nullable=False
    )
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmation_status: Mapped[str] = mapped_column(
        String(20), default=ConfirmationStatus.PENDING.value, nullable=False
    )
    confirmation_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmation_response_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )

    patient: Mapped[Patient] = relationship(back_populates="reminders")


class ConversationState(Base):
    """At most one row per patient + phone; the context inside it may be expired."""

    __tablename__ = "conversation_states"
    __table_args__ = (
        UniqueConstraint("patient_id", "phone_number", name="uq_conversation_patient_phone"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    current_context: Mapped[str | None] = mapped_column(String(40), nullable=True)
    related_entity_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    related_entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    context_set_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )


class ConversationMessage(Base):
    """Append-only conversation log. Never updated after insert."""

    __tablename__ = "conversation_messages"
    __table_args__ = (
        Index("idx_conversation_messages_state", "conversation_state_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_state_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversation_states.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(40), default="general", nullable=False)
    intent: Mapped[str | None] = mapped_column(String(40), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class VerificationLog(Base):
    """Immutable audit row for every verification-related event."""

    __tablename__ = "verification_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    message_sent: Mapped[str | None] = mapped_column(Text, nullable=True)
    patient_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_result: Mapped[str | None] = mapped_column(String(20), nullable=True)
    additional_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class VolunteerNotification(Base):
    """A request for a human volunteer to look at a patient conversation."""

    __tablename__ = "volunteer_notifications"
    __table_args__ = (Index("idx_volunteer_notifications_status", "status", "priority"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(
        String(10), default=NotificationPriority.MEDIUM.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(10), default=NotificationStatus.PENDING.value, nullable=False
    )
    assigned_volunteer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    intent: Mapped[str | None] = mapped_column(String(40), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    patient_context: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    response: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )


class ManualConfirmation(Base):
    __tablename__ = "manual_confirmations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    reminder_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("reminders.id", ondelete="SET NULL"), nullable=True
    )
    volunteer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    medications_taken: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class ProcessedEvent(Base):
    """Database-backed idempotency marker, one row per inbound fingerprint."""

    __tablename__ = "processed_events"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
