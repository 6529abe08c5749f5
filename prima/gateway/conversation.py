"""
Conversation State Store: what reply (if any) we are waiting for.

One ``ConversationState`` row per patient + phone.  A context is set when
an outbound prompt expects a specific answer shape and cleared once a
matching reply is handled.  Expiry is evaluated when the context is read;
nothing sweeps old rows in the background.

The message log is append-only and audit-only.  Writing to it must never
break message handling, so ``append_message`` swallows and logs its own
failures.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from prima import settings
from prima.db.base import as_utc, utcnow
from prima.db.enums import ConversationContext, MessageDirection
from prima.db.models import ConversationMessage, ConversationState

logger = logging.getLogger("gateway.conversation")

DEFAULT_TTLS: dict[ConversationContext, timedelta] = {
    ConversationContext.VERIFICATION: timedelta(hours=settings.VERIFICATION_CONTEXT_HOURS),
    ConversationContext.REMINDER_CONFIRMATION: timedelta(hours=settings.CONFIRMATION_CONTEXT_HOURS),
    ConversationContext.GENERAL_INQUIRY: timedelta(hours=settings.DEFAULT_CONTEXT_HOURS),
}


@dataclass
class ActiveContext:
    """A non-expired expectation read from the store."""
    state_id: uuid.UUID
    context: ConversationContext
    related_entity_type: str | None
    related_entity_id: uuid.UUID | None
    expires_at: datetime
    attempt_count: int = 0


class ConversationStore:
    """Per-request view over conversation_states and conversation_messages."""

    def __init__(self, db: Session) -> None:
        self._db = db

    # ── Context ──

    def get_active_context(self, patient_id: uuid.UUID) -> ActiveContext | None:
        """The patient's live context, or None if absent or expired."""
        now = utcnow()
        states = self._db.scalars(
            select(ConversationState)
            .where(
                ConversationState.patient_id == patient_id,
                ConversationState.current_context.is_not(None),
            )
            .order_by(ConversationState.context_set_at.desc())
        )
        for state in states:
            expires_at = as_utc(state.expires_at)
            if expires_at is None or expires_at <= now:
                logger.debug(
                    "Context %s for patient %s expired at %s",
                    state.current_context, patient_id, expires_at,
                )
                continue
            try:
                context = ConversationContext(state.current_context)
            except ValueError:
                logger.warning(
                    "Unknown context %r on state %s; ignoring",
                    state.current_context, state.id,
                )
                continue
            return ActiveContext(
                state_id=state.id,
                context=context,
                related_entity_type=state.related_entity_type,
                related_entity_id=state.related_entity_id,
                expires_at=expires_at,
                attempt_count=state.attempt_count,
            )
        return None

    def get_or_create_state(
        self, patient_id: uuid.UUID, phone_number: str
    ) -> ConversationState:
        state = self._db.scalar(
            select(ConversationState).where(
                ConversationState.patient_id == patient_id,
                ConversationState.phone_number == phone_number,
            )
        )
        if state is None:
            state = ConversationState(patient_id=patient_id, phone_number=phone_number)
            self._db.add(state)
            self._db.flush()
        return state

    def set_context(
        self,
        patient_id: uuid.UUID,
        phone_number: str,
        context: ConversationContext,
        related_entity_type: str | None = None,
        related_entity_id: uuid.UUID | None = None,
        ttl: timedelta | None = None,
    ) -> ConversationState:
        """Create or overwrite the patient's context (one live context per patient)."""
        now = utcnow()
        ttl = ttl or DEFAULT_TTLS.get(context, timedelta(hours=settings.DEFAULT_CONTEXT_HOURS))

        state = self.get_or_create_state(patient_id, phone_number)
        self._db.execute(
            update(ConversationState)
            .where(
                ConversationState.patient_id == patient_id,
                ConversationState.id != state.id,
            )
            .values(current_context=None, related_entity_type=None,
                    related_entity_id=None, expires_at=None, attempt_count=0)
        )
        state.current_context = context.value
        state.related_entity_type = related_entity_type
        state.related_entity_id = related_entity_id
        state.context_set_at = now
        state.expires_at = now + ttl
        state.attempt_count = 0
        self._db.commit()
        logger.info(
            "Context %s set for patient %s until %s",
            context.value, patient_id, state.expires_at.isoformat(),
        )
        return state

    def clear_context(self, patient_id: uuid.UUID) -> None:
        """Null the context; history and counters stay."""
        self._db.execute(
            update(ConversationState)
            .where(ConversationState.patient_id == patient_id)
            .values(current_context=None, related_entity_type=None,
                    related_entity_id=None, expires_at=None, attempt_count=0)
        )
        self._db.commit()

    def increment_attempt(self, patient_id: uuid.UUID, phone_number: str) -> int:
        """Count one more unrecognised reply in the current context."""
        state = self.get_or_create_state(patient_id, phone_number)
        state.attempt_count = (state.attempt_count or 0) + 1
        self._db.commit()
        return state.attempt_count

    # ── Message log ──

    def append_message(
        self,
        patient_id: uuid.UUID,
        phone_number: str,
        direction: MessageDirection,
        message: str,
        message_type: str = "general",
        intent: str | None = None,
        confidence: float | None = None,
    ) -> None:
        """Log a message. Failures are logged and never raised."""
        try:
            now = utcnow()
            state = self.get_or_create_state(patient_id, phone_number)
            self._db.add(
                ConversationMessage(
                    conversation_state_id=state.id,
                    direction=direction.value,
                    message=message,
                    message_type=message_type,
                    intent=intent,
                    confidence=confidence,
                    processed_at=now,
                )
            )
            state.message_count = (state.message_count or 0) + 1
            state.last_message = message
            state.last_message_at = now
            self._db.commit()
        except Exception as exc:
            logger.warning(
                "Failed to log %s message for patient %s: %s",
                direction.value, patient_id, exc,
            )
            self._db.rollback()

    def recent_messages(
        self, patient_id: uuid.UUID, limit: int = 10
    ) -> list[ConversationMessage]:
        """Newest-last slice of the patient's history across their numbers."""
        rows = self._db.scalars(
            select(ConversationMessage)
            .join(ConversationState,
                  ConversationMessage.conversation_state_id == ConversationState.id)
            .where(ConversationState.patient_id == patient_id)
            .order_by(ConversationMessage.created_at.desc())
            .limit(limit)
        )
        return list(reversed(list(rows)))
