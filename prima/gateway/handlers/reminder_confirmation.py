"""
Reminder Confirmation State Machine: did the patient take their medicine?

A reminder is awaiting confirmation while ``status = SENT`` and
``confirmation_status = PENDING``.

    done     → status DELIVERED, confirmation CONFIRMED, response recorded
    not_yet  → response recorded only; stays SENT / PENDING so it can
               still be confirmed later
    help     → response recorded, volunteer notified (high priority)

All writes are conditional UPDATEs on the row id fetched just before, with
the awaiting-confirmation predicate in the WHERE clause.  A replay that
slips past the idempotency ledger therefore changes nothing.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from prima.db.base import utcnow
from prima.db.enums import (
    ConfirmationStatus,
    NotificationPriority,
    ReminderStatus,
)
from prima.db.models import Patient, Reminder, VolunteerNotification
from prima.gateway import templates
from prima.gateway.conversation import ConversationStore
from prima.gateway.keywords import ConfirmationMatch, match_confirmation
from prima.gateway.outcomes import HandlerOutcome

logger = logging.getLogger("gateway.reminder_confirmation")


def awaiting_confirmation():
    """SQL predicate for reminders still waiting on the patient."""
    return (
        (Reminder.status == ReminderStatus.SENT.value)
        & (Reminder.confirmation_status == ConfirmationStatus.PENDING.value)
    )


class ReminderConfirmationStateMachine:
    """Applies confirmation replies to reminders."""

    def __init__(self, db: Session, conversations: ConversationStore) -> None:
        self._db = db
        self._conversations = conversations

    # ── Lookup ──

    def latest_awaiting(self, patient_id: uuid.UUID) -> Reminder | None:
        """Most recently sent reminder still awaiting confirmation (sent_at desc, limit 1)."""
        return self._db.scalar(
            select(Reminder)
            .where(Reminder.patient_id == patient_id, awaiting_confirmation())
            .order_by(Reminder.sent_at.desc().nulls_last())
            .limit(1)
        )

    def resolve_target(
        self, patient_id: uuid.UUID, related_id: uuid.UUID | None
    ) -> Reminder | None:
        """The reminder a context points at, else the latest awaiting one."""
        if related_id is not None:
            reminder = self._db.scalar(
                select(Reminder).where(
                    Reminder.id == related_id,
                    Reminder.patient_id == patient_id,
                    awaiting_confirmation(),
                )
            )
            if reminder is not None:
                return reminder
            logger.info("Context reminder %s no longer awaiting; using latest", related_id)
        return self.latest_awaiting(patient_id)

    # ── Transitions ──

    def handle_text(
        self, patient: Patient, phone: str, reminder: Reminder, text: str
    ) -> HandlerOutcome:
        """Keyword-match ``text``; unclear replies get a clarification prompt."""
        match = match_confirmation(text)
        if match == ConfirmationMatch.INVALID:
            attempt = self._conversations.increment_attempt(patient.id, phone)
            logger.info(
                "Unclear confirmation reply from patient %s for reminder %s (attempt %d)",
                patient.id, reminder.id, attempt,
            )
            return HandlerOutcome(
                action="confirmation_clarification",
                reply=templates.confirmation_clarification(patient.name, attempt),
                message_type="confirmation",
                intent=match.value,
            )
        return self.apply(patient, reminder, match, text)

    def apply(
        self,
        patient: Patient,
        reminder: Reminder,
        match: ConfirmationMatch,
        response_text: str,
    ) -> HandlerOutcome:
        now = utcnow()
        values = {
            "confirmation_response": response_text,
            "confirmation_response_at": now,
        }
        if match == ConfirmationMatch.DONE:
            values["status"] = ReminderStatus.DELIVERED.value
            values["confirmation_status"] = ConfirmationStatus.CONFIRMED.value

        if not self._conditional_update(reminder.id, values):
            self._conversations.clear_context(patient.id)
            return HandlerOutcome(action="confirmation_already_recorded", message_type="confirmation")

        self._conversations.clear_context(patient.id)
        logger.info(
            "Reminder %s for patient %s: %s", reminder.id, patient.id, match.value,
        )
        if match == ConfirmationMatch.DONE:
            reply = templates.confirmation_taken(patient.name)
        else:
            reply = templates.confirmation_not_yet(patient.name)
        return HandlerOutcome(
            action=f"confirmation_{match.value}",
            reply=reply,
            message_type="confirmation",
            intent=match.value,
            confidence=1.0,
        )

    def request_help(
        self, patient: Patient, reminder: Reminder | None, response_text: str
    ) -> HandlerOutcome:
        """Patient picked "Butuh Bantuan": record it and page a volunteer."""
        if reminder is not None:
            self._conditional_update(reminder.id, {
                "confirmation_response": response_text,
                "confirmation_response_at": utcnow(),
            })
        self._db.add(VolunteerNotification(
            patient_id=patient.id,
            message=f"{patient.name} meminta bantuan: {response_text}",
            priority=NotificationPriority.HIGH.value,
            escalation_reason="patient_requested_help",
            intent="help",
            confidence=1.0,
            patient_context={"reminder_id": str(reminder.id) if reminder else None},
        ))
        self._db.commit()
        self._conversations.clear_context(patient.id)
        logger.warning("Patient %s requested help; volunteer notified", patient.id)
        return HandlerOutcome(
            action="help_requested",
            reply=templates.help_requested(patient.name),
            message_type="confirmation",
            intent="help",
            confidence=1.0,
        )

    def _conditional_update(self, reminder_id: uuid.UUID, values: dict) -> bool:
        result = self._db.execute(
            update(Reminder)
            .where(Reminder.id == reminder_id, awaiting_confirmation())
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self._db.commit()
        if result.rowcount != 1:
            logger.info("Reminder %s no longer awaiting confirmation; no-op", reminder_id)
            return False
        return True
