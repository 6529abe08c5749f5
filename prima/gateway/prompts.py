"""
Prompt Sender: outbound messages that expect a specific reply shape.

Sending a prompt opens the matching conversation context, which is what
lets the router hand the reply to the right state machine:

  send_verification(patient)  → context "verification" (48h)
  send_reminder(reminder)     → reminder SENT + context "reminder_confirmation"
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from prima.db.base import utcnow
from prima.db.enums import (
    ConversationContext,
    MessageDirection,
    ReminderStatus,
    VerificationAction,
)
from prima.db.models import Patient, Reminder, VerificationLog
from prima.gateway import templates
from prima.gateway.channels import DeliveryResult, DispatcherRegistry, OutboundMessage
from prima.gateway.conversation import ConversationStore
from prima.gateway.handlers.patient_resolver import normalize_phone

logger = logging.getLogger("gateway.prompts")


class PromptSender:
    def __init__(self, db: Session, dispatcher_registry: DispatcherRegistry) -> None:
        self._db = db
        self._dispatchers = dispatcher_registry
        self._conversations = ConversationStore(db)

    async def send_verification(self, patient: Patient) -> DeliveryResult:
        phone = normalize_phone(patient.phone_number)
        text = templates.verification_prompt(patient.name)
        delivery = await self._send(patient, phone, text, "verification")

        self._db.add(VerificationLog(
            patient_id=patient.id,
            action=VerificationAction.SENT.value,
            message_sent=text,
            additional_info={"delivered": delivery.success, "error": delivery.error},
        ))
        self._db.commit()
        if delivery.success:
            self._conversations.set_context(
                patient.id, phone, ConversationContext.VERIFICATION,
                related_entity_type="verification",
            )
        return delivery

    async def send_reminder(self, reminder: Reminder) -> DeliveryResult:
        patient = reminder.patient
        phone = normalize_phone(patient.phone_number)
        text = templates.reminder_prompt(patient.name, reminder.medication_name, reminder.message)
        delivery = await self._send(patient, phone, text, "reminder")

        if not delivery.success:
            reminder.status = ReminderStatus.FAILED.value
            self._db.commit()
            logger.warning("Reminder %s failed to send: %s", reminder.id, delivery.error)
            return delivery

        reminder.status = ReminderStatus.SENT.value
        reminder.sent_at = utcnow()
        self._db.commit()
        self._conversations.set_context(
            patient.id, phone, ConversationContext.REMINDER_CONFIRMATION,
            related_entity_type="reminder", related_entity_id=reminder.id,
        )
        return delivery

    async def _send(self, patient: Patient, phone: str, text: str, message_type: str) -> DeliveryResult:
        delivery = await self._dispatchers.dispatch(OutboundMessage(
            phone=phone,
            message=text,
            metadata={"patient_id": str(patient.id), "message_type": message_type},
        ))
        self._conversations.append_message(
            patient.id, phone, MessageDirection.OUTBOUND, text, message_type=message_type,
        )
        return delivery
