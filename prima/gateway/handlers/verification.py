"""
Verification State Machine: a patient's consent to receive reminders.

    PENDING ──accept──────▶ VERIFIED
       │
       ├──decline─────────▶ DECLINED
       │
       └──unsubscribe─────▶ DECLINED + is_active=false + reminders off

Only a PENDING patient can transition.  The status update is a
conditional UPDATE on ``verification_status = 'PENDING'`` so a second
reply (or a racing duplicate) cannot transition twice.  Every handled
reply writes one VerificationLog row.
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from prima.db.base import utcnow
from prima.db.enums import (
    VerificationAction,
    VerificationResult,
    VerificationStatus,
)
from prima.db.models import Patient, Reminder, VerificationLog
from prima.gateway import templates
from prima.gateway.conversation import ConversationStore
from prima.gateway.keywords import VerificationMatch, match_verification
from prima.gateway.outcomes import HandlerOutcome

logger = logging.getLogger("gateway.verification")

_TRANSITIONS: dict[VerificationMatch, tuple[VerificationStatus, VerificationResult]] = {
    VerificationMatch.ACCEPT: (VerificationStatus.VERIFIED, VerificationResult.VERIFIED),
    VerificationMatch.DECLINE: (VerificationStatus.DECLINED, VerificationResult.DECLINED),
    VerificationMatch.UNSUBSCRIBE: (VerificationStatus.DECLINED, VerificationResult.UNSUBSCRIBED),
}


class VerificationStateMachine:
    """Applies verification replies to a patient."""

    def __init__(self, db: Session, conversations: ConversationStore) -> None:
        self._db = db
        self._conversations = conversations

    def handle_text(self, patient: Patient, phone: str, text: str) -> HandlerOutcome:
        """Classify ``text`` strictly by keywords and apply it."""
        return self.apply(patient, phone, match_verification(text), text)

    def apply(
        self,
        patient: Patient,
        phone: str,
        decision: VerificationMatch,
        response_text: str,
        source: str = "text",
    ) -> HandlerOutcome:
        if patient.verification_status != VerificationStatus.PENDING.value:
            return self.record_ignored(patient, response_text, source)

        if decision == VerificationMatch.OTHER:
            return self._clarify(patient, phone, response_text, source)

        new_status, result = _TRANSITIONS[decision]
        values = {
            "verification_status": new_status.value,
            "verification_response_at": utcnow(),
        }
        if decision == VerificationMatch.UNSUBSCRIBE:
            values["is_active"] = False

        updated = self._db.execute(
            update(Patient)
            .where(
                Patient.id == patient.id,
                Patient.verification_status == VerificationStatus.PENDING.value,
            )
            .values(**values)
        )
        if updated.rowcount != 1:
            self._db.rollback()
            logger.info("Patient %s left PENDING concurrently; reply ignored", patient.id)
            self._db.refresh(patient)
            return self.record_ignored(patient, response_text, source)

        if decision == VerificationMatch.UNSUBSCRIBE:
            deactivated = self._deactivate_reminders(patient)
            logger.info("Patient %s unsubscribed; %d reminders deactivated", patient.id, deactivated)

        self._db.add(VerificationLog(
            patient_id=patient.id,
            action=VerificationAction.RESPONDED.value,
            patient_response=response_text,
            verification_result=result.value,
            additional_info={"source": source},
        ))
        self._db.commit()
        self._db.refresh(patient)
        self._conversations.clear_context(patient.id)

        logger.info(
            "Verification for patient %s: %s (%s)",
            patient.id, result.value, source,
        )
        if decision == VerificationMatch.ACCEPT:
            reply = templates.verification_accepted(patient.name)
        elif decision == VerificationMatch.DECLINE:
            reply = templates.verification_declined(patient.name)
        else:
            reply = templates.unsubscribed(patient.name)
        return HandlerOutcome(
            action=f"verification_{result.value}",
            reply=reply,
            message_type="verification",
            intent=decision.value,
            confidence=1.0,
        )

    def record_ignored(self, patient: Patient, response_text: str, source: str = "text") -> HandlerOutcome:
        """A verification-shaped reply from a patient who is no longer PENDING."""
        self._db.add(VerificationLog(
            patient_id=patient.id,
            action=VerificationAction.MESSAGE_RECEIVED.value,
            patient_response=response_text,
            additional_info={"ignored": True, "status": patient.verification_status,
                             "source": source},
        ))
        self._db.commit()
        logger.info(
            "Verification reply from patient %s ignored (status=%s)",
            patient.id, patient.verification_status,
        )
        return HandlerOutcome(action="verification_ignored", handled=False)

    def _clarify(
        self, patient: Patient, phone: str, response_text: str, source: str
    ) -> HandlerOutcome:
        attempt = self._conversations.increment_attempt(patient.id, phone)
        self._db.add(VerificationLog(
            patient_id=patient.id,
            action=VerificationAction.RESPONDED.value,
            patient_response=response_text,
            verification_result=VerificationResult.PENDING.value,
            additional_info={"attempt": attempt, "source": source},
        ))
        self._db.commit()
        logger.info("Unclear verification reply from patient %s (attempt %d)", patient.id, attempt)
        return HandlerOutcome(
            action="verification_clarification",
            reply=templates.verification_clarification(patient.name, attempt),
            message_type="verification",
            intent=VerificationMatch.OTHER.value,
        )

    def _deactivate_reminders(self, patient: Patient) -> int:
        result = self._db.execute(
            update(Reminder)
            .where(Reminder.patient_id == patient.id, Reminder.is_active.is_(True))
            .values(is_active=False)
        )
        return result.rowcount
