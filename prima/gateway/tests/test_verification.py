"""
Tests for the Verification State Machine.

Covers:
  - PENDING → VERIFIED / DECLINED / unsubscribed
  - One VerificationLog row per transition
  - Unsubscribe deactivates the patient and every reminder
  - Unclear replies: escalating clarification, context kept open
  - Re-entrancy: a resolved patient never transitions again
"""

from sqlalchemy import select

from prima.db.enums import ConversationContext, VerificationStatus
from prima.db.models import Reminder, VerificationLog
from prima.gateway.conversation import ConversationStore
from prima.gateway.handlers.verification import VerificationStateMachine
from prima.gateway.keywords import VerificationMatch

PHONE = "6281234567890"


def _machine(db):
    store = ConversationStore(db)
    return VerificationStateMachine(db, store), store


class TestTransitions:

    def test_accept(self, db, make_patient):
        patient = make_patient(status=VerificationStatus.PENDING)
        machine, store = _machine(db)
        store.set_context(patient.id, PHONE, ConversationContext.VERIFICATION)

        outcome = machine.handle_text(patient, PHONE, "Ya saya setuju")

        assert outcome.action == "verification_verified"
        assert "Terima kasih Budi" in outcome.reply
        assert patient.verification_status == VerificationStatus.VERIFIED.value
        assert patient.verification_response_at is not None
        logs = db.scalars(select(VerificationLog)).all()
        assert [log.verification_result for log in logs] == ["verified"]
        assert store.get_active_context(patient.id) is None

    def test_decline(self, db, make_patient):
        patient = make_patient(status=VerificationStatus.PENDING)
        machine, _ = _machine(db)
        outcome = machine.handle_text(patient, PHONE, "tidak, terima kasih")
        assert outcome.action == "verification_declined"
        assert patient.verification_status == VerificationStatus.DECLINED.value
        assert patient.is_active is True

    def test_unsubscribe_deactivates_everything(self, db, make_patient, make_reminder):
        patient = make_patient(status=VerificationStatus.PENDING)
        make_reminder(patient)
        make_reminder(patient, sent_hours_ago=None)
        machine, _ = _machine(db)

        outcome = machine.handle_text(patient, PHONE, "ya tapi saya mau berhenti")

        assert outcome.action == "verification_unsubscribed"
        assert patient.verification_status == VerificationStatus.DECLINED.value
        assert patient.is_active is False
        reminders = db.scalars(select(Reminder)).all()
        assert all(r.is_active is False for r in reminders)
        log = db.scalar(select(VerificationLog))
        assert log.verification_result == "unsubscribed"

    def test_poll_decision(self, db, make_patient):
        patient = make_patient(status=VerificationStatus.PENDING)
        machine, _ = _machine(db)
        outcome = machine.apply(patient, PHONE, VerificationMatch.ACCEPT, "Ya", source="poll")
        assert outcome.action == "verification_verified"
        log = db.scalar(select(VerificationLog))
        assert log.additional_info["source"] == "poll"


class TestClarification:

    def test_progressive_wording(self, db, make_patient):
        patient = make_patient(status=VerificationStatus.PENDING)
        machine, store = _machine(db)
        store.set_context(patient.id, PHONE, ConversationContext.VERIFICATION)

        first = machine.handle_text(patient, PHONE, "apa ini?")
        second = machine.handle_text(patient, PHONE, "maksudnya?")
        third = machine.handle_text(patient, PHONE, "hmm")
        fourth = machine.handle_text(patient, PHONE, "hmm lagi")

        assert first.action == "verification_clarification"
        assert first.reply != second.reply != third.reply
        assert third.reply == fourth.reply
        assert "relawan" in third.reply
        assert patient.verification_status == VerificationStatus.PENDING.value
        assert store.get_active_context(patient.id).attempt_count == 4

    def test_clarification_is_logged_as_pending(self, db, make_patient):
        patient = make_patient(status=VerificationStatus.PENDING)
        machine, _ = _machine(db)
        machine.handle_text(patient, PHONE, "siapa ini")
        log = db.scalar(select(VerificationLog))
        assert log.verification_result == "pending"
        assert log.additional_info["attempt"] == 1


class TestReentrancy:

    def test_second_reply_does_not_transition(self, db, make_patient):
        patient = make_patient(status=VerificationStatus.PENDING)
        machine, _ = _machine(db)
        machine.handle_text(patient, PHONE, "ya")

        outcome = machine.handle_text(patient, PHONE, "tidak")

        assert outcome.handled is False
        assert outcome.action == "verification_ignored"
        assert patient.verification_status == VerificationStatus.VERIFIED.value
        actions = [log.action for log in db.scalars(
            select(VerificationLog).order_by(VerificationLog.created_at)
        )]
        assert actions == ["responded", "message_received"]
