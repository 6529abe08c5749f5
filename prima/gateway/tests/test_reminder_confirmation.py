"""
Tests for the Reminder Confirmation State Machine.
"""

from sqlalchemy import select

from prima.db.enums import ConfirmationStatus, ConversationContext, ReminderStatus
from prima.db.models import VolunteerNotification
from prima.gateway.conversation import ConversationStore
from prima.gateway.handlers.reminder_confirmation import ReminderConfirmationStateMachine
from prima.gateway.keywords import ConfirmationMatch

PHONE = "6281234567890"


def _machine(db):
    store = ConversationStore(db)
    return ReminderConfirmationStateMachine(db, store), store


class TestLookup:

    def test_latest_awaiting_is_most_recently_sent(self, db, make_patient, make_reminder):
        patient = make_patient()
        make_reminder(patient, sent_hours_ago=30)
        newest = make_reminder(patient, sent_hours_ago=2)
        make_reminder(patient, sent_hours_ago=1, confirmation=ConfirmationStatus.CONFIRMED,
                      status=ReminderStatus.DELIVERED)
        machine, _ = _machine(db)
        assert machine.latest_awaiting(patient.id).id == newest.id

    def test_latest_awaiting_skips_undated_reminder(self, db, make_patient, make_reminder):
        patient = make_patient()
        make_reminder(patient, sent_hours_ago=None)
        dated = make_reminder(patient, sent_hours_ago=4)
        machine, _ = _machine(db)
        assert machine.latest_awaiting(patient.id).id == dated.id

    def test_resolve_target_prefers_context_reminder(self, db, make_patient, make_reminder):
        patient = make_patient()
        older = make_reminder(patient, sent_hours_ago=5)
        make_reminder(patient, sent_hours_ago=1)
        machine, _ = _machine(db)
        assert machine.resolve_target(patient.id, older.id).id == older.id

    def test_resolve_target_falls_back_when_context_stale(self, db, make_patient, make_reminder):
        patient = make_patient()
        done = make_reminder(patient, status=ReminderStatus.DELIVERED,
                             confirmation=ConfirmationStatus.CONFIRMED)
        pending = make_reminder(patient, sent_hours_ago=3)
        machine, _ = _machine(db)
        assert machine.resolve_target(patient.id, done.id).id == pending.id


class TestTransitions:

    def test_done_confirms_and_delivers(self, db, make_patient, make_reminder):
        patient = make_patient()
        reminder = make_reminder(patient)
        machine, store = _machine(db)
        store.set_context(patient.id, PHONE, ConversationContext.REMINDER_CONFIRMATION,
                          related_entity_type="reminder", related_entity_id=reminder.id)

        outcome = machine.handle_text(patient, PHONE, reminder, "SUDAH")

        assert outcome.action == "confirmation_done"
        db.refresh(reminder)
        assert reminder.status == ReminderStatus.DELIVERED.value
        assert reminder.confirmation_status == ConfirmationStatus.CONFIRMED.value
        assert reminder.confirmation_response == "SUDAH"
        assert store.get_active_context(patient.id) is None

    def test_not_yet_records_response_only(self, db, make_patient, make_reminder):
        patient = make_patient()
        reminder = make_reminder(patient)
        machine, _ = _machine(db)

        outcome = machine.handle_text(patient, PHONE, reminder, "belum minum obatnya")

        assert outcome.action == "confirmation_not_yet"
        assert "memantau" in outcome.reply
        db.refresh(reminder)
        assert reminder.confirmation_status == ConfirmationStatus.PENDING.value
        assert reminder.status == ReminderStatus.SENT.value
        assert reminder.confirmation_response == "belum minum obatnya"
        assert reminder.confirmation_response_at is not None

    def test_invalid_asks_again_and_keeps_context(self, db, make_patient, make_reminder):
        patient = make_patient()
        reminder = make_reminder(patient)
        machine, store = _machine(db)
        store.set_context(patient.id, PHONE, ConversationContext.REMINDER_CONFIRMATION,
                          related_entity_id=reminder.id)

        outcome = machine.handle_text(patient, PHONE, reminder, "obatnya yang mana?")

        assert outcome.action == "confirmation_clarification"
        assert "SUDAH" in outcome.reply
        assert store.get_active_context(patient.id) is not None
        db.refresh(reminder)
        assert reminder.confirmation_response is None

    def test_replay_on_confirmed_row_is_noop(self, db, make_patient, make_reminder):
        patient = make_patient()
        reminder = make_reminder(patient)
        machine, _ = _machine(db)
        machine.apply(patient, reminder, ConfirmationMatch.DONE, "sudah")

        outcome = machine.apply(patient, reminder, ConfirmationMatch.NOT_YET, "belum")

        assert outcome.action == "confirmation_already_recorded"
        assert outcome.reply is None
        db.refresh(reminder)
        assert reminder.confirmation_status == ConfirmationStatus.CONFIRMED.value
        assert reminder.confirmation_response == "sudah"

    def test_help_request_notifies_volunteer(self, db, make_patient, make_reminder):
        patient = make_patient()
        reminder = make_reminder(patient)
        machine, _ = _machine(db)

        outcome = machine.request_help(patient, reminder, "Butuh Bantuan")

        assert outcome.action == "help_requested"
        notification = db.scalar(select(VolunteerNotification))
        assert notification.priority == "high"
        assert notification.status == "pending"
        db.refresh(reminder)
        assert reminder.confirmation_response == "Butuh Bantuan"
        assert reminder.confirmation_status == ConfirmationStatus.PENDING.value
