"""Tests for outbound prompts that open a conversation context."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from prima.db.enums import ConversationContext, ReminderStatus, VerificationStatus
from prima.db.models import VerificationLog
from prima.gateway.channels import DeliveryResult
from prima.gateway.conversation import ConversationStore
from prima.gateway.prompts import PromptSender


class TestVerificationPrompt:

    @pytest.mark.asyncio
    async def test_opens_verification_context(self, db, registry, harness, make_patient):
        patient = make_patient(status=VerificationStatus.PENDING, phone="081234567890")

        delivery = await PromptSender(db, registry).send_verification(patient)

        assert delivery.success
        assert "Balas *YA*" in harness.messages_for("6281234567890")[0].message
        context = ConversationStore(db).get_active_context(patient.id)
        assert context.context == ConversationContext.VERIFICATION
        log = db.scalar(select(VerificationLog))
        assert log.action == "sent"

    @pytest.mark.asyncio
    async def test_failed_delivery_leaves_no_context(self, db, registry, make_patient, monkeypatch):
        patient = make_patient(status=VerificationStatus.PENDING)
        monkeypatch.setattr(registry, "dispatch", AsyncMock(return_value=DeliveryResult(
            success=False, channel="whatsapp", phone=patient.phone_number, error="down",
        )))

        await PromptSender(db, registry).send_verification(patient)

        assert ConversationStore(db).get_active_context(patient.id) is None
        assert db.scalar(select(VerificationLog)).additional_info["delivered"] is False


class TestReminderPrompt:

    @pytest.mark.asyncio
    async def test_marks_sent_and_opens_context(self, db, registry, harness, make_patient, make_reminder):
        patient = make_patient()
        reminder = make_reminder(patient, sent_hours_ago=None, status=ReminderStatus.PENDING)

        await PromptSender(db, registry).send_reminder(reminder)

        db.refresh(reminder)
        assert reminder.status == ReminderStatus.SENT.value
        assert reminder.sent_at is not None
        context = ConversationStore(db).get_active_context(patient.id)
        assert context.context == ConversationContext.REMINDER_CONFIRMATION
        assert context.related_entity_id == reminder.id
        assert "Tamoxifen" in harness.messages_for(patient.phone_number)[0].message

    @pytest.mark.asyncio
    async def test_failed_send_marks_failed(self, db, registry, make_patient, make_reminder, monkeypatch):
        patient = make_patient()
        reminder = make_reminder(patient, sent_hours_ago=None, status=ReminderStatus.PENDING)
        monkeypatch.setattr(registry, "dispatch", AsyncMock(return_value=DeliveryResult(
            success=False, channel="whatsapp", phone=patient.phone_number, error="down",
        )))

        await PromptSender(db, registry).send_reminder(reminder)

        db.refresh(reminder)
        assert reminder.status == ReminderStatus.FAILED.value
        assert ConversationStore(db).get_active_context(patient.id) is None
