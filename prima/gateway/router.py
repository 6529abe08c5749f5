"""
Message Router: decides who handles an inbound patient message.

Strict priority order, first match wins:

  0. Poll reply with a known option          → structured handling
  1. Active context = verification           → Verification SM (keywords only)
  2. Active context = reminder_confirmation  → Reminder Confirmation SM
  3. Patient still PENDING                   → Verification SM (expired-context safety net)
  4. VERIFIED + short confirmation reply     → latest SENT reminder, no context needed
  5. Anything else                           → Intent classifier (bounded timeout)
  6. Classifier result                       → escalate emergencies, reply, run actions

Keyword handling always wins while a prompt is outstanding; the classifier
only sees genuinely open-ended text.  Whatever fails, the patient gets at
least a generic acknowledgement.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from prima import settings
from prima.db.enums import (
    ConversationContext,
    MessageDirection,
    NotificationPriority,
    VerificationStatus,
)
from prima.db.models import Patient, Reminder
from prima.gateway import templates
from prima.gateway.actions import ActionContext, ActionExecutor
from prima.gateway.agents.intent_classifier import (
    ActionType,
    ClassificationContext,
    ClassificationResult,
    Intent,
    IntentClassifier,
    ResponseAction,
    ResponseType,
)
from prima.gateway.channels import DispatcherRegistry, OutboundMessage
from prima.gateway.conversation import ActiveContext, ConversationStore
from prima.gateway.events import (
    CONFIRMATION_POLL_OPTIONS,
    VERIFICATION_POLL_OPTIONS,
    InboundMessage,
    PollOption,
)
from prima.gateway.handlers.patient_resolver import normalize_phone
from prima.gateway.handlers.reminder_confirmation import (
    ReminderConfirmationStateMachine,
    awaiting_confirmation,
)
from prima.gateway.handlers.verification import VerificationStateMachine
from prima.gateway.keywords import (
    ConfirmationMatch,
    VerificationMatch,
    is_bare_verification_reply,
    is_short_reply,
    match_confirmation,
)
from prima.gateway.outcomes import HandlerOutcome, RouteResult

logger = logging.getLogger("gateway.router")

# Inbound text longer than this is truncated before processing
MAX_MESSAGE_LENGTH = 4_000


@dataclass
class RouterConfig:
    """Per-request switches; built from settings by default."""
    llm_enabled: bool = True
    classify_timeout_seconds: float = 10.0
    history_limit: int = 10

    @classmethod
    def from_settings(cls) -> RouterConfig:
        return cls(
            llm_enabled=settings.USE_LLM,
            classify_timeout_seconds=settings.INTENT_TIMEOUT_SECONDS,
        )


class MessageRouter:
    """Request-scoped orchestrator for one inbound message."""

    def __init__(
        self,
        db: Session,
        dispatcher_registry: DispatcherRegistry,
        classifier: IntentClassifier | None = None,
        config: RouterConfig | None = None,
    ) -> None:
        self._db = db
        self._dispatchers = dispatcher_registry
        self._classifier = classifier
        self._config = config or RouterConfig.from_settings()
        self._conversations = ConversationStore(db)
        self._verification = VerificationStateMachine(db, self._conversations)
        self._reminders = ReminderConfirmationStateMachine(db, self._conversations)
        self._actions = ActionExecutor(db, self._reminders)
        self._inbound_logged = False

    # ── Public API ──

    async def route(self, patient: Patient, inbound: InboundMessage) -> RouteResult:
        """Process one message. Never raises."""
        phone = normalize_phone(inbound.sender) or patient.phone_number
        text = inbound.message
        if len(text) > MAX_MESSAGE_LENGTH:
            logger.warning(
                "Message from patient %s truncated from %d to %d chars",
                patient.id, len(text), MAX_MESSAGE_LENGTH,
            )
            text = text[:MAX_MESSAGE_LENGTH]

        self._inbound_logged = False
        try:
            return await self._route(patient, phone, text, inbound)
        except Exception as exc:
            logger.error(
                "Unhandled error routing message for patient %s: %s",
                patient.id, exc, exc_info=True,
            )
            self._db.rollback()
            self._log_inbound(patient, phone, text, None)
            replied = await self._reply(patient, phone, templates.generic_ack(patient.name), "fallback")
            return RouteResult(source="error", action="internal_error", replied=replied)
        finally:
            self._log_inbound(patient, phone, text, None)

    # ── Pipeline ──

    async def _route(
        self, patient: Patient, phone: str, text: str, inbound: InboundMessage
    ) -> RouteResult:
        if inbound.poll is not None:
            outcome = self._route_poll(patient, phone, inbound)
            if outcome is not None and outcome.handled:
                return await self._finish("poll", patient, phone, text, outcome)

        context = self._active_context(patient)

        # 1. Outstanding verification prompt
        if context is not None and context.context == ConversationContext.VERIFICATION:
            outcome = self._verification.handle_text(patient, phone, text)
            if not outcome.handled:
                # Patient resolved elsewhere; the stale window still owns this reply
                self._conversations.clear_context(patient.id)
                outcome = self._ignored_verification_ack(patient)
            return await self._finish("verification", patient, phone, text, outcome)

        # 2. Outstanding medication-confirmation prompt
        if context is not None and context.context == ConversationContext.REMINDER_CONFIRMATION:
            reminder = self._reminders.resolve_target(patient.id, context.related_entity_id)
            if reminder is not None:
                outcome = self._reminders.handle_text(patient, phone, reminder, text)
                return await self._finish("reminder_confirmation", patient, phone, text, outcome)
            logger.info("Confirmation context for patient %s has no awaiting reminder", patient.id)
            self._conversations.clear_context(patient.id)

        # 3. Unverified patient whose prompt context expired
        if patient.verification_status == VerificationStatus.PENDING.value:
            outcome = self._verification.handle_text(patient, phone, text)
            if outcome.handled:
                return await self._finish("verification", patient, phone, text, outcome)

        # 4. Late confirmation without an open window
        if patient.verification_status == VerificationStatus.VERIFIED.value:
            match = match_confirmation(text) if is_short_reply(text) else ConfirmationMatch.INVALID
            if match != ConfirmationMatch.INVALID:
                reminder = self._reminders.latest_awaiting(patient.id)
                if reminder is not None:
                    outcome = self._reminders.apply(patient, reminder, match, text)
                    return await self._finish("reminder_confirmation", patient, phone, text, outcome)
                logger.info(
                    "Confirmation keyword from patient %s but nothing awaiting; classifying",
                    patient.id,
                )

        # Bare YA/TIDAK from an already-resolved patient: logged, no transition
        if (patient.verification_status != VerificationStatus.PENDING.value
                and is_bare_verification_reply(text)):
            self._verification.record_ignored(patient, text)
            outcome = self._ignored_verification_ack(patient)
            return await self._finish("verification", patient, phone, text, outcome)

        # 5 + 6. Open-ended text
        return await self._classify_and_respond(patient, phone, text, context)

    def _route_poll(
        self, patient: Patient, phone: str, inbound: InboundMessage
    ) -> HandlerOutcome | None:
        option = inbound.poll.option
        if option is None:
            logger.info("Unknown poll option %r; treating as text", inbound.poll.selected_option)
            return None
        answer = inbound.poll.selected_option

        if option in VERIFICATION_POLL_OPTIONS:
            decision = VerificationMatch.ACCEPT if option == PollOption.YES else VerificationMatch.DECLINE
            if patient.verification_status != VerificationStatus.PENDING.value:
                self._verification.record_ignored(patient, answer, source="poll")
                return self._ignored_verification_ack(patient)
            return self._verification.apply(patient, phone, decision, answer, source="poll")

        if option in CONFIRMATION_POLL_OPTIONS:
            context = self._active_context(patient)
            related = (
                context.related_entity_id
                if context is not None and context.context == ConversationContext.REMINDER_CONFIRMATION
                else None
            )
            reminder = self._reminders.resolve_target(patient.id, related)
            if option == PollOption.NEED_HELP:
                return self._reminders.request_help(patient, reminder, answer)
            if reminder is None:
                logger.info("Confirmation poll from patient %s with nothing awaiting", patient.id)
                return None
            match = ConfirmationMatch.DONE if option == PollOption.TAKEN else ConfirmationMatch.NOT_YET
            return self._reminders.apply(patient, reminder, match, answer)
        return None

    async def _classify_and_respond(
        self,
        patient: Patient,
        phone: str,
        text: str,
        context: ActiveContext | None,
    ) -> RouteResult:
        result = await self._classify(patient, text, context)
        if result is None:
            outcome = HandlerOutcome(action="generic_ack", reply=templates.generic_ack(patient.name))
            return await self._finish("fallback", patient, phone, text, outcome)

        actions = list(result.actions)
        action_ctx = ActionContext(
            patient=patient, message=text,
            intent=result.intent.value, confidence=result.confidence,
        )

        if result.intent == Intent.EMERGENCY:
            escalation = [a for a in actions if a.type == ActionType.NOTIFY_VOLUNTEER.value]
            if not escalation:
                escalation = [ResponseAction(
                    type=ActionType.NOTIFY_VOLUNTEER.value,
                    data={"priority": NotificationPriority.URGENT.value,
                          "reason": "emergency", "message": text},
                )]
            actions = [a for a in actions if a.type != ActionType.NOTIFY_VOLUNTEER.value]
            self._actions.execute(action_ctx, escalation)
            logger.warning("Emergency message from patient %s escalated", patient.id)

        if result.response_type == ResponseType.AUTO_REPLY and result.message:
            reply = result.message
        elif result.intent == Intent.EMERGENCY:
            reply = templates.emergency_ack(patient.name)
        else:
            reply = templates.generic_ack(patient.name)

        outcome = HandlerOutcome(
            action=f"classified_{result.intent.value}",
            reply=reply,
            message_type="classified",
            intent=result.intent.value,
            confidence=result.confidence,
        )
        route_result = await self._finish("classifier", patient, phone, text, outcome)

        if actions:
            outcomes = self._actions.execute(action_ctx, actions)
            failed = [o.type for o in outcomes if not o.success]
            if failed:
                logger.warning("Actions not applied for patient %s: %s", patient.id, failed)
        return route_result

    async def _classify(
        self, patient: Patient, text: str, context: ActiveContext | None
    ) -> ClassificationResult | None:
        if not self._config.llm_enabled or self._classifier is None:
            logger.info("Classifier disabled; generic reply for patient %s", patient.id)
            return None
        try:
            classification_context = self._build_classification_context(patient, context)
            return await asyncio.wait_for(
                self._classifier.classify(classification_context, text),
                timeout=self._config.classify_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Classifier timed out after %.1fs for patient %s",
                self._config.classify_timeout_seconds, patient.id,
            )
        except Exception as exc:
            logger.warning("Classifier failed for patient %s: %s", patient.id, exc)
        return None

    def _build_classification_context(
        self, patient: Patient, context: ActiveContext | None
    ) -> ClassificationContext:
        reminders = self._db.scalars(
            select(Reminder)
            .where(Reminder.patient_id == patient.id, awaiting_confirmation())
            .order_by(Reminder.sent_at.desc().nulls_last())
            .limit(5)
        )
        history = self._conversations.recent_messages(patient.id, self._config.history_limit)
        return ClassificationContext(
            patient_id=str(patient.id),
            patient_name=patient.name,
            verification_status=patient.verification_status,
            active_context=context.context.value if context else None,
            active_reminders=[
                {"id": str(r.id), "medication": r.medication_name,
                 "sent_at": r.sent_at.isoformat() if r.sent_at else None}
                for r in reminders
            ],
            history=[{"direction": m.direction, "message": m.message} for m in history],
        )

    # ── Helpers ──

    @staticmethod
    def _ignored_verification_ack(patient: Patient) -> HandlerOutcome:
        """Verification-shaped reply from a resolved patient: acknowledge only."""
        return HandlerOutcome(
            action="verification_ignored",
            reply=templates.generic_ack(patient.name),
            message_type="verification",
        )

    def _active_context(self, patient: Patient) -> ActiveContext | None:
        try:
            return self._conversations.get_active_context(patient.id)
        except Exception as exc:
            logger.warning("Conversation store unavailable for patient %s: %s", patient.id, exc)
            self._db.rollback()
            return None

    async def _finish(
        self, source: str, patient: Patient, phone: str, text: str, outcome: HandlerOutcome
    ) -> RouteResult:
        self._log_inbound(patient, phone, text, outcome)
        replied = False
        if outcome.reply:
            replied = await self._reply(patient, phone, outcome.reply, outcome.message_type)
        return RouteResult(source=source, action=outcome.action, replied=bool(outcome.reply),
                           delivered=replied)

    async def _reply(self, patient: Patient, phone: str, text: str, message_type: str) -> bool:
        """Send an acknowledgement and log it. Failures are logged only."""
        try:
            delivery = await self._dispatchers.dispatch(OutboundMessage(
                phone=phone,
                message=text,
                metadata={"patient_id": str(patient.id), "message_type": message_type},
            ))
        except Exception as exc:
            logger.error("Reply to patient %s failed: %s", patient.id, exc, exc_info=True)
            return False
        if not delivery.success:
            logger.warning("Reply to patient %s not delivered: %s", patient.id, delivery.error)
        self._conversations.append_message(
            patient.id, phone, MessageDirection.OUTBOUND, text, message_type=message_type,
        )
        return delivery.success

    def _log_inbound(
        self, patient: Patient, phone: str, text: str, outcome: HandlerOutcome | None
    ) -> None:
        """Append the inbound message once, before any reply to it."""
        if self._inbound_logged:
            return
        self._inbound_logged = True
        self._conversations.append_message(
            patient.id, phone, MessageDirection.INBOUND, text,
            message_type=outcome.message_type if outcome else "general",
            intent=outcome.intent if outcome else None,
            confidence=outcome.confidence if outcome else None,
        )
