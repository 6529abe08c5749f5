"""
Intent Classifier: turns free-text patient messages into a structured
intent, a suggested reply and a list of follow-up actions.

The router only depends on the ``IntentClassifier`` contract:

    result = await classifier.classify(context, message)

``GeminiIntentClassifier`` is the production implementation.  The model
only names the intent, confidence and reply text; the action list is
derived here from the intent so that what the system *does* stays
deterministic and reviewable.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from prima import settings
from prima.db.enums import ConfirmationStatus, NotificationPriority, VerificationStatus
from prima.gateway.agents.llm_utils import llm_generate, parse_json_response

logger = logging.getLogger("gateway.agents.intent")


class Intent(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    CONFIRM_TAKEN = "confirm_taken"
    CONFIRM_MISSED = "confirm_missed"
    CONFIRM_LATER = "confirm_later"
    UNSUBSCRIBE = "unsubscribe"
    REMINDER_INQUIRY = "reminder_inquiry"
    INQUIRY = "inquiry"
    EMERGENCY = "emergency"
    UNKNOWN = "unknown"


class ResponseType(str, Enum):
    AUTO_REPLY = "auto_reply"
    HUMAN_INTERVENTION = "human_intervention"
    ESCALATION = "escalation"


class ActionType(str, Enum):
    UPDATE_PATIENT_STATUS = "update_patient_status"
    LOG_CONFIRMATION = "log_confirmation"
    SEND_FOLLOWUP = "send_followup"
    NOTIFY_VOLUNTEER = "notify_volunteer"
    CREATE_MANUAL_CONFIRMATION = "create_manual_confirmation"
    DEACTIVATE_REMINDERS = "deactivate_reminders"
    LOG_VERIFICATION_EVENT = "log_verification_event"


class ResponseAction(BaseModel):
    """One follow-up step; ``type`` is an ActionType value or something newer."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class ClassificationResult(BaseModel):
    """What the classifier recommends doing with a message."""

    intent: Intent = Intent.UNKNOWN
    confidence: float = 0.0
    response_type: ResponseType = ResponseType.HUMAN_INTERVENTION
    message: str | None = None
    actions: list[ResponseAction] = Field(default_factory=list)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    reasoning: str = ""


@dataclass
class ClassificationContext:
    """Everything the classifier may look at besides the message itself."""
    patient_id: str
    patient_name: str
    verification_status: str
    active_context: str | None = None
    active_reminders: list[dict[str, Any]] = field(default_factory=list)
    history: list[dict[str, Any]] = field(default_factory=list)


class ClassificationError(Exception):
    """The classifier could not produce a usable result."""


class IntentClassifier(ABC):
    """Abstract free-text classifier."""

    @abstractmethod
    async def classify(
        self, context: ClassificationContext, message: str
    ) -> ClassificationResult:
        """Classify one message. Raises ClassificationError on failure."""


# ── Intent → actions ──


def actions_for_intent(
    intent: Intent,
    message: str,
    confidence: float,
    threshold: float,
    followup_delay_minutes: int | None = None,
) -> tuple[list[ResponseAction], ResponseType, NotificationPriority]:
    """Deterministic action plan for a classified intent."""
    delay = followup_delay_minutes or settings.FOLLOWUP_DELAY_MINUTES
    actions: list[ResponseAction] = []
    response_type = ResponseType.AUTO_REPLY
    priority = NotificationPriority.LOW

    if intent == Intent.ACCEPT:
        actions += [
            ResponseAction(type=ActionType.UPDATE_PATIENT_STATUS.value,
                           data={"status": VerificationStatus.VERIFIED.value}),
            ResponseAction(type=ActionType.LOG_VERIFICATION_EVENT.value,
                           data={"action": "responded", "verification_result": "verified",
                                 "response": message}),
        ]
    elif intent == Intent.DECLINE:
        actions += [
            ResponseAction(type=ActionType.UPDATE_PATIENT_STATUS.value,
                           data={"status": VerificationStatus.DECLINED.value}),
            ResponseAction(type=ActionType.LOG_VERIFICATION_EVENT.value,
                           data={"action": "responded", "verification_result": "declined",
                                 "response": message}),
        ]
    elif intent == Intent.UNSUBSCRIBE:
        actions += [
            ResponseAction(type=ActionType.UPDATE_PATIENT_STATUS.value,
                           data={"status": VerificationStatus.DECLINED.value, "is_active": False}),
            ResponseAction(type=ActionType.DEACTIVATE_REMINDERS.value,
                           data={"reason": "unsubscribe"}),
            ResponseAction(type=ActionType.LOG_VERIFICATION_EVENT.value,
                           data={"action": "responded", "verification_result": "unsubscribed",
                                 "response": message}),
        ]
        priority = NotificationPriority.MEDIUM
    elif intent == Intent.CONFIRM_TAKEN:
        actions.append(ResponseAction(
            type=ActionType.LOG_CONFIRMATION.value,
            data={"status": ConfirmationStatus.CONFIRMED.value, "response": message},
        ))
    elif intent == Intent.CONFIRM_MISSED:
        actions += [
            ResponseAction(type=ActionType.LOG_CONFIRMATION.value,
                           data={"status": ConfirmationStatus.MISSED.value, "response": message}),
            ResponseAction(type=ActionType.SEND_FOLLOWUP.value,
                           data={"type": "reminder", "delay_minutes": delay}),
        ]
        priority = NotificationPriority.MEDIUM
    elif intent == Intent.CONFIRM_LATER:
        actions.append(ResponseAction(
            type=ActionType.SEND_FOLLOWUP.value,
            data={"type": "reminder", "delay_minutes": delay},
        ))
    elif intent == Intent.EMERGENCY:
        actions.append(ResponseAction(
            type=ActionType.NOTIFY_VOLUNTEER.value,
            data={"priority": NotificationPriority.URGENT.value,
                  "reason": "emergency", "message": message},
        ))
        response_type = ResponseType.ESCALATION
        priority = NotificationPriority.URGENT
    elif intent == Intent.UNKNOWN:
        actions.append(ResponseAction(
            type=ActionType.NOTIFY_VOLUNTEER.value,
            data={"priority": NotificationPriority.MEDIUM.value,
                  "reason": "unclear_message", "message": message},
        ))
        response_type = ResponseType.HUMAN_INTERVENTION
        priority = NotificationPriority.MEDIUM

    low_confidence = confidence < threshold
    already_notifying = any(a.type == ActionType.NOTIFY_VOLUNTEER.value for a in actions)
    if low_confidence and not already_notifying:
        actions.append(ResponseAction(
            type=ActionType.NOTIFY_VOLUNTEER.value,
            data={"priority": NotificationPriority.MEDIUM.value,
                  "reason": "low_confidence", "message": message},
        ))
        if response_type == ResponseType.AUTO_REPLY:
            response_type = ResponseType.HUMAN_INTERVENTION
        priority = NotificationPriority.MEDIUM

    return actions, response_type, priority


# ── Gemini implementation ──

CLASSIFY_PROMPT = """Anda adalah asisten relawan PRIMA yang membantu pasien kanker di Indonesia
mematuhi jadwal minum obat lewat WhatsApp. Jangan pernah memberi diagnosis atau saran medis.

Data pasien:
{context}

Riwayat percakapan terakhir (lama ke baru):
{history}

Pesan baru dari pasien:
"{message}"

Tentukan maksud utama pesan. Pilihan intent:
- accept: setuju menerima pengingat
- decline: menolak menerima pengingat
- confirm_taken: sudah minum obat
- confirm_missed: tidak/lupa minum obat
- confirm_later: akan minum obat nanti
- unsubscribe: ingin berhenti dari layanan
- reminder_inquiry: bertanya tentang jadwal/pengingat obat
- inquiry: pertanyaan umum lain
- emergency: keadaan darurat, gejala berat, atau butuh pertolongan segera
- unknown: tidak jelas

Balas HANYA dengan JSON:
{{"intent": "<intent>", "confidence": <0.0-1.0>, "reply": "<balasan singkat, sopan, bahasa Indonesia, diakhiri '💙 Tim PRIMA'>", "reasoning": "<alasan singkat>"}}"""


class GeminiIntentClassifier(IntentClassifier):
    """Classifies patient messages with Gemini via google-genai."""

    def __init__(
        self,
        llm_client=None,
        model_name: str | None = None,
        confidence_threshold: float | None = None,
    ) -> None:
        self._client = llm_client
        self._model_name = model_name or settings.INTENT_MODEL
        self._threshold = (
            confidence_threshold
            if confidence_threshold is not None
            else settings.INTENT_CONFIDENCE_THRESHOLD
        )

    @property
    def client(self):
        if self._client is None:
            try:
                from google import genai
                self._client = genai.Client(api_key=os.getenv("GOOGLE_API_KEY"))
            except Exception as exc:
                logger.error("Failed to create Gemini client: %s", exc)
        return self._client

    def _build_prompt(self, context: ClassificationContext, message: str) -> str:
        profile = {
            "nama": context.patient_name,
            "status_verifikasi": context.verification_status,
            "konteks_aktif": context.active_context,
            "pengingat_aktif": context.active_reminders,
        }
        history = "\n".join(
            f"[{h.get('direction')}] {h.get('message')}" for h in context.history
        ) or "(belum ada)"
        return CLASSIFY_PROMPT.format(
            context=json.dumps(profile, ensure_ascii=False, default=str),
            history=history,
            message=message.replace('"', "'"),
        )

    async def classify(
        self, context: ClassificationContext, message: str
    ) -> ClassificationResult:
        if self.client is None:
            raise ClassificationError("Gemini client unavailable")

        raw = await llm_generate(self.client, self._model_name, self._build_prompt(context, message))
        if raw is None:
            raise ClassificationError("no response from Gemini")

        try:
            parsed = parse_json_response(raw)
            intent = Intent(str(parsed.get("intent", "unknown")).strip().lower())
            confidence = max(0.0, min(1.0, float(parsed.get("confidence", 0.0))))
        except (ValueError, TypeError) as exc:
            raise ClassificationError(f"unparseable classifier output: {exc}") from exc

        reply = parsed.get("reply")
        actions, response_type, priority = actions_for_intent(
            intent, message, confidence, self._threshold
        )
        logger.info(
            "Classified message for patient %s: intent=%s confidence=%.2f actions=%s",
            context.patient_id, intent.value, confidence, [a.type for a in actions],
        )
        return ClassificationResult(
            intent=intent,
            confidence=confidence,
            response_type=response_type,
            message=reply.strip() if isinstance(reply, str) and reply.strip() else None,
            actions=actions,
            priority=priority,
            reasoning=str(parsed.get("reasoning", "")),
        )
