"""
Action Executor: applies the follow-up actions a classification asks for.

Each action runs once and in isolation: a failing action is rolled back,
logged and reported, and the remaining actions still run.  Action types
this version does not know are logged and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import update
from sqlalchemy.orm import Session

from prima import settings
from prima.db.base import utcnow
from prima.db.enums import (
    ConfirmationStatus,
    NotificationPriority,
    NotificationStatus,
    ReminderStatus,
    VerificationAction,
    VerificationStatus,
)
from prima.db.models import (
    ManualConfirmation,
    Patient,
    Reminder,
    VerificationLog,
    VolunteerNotification,
)
from prima.gateway import templates
from prima.gateway.agents.intent_classifier import ActionType, ResponseAction
from prima.gateway.handlers.reminder_confirmation import (
    ReminderConfirmationStateMachine,
    awaiting_confirmation,
)

logger = logging.getLogger("gateway.actions")


@dataclass
class ActionOutcome:
    type: str
    success: bool
    detail: str = ""


@dataclass
class ActionContext:
    """Inbound message details an action may need."""
    patient: Patient
    message: str
    intent: str | None = None
    confidence: float | None = None
    # Set by update_patient_status: whether the patient row actually changed
    status_changed: bool | None = None


class ActionExecutor:
    """Runs ResponseActions against the database."""

    def __init__(self, db: Session, reminders: ReminderConfirmationStateMachine) -> None:
        self._db = db
        self._reminders = reminders
        self._handlers: dict[str, Callable[[ActionContext, dict[str, Any]], str]] = {
            ActionType.LOG_CONFIRMATION.value: self._log_confirmation,
            ActionType.SEND_FOLLOWUP.value: self._send_followup,
            ActionType.NOTIFY_VOLUNTEER.value: self._notify_volunteer,
            ActionType.UPDATE_PATIENT_STATUS.value: self._update_patient_status,
            ActionType.CREATE_MANUAL_CONFIRMATION.value: self._create_manual_confirmation,
            ActionType.DEACTIVATE_REMINDERS.value: self._deactivate_reminders,
            ActionType.LOG_VERIFICATION_EVENT.value: self._log_verification_event,
        }

    def execute(self, ctx: ActionContext, actions: list[ResponseAction]) -> list[ActionOutcome]:
        outcomes: list[ActionOutcome] = []
        for action in actions:
            handler = self._handlers.get(action.type)
            if handler is None:
                logger.warning(
                    "Unknown action type '%s' for patient %s; skipped",
                    action.type, ctx.patient.id,
                )
                outcomes.append(ActionOutcome(action.type, False, "unknown_action"))
                continue
            try:
                detail = handler(ctx, action.data or {})
                self._db.commit()
                outcomes.append(ActionOutcome(action.type, True, detail))
            except Exception as exc:
                self._db.rollback()
                logger.error(
                    "Action '%s' failed for patient %s: %s",
                    action.type, ctx.patient.id, exc, exc_info=True,
                )
                outcomes.append(ActionOutcome(action.type, False, str(exc)))
        return outcomes

    # ── Handlers (return a short detail string) ──

    def _log_confirmation(self, ctx: ActionContext, data: dict[str, Any]) -> str:
        status = ConfirmationStatus(str(data.get("status", "CONFIRMED")).upper())
        reminder = self._reminders.latest_awaiting(ctx.patient.id)
        if reminder is None:
            return "no_pending_reminder"

        values: dict[str, Any] = {
            "confirmation_status": status.value,
            "confirmation_response": data.get("response") or ctx.message,
            "confirmation_response_at": utcnow(),
        }
        if status == ConfirmationStatus.CONFIRMED:
            values["status"] = ReminderStatus.DELIVERED.value
        result = self._db.execute(
            update(Reminder)
            .where(Reminder.id == reminder.id, awaiting_confirmation())
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return "already_recorded"
        logger.info("Reminder %s marked %s via classifier", reminder.id, status.value)
        return f"{reminder.id}:{status.value}"

    def _send_followup(self, ctx: ActionContext, data: dict[str, Any]) -> str:
        if "delay_minutes" in data:
            delay = timedelta(minutes=float(data["delay_minutes"]))
        elif "delay" in data:
            delay = timedelta(milliseconds=float(data["delay"]))
        else:
            delay = timedelta(minutes=settings.FOLLOWUP_DELAY_MINUTES)

        followup = Reminder(
            patient_id=ctx.patient.id,
            reminder_type=f"followup_{data.get('type', 'reminder')}",
            message=data.get("message") or templates.followup_reminder(ctx.patient.name),
            scheduled_for=utcnow() + delay,
            status=ReminderStatus.PENDING.value,
        )
        self._db.add(followup)
        self._db.flush()
        logger.info(
            "Follow-up %s scheduled for patient %s at %s",
            followup.id, ctx.patient.id, followup.scheduled_for.isoformat(),
        )
        return str(followup.id)

    def _notify_volunteer(self, ctx: ActionContext, data: dict[str, Any]) -> str:
        priority = NotificationPriority(str(data.get("priority", "medium")).lower())
        patient = ctx.patient
        notification = VolunteerNotification(
            patient_id=patient.id,
            message=data.get("message") or ctx.message,
            priority=priority.value,
            status=(NotificationStatus.ASSIGNED.value if patient.assigned_volunteer_id
                    else NotificationStatus.PENDING.value),
            assigned_volunteer_id=patient.assigned_volunteer_id,
            escalation_reason=data.get("reason"),
            intent=ctx.intent,
            confidence=ctx.confidence,
            patient_context={
                "name": patient.name,
                "verification_status": patient.verification_status,
                "message": ctx.message,
            },
        )
        self._db.add(notification)
        self._db.flush()
        logger.warning(
            "Volunteer notification %s (%s) for patient %s: %s",
            notification.id, priority.value, patient.id, data.get("reason", ""),
        )
        return str(notification.id)

    def _update_patient_status(self, ctx: ActionContext, data: dict[str, Any]) -> str:
        """
        Verification status only moves out of PENDING, except that an
        unsubscribe (DECLINED with is_active=false) applies from any state.
        """
        ctx.status_changed = False
        new_status = VerificationStatus(str(data["status"]).upper())
        deactivate = data.get("is_active") is False
        patient = ctx.patient

        stmt = update(Patient).where(Patient.id == patient.id)
        if not (deactivate and new_status == VerificationStatus.DECLINED):
            stmt = stmt.where(Patient.verification_status == VerificationStatus.PENDING.value)
        values: dict[str, Any] = {
            "verification_status": new_status.value,
            "verification_response_at": utcnow(),
        }
        if deactivate:
            values["is_active"] = False
        result = self._db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        ctx.status_changed = result.rowcount == 1
        if not ctx.status_changed:
            return "unchanged"
        logger.info("Patient %s status → %s (active=%s)", patient.id, new_status.value, not deactivate)
        return new_status.value

    def _create_manual_confirmation(self, ctx: ActionContext, data: dict[str, Any]) -> str:
        reminder = self._reminders.latest_awaiting(ctx.patient.id)
        confirmation = ManualConfirmation(
            patient_id=ctx.patient.id,
            reminder_id=reminder.id if reminder else None,
            volunteer_id=ctx.patient.assigned_volunteer_id,
            medications_taken=bool(data.get("medications_taken", False)),
            notes=data.get("notes") or ctx.message,
        )
        self._db.add(confirmation)
        self._db.flush()
        return str(confirmation.id)

    def _deactivate_reminders(self, ctx: ActionContext, data: dict[str, Any]) -> str:
        result = self._db.execute(
            update(Reminder)
            .where(Reminder.patient_id == ctx.patient.id, Reminder.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        logger.info("Deactivated %d reminders for patient %s", result.rowcount, ctx.patient.id)
        return str(result.rowcount)

    def _log_verification_event(self, ctx: ActionContext, data: dict[str, Any]) -> str:
        """
        Audit row for a classifier-driven verification reply.

        When the plan's status update changed nothing, the reply is logged
        as an ignored ``message_received`` rather than as a transition.
        """
        info: dict[str, Any] = {"source": "classifier", "intent": ctx.intent,
                                "confidence": ctx.confidence}
        action = data.get("action") or VerificationAction.RESPONDED.value
        result = data.get("verification_result")
        if ctx.status_changed is False:
            action = VerificationAction.MESSAGE_RECEIVED.value
            info.update(ignored=True, status=ctx.patient.verification_status,
                        suggested_result=result)
            result = None
        self._db.add(VerificationLog(
            patient_id=ctx.patient.id,
            action=action,
            patient_response=data.get("response") or ctx.message,
            verification_result=result,
            additional_info=info,
        ))
        return "ignored" if ctx.status_changed is False else "logged"
