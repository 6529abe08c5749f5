"""
Prompt API: send a verification or reminder prompt to a patient and
open the matching conversation window.

Endpoints:
  POST /api/prompts/verification/{patient_id}
  POST /api/prompts/reminders/{reminder_id}
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from prima.db.enums import ReminderStatus, VerificationStatus
from prima.db.models import Patient, Reminder
from prima.db.session import get_db
from prima.gateway.prompts import PromptSender
from prima.gateway.setup import get_dispatcher_registry
from prima.routers.auth import require_webhook_token

router = APIRouter(
    prefix="/api/prompts",
    tags=["prompts"],
    dependencies=[Depends(require_webhook_token)],
)


@router.post("/verification/{patient_id}")
async def send_verification(patient_id: uuid.UUID, db: Session = Depends(get_db)):
    patient = db.get(Patient, patient_id)
    if patient is None or not patient.is_active:
        raise HTTPException(status_code=404, detail="Patient not found")
    if patient.verification_status != VerificationStatus.PENDING.value:
        raise HTTPException(
            status_code=409,
            detail=f"Patient already {patient.verification_status.lower()}",
        )
    delivery = await PromptSender(db, get_dispatcher_registry()).send_verification(patient)
    return {"ok": delivery.success, "error": delivery.error}


@router.post("/reminders/{reminder_id}")
async def send_reminder(reminder_id: uuid.UUID, db: Session = Depends(get_db)):
    reminder = db.get(Reminder, reminder_id)
    if reminder is None or not reminder.is_active:
        raise HTTPException(status_code=404, detail="Reminder not found")
    if reminder.status != ReminderStatus.PENDING.value:
        raise HTTPException(status_code=409, detail=f"Reminder already {reminder.status.lower()}")
    if reminder.patient.verification_status != VerificationStatus.VERIFIED.value:
        raise HTTPException(status_code=409, detail="Patient has not accepted reminders")
    delivery = await PromptSender(db, get_dispatcher_registry()).send_reminder(reminder)
    return {"ok": delivery.success, "error": delivery.error}
