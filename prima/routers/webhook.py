"""
WhatsApp Webhook API: inbound patient messages.

Endpoints:
  POST /api/webhooks/whatsapp/incoming   Receive one inbound message
  GET  /api/webhooks/whatsapp/incoming   Authenticated ping

Responses (always JSON):
  400  {"error": "Invalid payload", "issues": {...}}     nothing stored
  200  {"ok": true, "duplicate": true}                    replay, ignored
  200  {"ok": true, "ignored": true, "reason": "no_patient_match"}
  200  {"ok": true, "processed": true, "source": ..., "action": ...}
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from prima import settings
from prima.db.session import get_db
from prima.gateway.events import InvalidPayload
from prima.gateway.handlers.patient_resolver import PatientResolver, mask_phone
from prima.gateway.idempotency import IdempotencyLedger, event_fingerprint
from prima.gateway.ingest.whatsapp_ingest import WhatsAppWebhookIngest
from prima.gateway.router import MessageRouter, RouterConfig
from prima.gateway.setup import get_classifier, get_dispatcher_registry, get_redis
from prima.routers.auth import require_webhook_token

logger = logging.getLogger("gateway.api")

router = APIRouter(
    prefix="/api/webhooks/whatsapp",
    tags=["webhooks"],
    dependencies=[Depends(require_webhook_token)],
)

_ingest = WhatsAppWebhookIngest()


async def _read_payload(request: Request) -> dict[str, Any] | InvalidPayload:
    """Accept JSON, form-encoded, or a raw text body holding JSON."""
    content_type = request.headers.get("content-type", "").lower()
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {key: value for key, value in form.items()}

    raw = (await request.body()).decode("utf-8", errors="replace").strip()
    if not raw:
        return InvalidPayload(issues={"body": ["Empty request body"]})
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return InvalidPayload(issues={"body": ["Body is not valid JSON"]})
    if not isinstance(parsed, dict):
        return InvalidPayload(issues={"body": ["Expected a JSON object"]})
    return parsed


@router.get("/incoming")
async def ping():
    return {"ok": True, "route": "whatsapp/incoming", "mode": settings.WHATSAPP_PROVIDER}


@router.post("/incoming")
async def incoming_message(request: Request, db: Session = Depends(get_db)):
    """
    Handle one inbound WhatsApp message.

    Order: normalise → idempotency check → patient lookup → route.
    """
    payload = await _read_payload(request)
    if isinstance(payload, InvalidPayload):
        return JSONResponse(status_code=400, content=payload.to_response())

    inbound = _ingest.normalize(payload)
    if isinstance(inbound, InvalidPayload):
        return JSONResponse(status_code=400, content=inbound.to_response())

    key = event_fingerprint(inbound.message_id, inbound.sender, inbound.timestamp, inbound.message)
    ledger = IdempotencyLedger(db=db, redis_client=get_redis())
    # Ledger and lookup are blocking I/O; keep them off the event loop
    if await asyncio.to_thread(ledger.is_duplicate, key):
        logger.info("Duplicate inbound event from %s skipped", mask_phone(inbound.sender))
        return {"ok": True, "duplicate": True}

    patient = await asyncio.to_thread(PatientResolver(db).resolve, inbound.sender)
    if patient is None:
        return {"ok": True, "ignored": True, "reason": "no_patient_match"}

    message_router = MessageRouter(
        db=db,
        dispatcher_registry=get_dispatcher_registry(),
        classifier=get_classifier(),
        config=RouterConfig.from_settings(),
    )
    result = await message_router.route(patient, inbound)
    logger.info(
        "Inbound message for patient %s handled by %s: %s",
        patient.id, result.source, result.action,
    )
    return result.to_response()
