"""
Tests for the inbound WhatsApp webhook, organised by response type.
"""

import asyncio
import json

from sqlalchemy import func, select

from prima.db.enums import VerificationStatus
from prima.db.models import ConversationMessage, VerificationLog

URL = "/api/webhooks/whatsapp/incoming"
SENDER = "6281234567890"


def _payload(message="Ya saya setuju", **extra):
    body = {"sender": SENDER, "message": message, "device": "628111"}
    body.update(extra)
    return body


# ────────────────────────────── Auth ──────────────────────────────


class TestAuth:

    def test_missing_token(self, test_client):
        resp = test_client.post(URL, json=_payload())
        assert resp.status_code == 401

    def test_wrong_token(self, test_client):
        resp = test_client.post(URL, json=_payload(), headers={"X-Webhook-Token": "nope"})
        assert resp.status_code == 401

    def test_header_and_query_tokens(self, test_client, token):
        assert test_client.get(URL, headers={"X-Webhook-Token": token}).status_code == 200
        assert test_client.get(f"{URL}?token={token}").status_code == 200

    def test_unconfigured_token_rejects(self, test_client, auth, monkeypatch):
        monkeypatch.setattr("prima.settings.WEBHOOK_TOKEN", "")
        resp = test_client.post(URL, json=_payload(), headers=auth)
        assert resp.status_code == 401


# ────────────────────────────── Payload ─────────────────────────────


class TestPayload:

    def test_ping(self, test_client, auth):
        resp = test_client.get(URL, headers=auth)
        assert resp.status_code == 200
        assert resp.json()["ok"] is True

    def test_invalid_payload_issues(self, test_client, auth, db):
        resp = test_client.post(URL, json={"device": "628111"}, headers=auth)
        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "Invalid payload"
        assert "sender" in data["issues"]
        assert "message" in data["issues"]
        assert db.scalar(select(func.count()).select_from(ConversationMessage)) == 0

    def test_not_json(self, test_client, auth):
        resp = test_client.post(URL, content="sender=1", headers={**auth, "Content-Type": "text/plain"})
        assert resp.status_code == 400

    def test_unknown_sender_ignored(self, test_client, auth):
        resp = test_client.post(URL, json=_payload(), headers=auth)
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "ignored": True, "reason": "no_patient_match"}

    def test_form_encoded(self, test_client, auth, patient, harness):
        resp = test_client.post(URL, data={"From": f"whatsapp:+{SENDER}", "Body": "ya"}, headers=auth)
        assert resp.status_code == 200
        assert resp.json()["processed"] is True
        assert len(harness.messages_for(SENDER)) == 1

    def test_json_in_text_body(self, test_client, auth, patient):
        resp = test_client.post(
            URL, content=json.dumps(_payload()),
            headers={**auth, "Content-Type": "text/plain"},
        )
        assert resp.status_code == 200
        assert resp.json()["source"] == "verification"


# ────────────────────────────── Processing ──────────────────────────


class TestProcessing:

    def test_verification_accept(self, test_client, auth, patient, db, harness):
        resp = test_client.post(URL, json=_payload(), headers=auth)

        assert resp.status_code == 200
        data = resp.json()
        assert data["processed"] is True
        assert data["action"] == "verification_verified"
        db.refresh(patient)
        assert patient.verification_status == VerificationStatus.VERIFIED.value
        assert len(harness.messages_for(SENDER)) == 1

    def test_replay_is_idempotent(self, test_client, auth, patient, db, harness):
        payload = _payload(id="MSG-1")
        first = test_client.post(URL, json=payload, headers=auth)
        second = test_client.post(URL, json=payload, headers=auth)
        third = test_client.post(URL, json={**payload, "message": "tidak"}, headers=auth)

        assert first.json()["processed"] is True
        assert second.json() == {"ok": True, "duplicate": True}
        assert third.json() == {"ok": True, "duplicate": True}
        assert len(harness.messages_for(SENDER)) == 1
        assert db.scalar(select(func.count()).select_from(VerificationLog)) == 1

    def test_replay_without_id_uses_fingerprint(self, test_client, auth, patient, harness):
        payload = _payload(timestamp="1718000000")
        test_client.post(URL, json=payload, headers=auth)
        resp = test_client.post(URL, json=payload, headers=auth)
        assert resp.json()["duplicate"] is True
        assert len(harness.messages_for(SENDER)) == 1

    def test_ledger_and_lookup_run_off_the_event_loop(self, test_client, auth, patient, monkeypatch):
        offloaded = []
        to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr("prima.routers.webhook.asyncio.to_thread", recording_to_thread)

        resp = test_client.post(URL, json=_payload(), headers=auth)

        assert resp.json()["processed"] is True
        assert offloaded == ["is_duplicate", "resolve"]

    def test_open_text_without_classifier(self, test_client, auth, patient, db, harness):
        patient.verification_status = VerificationStatus.VERIFIED.value
        db.commit()

        resp = test_client.post(URL, json=_payload("kapan jadwal kontrol?"), headers=auth)

        assert resp.json()["source"] == "fallback"
        assert "terima kasih atas pesan Anda" in harness.messages_for(SENDER)[0].message


# ────────────────────────────── Health ──────────────────────────────


class TestHealth:

    def test_health(self, test_client):
        resp = test_client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "service": "prima-messaging"}
