"""
WhatsApp Ingest: turns provider webhook bodies into InboundMessages.

The upstream gateway (Fonnte, or Twilio in some deployments) has never
kept a stable schema, so every field is looked up under several aliases,
case-insensitively:

  sender     sender | phone | from | number | wa_number
  message    message | text | body
  device     device | gateway | instance
  name       name | sender_name | contact_name | pushname | ProfileName
  message_id id | message_id | msgId | MessageSid
  timestamp  timestamp | time | created_at
  poll       poll_name | pollName | poll   +   selected_option |
             selectedOption | vote | selected_options[0] | selectedOptions[0]

Poll payloads often arrive without text; the chosen option then stands
in as the message.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from prima.gateway.channels import WHATSAPP_CHANNEL, ChannelIngest
from prima.gateway.events import InboundMessage, InvalidPayload, PollReply

logger = logging.getLogger("gateway.ingest.whatsapp")

SENDER_ALIASES = ("sender", "phone", "from", "number", "wa_number")
MESSAGE_ALIASES = ("message", "text", "body")
DEVICE_ALIASES = ("device", "gateway", "instance")
NAME_ALIASES = ("name", "sender_name", "contact_name", "pushname", "profilename")
ID_ALIASES = ("id", "message_id", "msgid", "messagesid")
TIMESTAMP_ALIASES = ("timestamp", "time", "created_at")
POLL_NAME_ALIASES = ("poll_name", "pollname", "poll")
POLL_OPTION_ALIASES = (
    "selected_option", "selectedoption", "vote", "selected_options", "selectedoptions",
)


def _pick(payload: dict[str, Any], aliases: tuple[str, ...]) -> str | None:
    """First non-empty value among ``aliases`` (keys compared case-insensitively)."""
    lowered = {str(k).lower(): v for k, v in payload.items()}
    for alias in aliases:
        value = lowered.get(alias)
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if isinstance(value, dict):
            value = value.get("name") or value.get("value")
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def clean_sender(raw: str | None) -> str | None:
    """Strip channel prefixes and JID suffixes from a sender id."""
    if raw is None:
        return None
    sender = raw.strip()
    if sender.lower().startswith("whatsapp:"):
        sender = sender[len("whatsapp:"):]
    sender = sender.split("@", 1)[0]
    return sender.strip()


class WhatsAppWebhookIngest(ChannelIngest):
    """Normalises inbound WhatsApp webhook payloads."""

    channel_name = WHATSAPP_CHANNEL

    def normalize(self, raw_input: dict[str, Any]) -> InboundMessage | InvalidPayload:
        if not isinstance(raw_input, dict):
            return InvalidPayload(issues={"body": ["Expected a JSON object or form fields"]})

        sender = clean_sender(_pick(raw_input, SENDER_ALIASES))
        text = _pick(raw_input, MESSAGE_ALIASES)

        poll = None
        option = _pick(raw_input, POLL_OPTION_ALIASES)
        if option:
            poll = PollReply(
                poll_name=_pick(raw_input, POLL_NAME_ALIASES) or "",
                selected_option=option,
            )
            if not text:
                text = option

        candidate = {
            "sender": sender or "",
            "message": text or "",
            "device": _pick(raw_input, DEVICE_ALIASES),
            "name": _pick(raw_input, NAME_ALIASES),
            "message_id": _pick(raw_input, ID_ALIASES),
            "timestamp": _pick(raw_input, TIMESTAMP_ALIASES),
            "poll": poll,
            "raw": raw_input,
        }
        try:
            return InboundMessage(**candidate)
        except ValidationError as exc:
            issues: dict[str, list[str]] = {}
            for error in exc.errors():
                field_name = ".".join(str(part) for part in error.get("loc", ())) or "body"
                issues.setdefault(field_name, []).append(error.get("msg", "invalid"))
            logger.info("Rejected inbound payload: %s", issues)
            return InvalidPayload(issues=issues)
