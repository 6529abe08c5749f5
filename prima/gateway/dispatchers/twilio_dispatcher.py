"""
Twilio WhatsApp Dispatcher: delivers messages via the Twilio REST API.

Alternative provider for deployments that route WhatsApp through Twilio.

Configuration (environment variables):
  TWILIO_ACCOUNT_SID       Twilio account SID
  TWILIO_AUTH_TOKEN        Twilio auth token
  TWILIO_WHATSAPP_NUMBER   sender number, e.g. "+14155238886"
"""

from __future__ import annotations

import asyncio
import logging
import os

from prima.gateway.channels import (
    WHATSAPP_CHANNEL,
    ChannelDispatcher,
    DeliveryResult,
    OutboundMessage,
)

logger = logging.getLogger("gateway.dispatchers.twilio")

# WhatsApp session messages are capped at 1600 characters by Twilio.
MAX_BODY_LENGTH = 1600


class TwilioWhatsAppDispatcher(ChannelDispatcher):
    """Delivers WhatsApp messages through Twilio."""

    channel_name = WHATSAPP_CHANNEL

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        client=None,
    ) -> None:
        self._account_sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID", "")
        self._auth_token = auth_token or os.getenv("TWILIO_AUTH_TOKEN", "")
        self._from_number = from_number or os.getenv("TWILIO_WHATSAPP_NUMBER", "")
        self._client = client

    def _get_client(self):
        """Lazy-initialize the Twilio client."""
        if self._client is None:
            if not self._account_sid or not self._auth_token:
                logger.warning("Twilio credentials not set; WhatsApp dispatcher in stub mode")
                return None
            from twilio.rest import Client

            self._client = Client(self._account_sid, self._auth_token)
            logger.info("Twilio client initialized")
        return self._client

    @staticmethod
    def _address(phone: str) -> str:
        phone = phone.strip()
        if phone.startswith("whatsapp:"):
            return phone
        if not phone.startswith("+"):
            phone = "+" + phone
        return "whatsapp:" + phone

    async def send(self, message: OutboundMessage) -> DeliveryResult:
        if not message.phone:
            logger.warning("Twilio dispatch: no phone number")
            return DeliveryResult(
                success=False, channel=self.channel_name, phone="",
                error="No recipient phone number",
            )

        body = message.message
        if len(body) > MAX_BODY_LENGTH:
            body = body[:MAX_BODY_LENGTH - 3] + "..."

        client = self._get_client()
        if client is None:
            logger.info("Twilio stub: WA → %s: %s", message.phone[-4:], body[:80])
            return DeliveryResult(
                success=True, channel=self.channel_name,
                phone=message.phone, error="stub_mode",
            )

        try:
            sent = await asyncio.to_thread(
                client.messages.create,
                body=body,
                from_=self._address(self._from_number),
                to=self._address(message.phone),
            )
        except Exception as exc:
            logger.error("Twilio WhatsApp send error: %s", exc)
            return DeliveryResult(
                success=False, channel=self.channel_name,
                phone=message.phone, error=str(exc),
            )

        logger.info("Twilio WhatsApp sent: SID=%s → %s", sent.sid, message.phone[-4:])
        return DeliveryResult(
            success=True, channel=self.channel_name,
            phone=message.phone, provider_message_id=sent.sid,
        )
