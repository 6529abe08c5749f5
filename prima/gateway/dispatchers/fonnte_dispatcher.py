"""
Fonnte Dispatcher: sends WhatsApp text through the Fonnte HTTP API.

Configuration (environment variables):
  FONNTE_TOKEN     device token issued by Fonnte
  FONNTE_API_URL   send endpoint (default https://api.fonnte.com/send)

Without a token the dispatcher runs in stub mode: it logs the message and
reports success with ``error="stub_mode"``.
"""

from __future__ import annotations

import logging

import httpx

from prima import settings
from prima.gateway.channels import (
    WHATSAPP_CHANNEL,
    ChannelDispatcher,
    DeliveryResult,
    OutboundMessage,
)

logger = logging.getLogger("gateway.dispatchers.fonnte")


class FonnteDispatcher(ChannelDispatcher):
    """Delivers WhatsApp messages via Fonnte."""

    channel_name = WHATSAPP_CHANNEL

    def __init__(
        self,
        token: str | None = None,
        api_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token if token is not None else settings.FONNTE_TOKEN
        self._api_url = api_url or settings.FONNTE_API_URL
        self._timeout = timeout
        self._transport = transport

    async def send(self, message: OutboundMessage) -> DeliveryResult:
        if not message.phone:
            logger.warning("Fonnte dispatch: no phone number")
            return DeliveryResult(
                success=False, channel=self.channel_name, phone="",
                error="No recipient phone number",
            )

        if not self._token:
            logger.info("Fonnte stub: WA → %s: %s", message.phone[-4:], message.message[:80])
            return DeliveryResult(
                success=True, channel=self.channel_name,
                phone=message.phone, error="stub_mode",
            )

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    self._api_url,
                    headers={"Authorization": self._token},
                    data={
                        "target": message.phone,
                        "message": message.message,
                        "countryCode": settings.DEFAULT_COUNTRY_CODE,
                    },
                )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Fonnte send error: %s", exc)
            return DeliveryResult(
                success=False, channel=self.channel_name,
                phone=message.phone, error=str(exc),
            )

        if not body.get("status", False):
            reason = body.get("reason") or body.get("detail") or "rejected"
            logger.warning("Fonnte rejected message to %s: %s", message.phone[-4:], reason)
            return DeliveryResult(
                success=False, channel=self.channel_name,
                phone=message.phone, error=str(reason),
            )

        ids = body.get("id") or []
        provider_id = str(ids[0]) if isinstance(ids, list) and ids else (str(ids) if ids else None)
        logger.info("Fonnte message sent: id=%s → %s", provider_id, message.phone[-4:])
        return DeliveryResult(
            success=True, channel=self.channel_name,
            phone=message.phone, provider_message_id=provider_id,
        )
