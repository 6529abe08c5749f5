"""
Channel Abstractions: inbound normalisation and outbound dispatch.

The message pipeline never talks to a WhatsApp provider directly.  It
hands ``OutboundMessage`` objects to the ``DispatcherRegistry`` and gets
inbound traffic already normalised by a ``ChannelIngest``.  Switching
provider is a new dispatcher plus one line in setup.py.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from prima.gateway.events import InboundMessage, InvalidPayload

logger = logging.getLogger("gateway.channels")

WHATSAPP_CHANNEL = "whatsapp"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  OUTBOUND: delivering messages to patients
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class OutboundMessage(BaseModel):
    """A text message to send to one phone number."""

    phone: str              # canonical digits, e.g. "6281234567890"
    message: str
    channel: str = WHATSAPP_CHANNEL
    metadata: dict[str, Any] = Field(default_factory=dict)
    # e.g. {"patient_id": "...", "message_type": "verification_ack"}


class DeliveryResult(BaseModel):
    """Outcome of a single delivery attempt."""

    success: bool
    channel: str
    phone: str
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class ChannelDispatcher(ABC):
    """Abstract outbound channel."""

    channel_name: str = ""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> DeliveryResult:
        """Deliver one message. Must not raise; report failure in the result."""


class DispatcherRegistry:
    """
    Registry of active ChannelDispatchers.

    Callers use ``dispatch()``; it picks the dispatcher by channel name and
    retries once on failure.
    """

    def __init__(self) -> None:
        self._dispatchers: dict[str, ChannelDispatcher] = {}

    def register(self, dispatcher: ChannelDispatcher) -> None:
        name = dispatcher.channel_name
        self._dispatchers[name] = dispatcher
        logger.info("Registered channel dispatcher: %s (%s)", name, type(dispatcher).__name__)

    def get(self, channel_name: str) -> ChannelDispatcher | None:
        return self._dispatchers.get(channel_name)

    @property
    def registered_channels(self) -> list[str]:
        return list(self._dispatchers.keys())

    async def dispatch(self, message: OutboundMessage) -> DeliveryResult:
        """Route one message to its dispatcher (with single retry)."""
        dispatcher = self.get(message.channel)
        if dispatcher is None:
            logger.warning("No dispatcher for channel '%s'; message dropped", message.channel)
            return DeliveryResult(
                success=False,
                channel=message.channel,
                phone=message.phone,
                error=f"No dispatcher registered for channel '{message.channel}'",
            )
        result: DeliveryResult | None = None
        for attempt in range(2):
            try:
                result = await dispatcher.send(message)
            except Exception as exc:
                logger.warning(
                    "Dispatcher '%s' error (attempt %d): %s",
                    message.channel, attempt + 1, exc,
                )
                result = DeliveryResult(
                    success=False, channel=message.channel,
                    phone=message.phone, error=str(exc),
                )
            if result.success:
                return result
            if attempt == 0:
                await asyncio.sleep(0.5)
        logger.error(
            "Delivery to %s on %s failed after retry: %s",
            message.metadata.get("patient_id", "?"), message.channel, result.error,
        )
        return result


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  INBOUND: converting provider payloads into InboundMessages
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ChannelIngest(ABC):
    """Abstract inbound channel."""

    channel_name: str = ""

    @abstractmethod
    def normalize(self, raw_input: dict[str, Any]) -> InboundMessage | InvalidPayload:
        """Turn a provider payload into the canonical message, or say why not."""
