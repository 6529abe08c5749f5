"""
Inbound event model: the one canonical shape every WhatsApp webhook
payload is normalised into before anything else looks at it.

Normalisation returns a tagged union: ``InboundMessage`` on success or
``InvalidPayload`` carrying field-level issues.  Only the canonical struct
is validated, never the raw provider payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class PollOption(str, Enum):
    """Predefined answers a patient can pick in a WhatsApp poll."""

    YES = "ya"
    NO = "tidak"
    TAKEN = "sudah"
    NOT_YET = "belum"
    NEED_HELP = "butuh bantuan"

    @classmethod
    def parse(cls, raw: str | None) -> PollOption | None:
        value = " ".join((raw or "").strip().lower().split())
        for option in cls:
            if option.value == value:
                return option
        return None


VERIFICATION_POLL_OPTIONS = {PollOption.YES, PollOption.NO}
CONFIRMATION_POLL_OPTIONS = {PollOption.TAKEN, PollOption.NOT_YET, PollOption.NEED_HELP}


class PollReply(BaseModel):
    """A structured answer selected from a poll."""

    poll_name: str = ""
    selected_option: str

    @property
    def option(self) -> PollOption | None:
        return PollOption.parse(self.selected_option)


class InboundMessage(BaseModel):
    """Canonical inbound WhatsApp message."""

    sender: str = Field(min_length=6)
    message: str = Field(min_length=1)
    device: Optional[str] = None
    name: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: Optional[str] = None
    poll: Optional[PollReply] = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def is_poll(self) -> bool:
        return self.poll is not None


@dataclass
class InvalidPayload:
    """Normalisation failure: field name → list of problems."""
    issues: dict[str, list[str]] = field(default_factory=dict)

    def to_response(self) -> dict[str, Any]:
        return {"error": "Invalid payload", "issues": self.issues}
