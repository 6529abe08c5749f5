"""Result types passed from the handlers back to the message router."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class HandlerOutcome:
    """
    What a handler did with a message.

    ``reply`` is the acknowledgement to send (None means send nothing).
    ``handled=False`` tells the router to keep going down the pipeline.
    """
    action: str
    reply: str | None = None
    message_type: str = "general"
    handled: bool = True
    intent: str | None = None
    confidence: float | None = None


@dataclass
class RouteResult:
    """Summary returned to the webhook for one processed message."""
    source: str
    action: str
    replied: bool = False
    delivered: bool = False

    def to_response(self) -> dict:
        if self.source == "error":
            return {"ok": True, "processed": False, "error": "internal"}
        return {
            "ok": True,
            "processed": True,
            "source": self.source,
            "action": self.action,
            "replied": self.replied,
        }
