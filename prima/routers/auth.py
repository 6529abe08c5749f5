"""Static-token authentication shared by the webhook and prompt routes."""

from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Request

from prima import settings

logger = logging.getLogger("prima.auth")


def _presented_token(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return (
        request.headers.get("x-webhook-token")
        or request.query_params.get("token")
        or ""
    ).strip()


def require_webhook_token(request: Request) -> None:
    """FastAPI dependency: 401 unless the configured token is presented."""
    expected = settings.WEBHOOK_TOKEN
    presented = _presented_token(request)
    if not expected:
        logger.error("WEBHOOK_TOKEN is not configured; rejecting %s", request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not presented or not hmac.compare_digest(presented.encode(), expected.encode()):
        logger.warning("Rejected request to %s: bad token", request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")
