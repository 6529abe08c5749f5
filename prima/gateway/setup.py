"""
Gateway Setup: builds the long-lived, stateless collaborators once at
startup: the outbound dispatcher registry, the intent classifier and the
Redis connection for the idempotency ledger.

Everything request-scoped (database session, router, state machines) is
built per request in the webhook handler.
"""

from __future__ import annotations

import logging

from prima import settings
from prima.db.session import init_db
from prima.gateway.agents.intent_classifier import GeminiIntentClassifier, IntentClassifier
from prima.gateway.channels import DispatcherRegistry
from prima.gateway.dispatchers.fonnte_dispatcher import FonnteDispatcher
from prima.gateway.dispatchers.test_harness_dispatcher import TestHarnessDispatcher
from prima.gateway.dispatchers.twilio_dispatcher import TwilioWhatsAppDispatcher
from prima.redis_client import close_redis_client, get_sync_redis_client

logger = logging.getLogger("gateway.setup")

# Module-level singletons (set during initialize)
_dispatcher_registry: DispatcherRegistry | None = None
_classifier: IntentClassifier | None = None
_redis = None


def build_dispatcher_registry(provider: str | None = None) -> DispatcherRegistry:
    """Registry with the WhatsApp dispatcher selected by ``WHATSAPP_PROVIDER``."""
    provider = (provider or settings.WHATSAPP_PROVIDER).lower()
    registry = DispatcherRegistry()
    if provider == "twilio":
        registry.register(TwilioWhatsAppDispatcher())
    elif provider == "harness":
        registry.register(TestHarnessDispatcher())
    else:
        if provider != "fonnte":
            logger.warning("Unknown WHATSAPP_PROVIDER '%s'; using fonnte", provider)
        registry.register(FonnteDispatcher())
    return registry


async def initialize_gateway() -> None:
    """Create tables and wire the shared components."""
    global _dispatcher_registry, _classifier, _redis

    logger.info("Initializing PRIMA messaging gateway...")
    init_db()

    _dispatcher_registry = build_dispatcher_registry()
    _classifier = GeminiIntentClassifier() if settings.USE_LLM else None

    try:
        _redis = get_sync_redis_client()
    except Exception as exc:
        logger.warning("Redis unavailable, using database idempotency ledger: %s", exc)
        _redis = None

    logger.info(
        "Gateway initialized: channels=%s, classifier=%s, ledger=%s",
        _dispatcher_registry.registered_channels,
        type(_classifier).__name__ if _classifier else "disabled",
        "redis" if _redis is not None else "database",
    )


async def shutdown_gateway() -> None:
    global _redis
    close_redis_client()
    _redis = None
    logger.info("Gateway shutdown complete")


def get_dispatcher_registry() -> DispatcherRegistry:
    global _dispatcher_registry
    if _dispatcher_registry is None:
        _dispatcher_registry = build_dispatcher_registry()
    return _dispatcher_registry


def get_classifier() -> IntentClassifier | None:
    return _classifier


def get_redis():
    return _redis
