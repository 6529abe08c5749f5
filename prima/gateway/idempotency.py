"""
Idempotency Ledger: rejects re-delivery of the same inbound webhook event.

The upstream WhatsApp gateway retries aggressively and does not always
send a message id, so the fingerprint falls back to sender + timestamp +
text.  Both backends do an atomic check-and-set:

  - Redis:    ``SET key 1 NX EX ttl``
  - Database: INSERT into processed_events; a unique-key violation means
              duplicate unless the stored marker has already expired.
              Expired markers are purged before each insert.

If the ledger itself is unavailable the event is processed anyway.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import timedelta

from sqlalchemy import delete, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from prima import settings
from prima.db.base import utcnow
from prima.db.models import ProcessedEvent

logger = logging.getLogger("gateway.idempotency")

KEY_PREFIX = "webhook:whatsapp:incoming:"


class LedgerUnavailable(Exception):
    """Raised internally when no ledger backend can be reached."""


def event_fingerprint(
    message_id: str | None,
    sender: str,
    timestamp: str | None,
    text: str,
) -> str:
    """Stable ledger key for one logical inbound event."""
    if message_id:
        material = f"id:{message_id}"
    else:
        material = f"{sender}|{timestamp or ''}|{text}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return KEY_PREFIX + digest


class IdempotencyLedger:
    """
    Records fingerprints for ``ttl_seconds``.

    ``is_duplicate`` returns False exactly once per fingerprint inside the
    window (and records it), True afterwards.
    """

    def __init__(
        self,
        db: Session | None = None,
        redis_client=None,
        ttl_seconds: int | None = None,
    ) -> None:
        self._db = db
        self._redis = redis_client
        self._ttl = ttl_seconds or settings.IDEMPOTENCY_TTL_SECONDS

    def is_duplicate(self, key: str) -> bool:
        try:
            if self._redis is not None:
                return self._check_redis(key)
            if self._db is not None:
                return self._check_db(key)
            raise LedgerUnavailable("no ledger backend configured")
        except Exception as exc:
            logger.warning(
                "Idempotency ledger unavailable (%s); processing %s anyway",
                exc, key[-12:],
            )
            if self._redis is None and self._db is not None:
                self._db.rollback()
            return False

    def _check_redis(self, key: str) -> bool:
        stored = self._redis.set(key, "1", nx=True, ex=self._ttl)
        return not stored

    def _check_db(self, key: str) -> bool:
        now = utcnow()
        expires_at = now + timedelta(seconds=self._ttl)
        self._purge_expired(now)
        try:
            self._db.execute(
                insert(ProcessedEvent).values(key=key, created_at=now, expires_at=expires_at)
            )
            self._db.commit()
            return False
        except IntegrityError:
            self._db.rollback()

        # Reclaim the marker only if it has expired; the WHERE makes this atomic.
        result = self._db.execute(
            update(ProcessedEvent)
            .where(ProcessedEvent.key == key, ProcessedEvent.expires_at < now)
            .values(created_at=now, expires_at=expires_at)
        )
        self._db.commit()
        if result.rowcount == 1:
            logger.info("Idempotency marker %s expired; treating as new", key[-12:])
            return False
        return True

    def _purge_expired(self, now) -> None:
        """Drop markers past their window so the table stays bounded."""
        purged = self._db.execute(
            delete(ProcessedEvent)
            .where(ProcessedEvent.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        self._db.commit()
        if purged.rowcount:
            logger.debug("Purged %d expired idempotency markers", purged.rowcount)
