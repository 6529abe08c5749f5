"""
Tests for the idempotency ledger (database and Redis backends).
"""

from datetime import timedelta
from unittest.mock import MagicMock

from sqlalchemy import select

from prima.db.base import utcnow
from prima.db.models import ProcessedEvent
from prima.gateway.idempotency import KEY_PREFIX, IdempotencyLedger, event_fingerprint


class TestFingerprint:

    def test_message_id_wins(self):
        a = event_fingerprint("MSG-1", "628111", "1700000000", "sudah")
        b = event_fingerprint("MSG-1", "628222", "1700000999", "belum")
        assert a == b
        assert a.startswith(KEY_PREFIX)

    def test_fallback_uses_sender_timestamp_text(self):
        a = event_fingerprint(None, "628111", "1700000000", "sudah")
        assert a == event_fingerprint(None, "628111", "1700000000", "sudah")
        assert a != event_fingerprint(None, "628111", "1700000001", "sudah")
        assert a != event_fingerprint(None, "628111", "1700000000", "belum")


class TestDatabaseLedger:

    def test_first_call_records_then_duplicates(self, db):
        ledger = IdempotencyLedger(db=db, ttl_seconds=60)
        assert ledger.is_duplicate("k1") is False
        assert ledger.is_duplicate("k1") is True
        assert ledger.is_duplicate("k1") is True
        assert ledger.is_duplicate("k2") is False

    def test_expired_marker_is_reclaimed(self, db):
        db.add(ProcessedEvent(
            key="old", created_at=utcnow() - timedelta(days=2),
            expires_at=utcnow() - timedelta(days=1),
        ))
        db.commit()
        ledger = IdempotencyLedger(db=db, ttl_seconds=60)
        assert ledger.is_duplicate("old") is False
        assert ledger.is_duplicate("old") is True
        rows = db.scalars(select(ProcessedEvent).where(ProcessedEvent.key == "old")).all()
        assert len(rows) == 1

    def test_expired_markers_are_purged_on_insert(self, db):
        db.add(ProcessedEvent(
            key="stale", created_at=utcnow() - timedelta(days=2),
            expires_at=utcnow() - timedelta(days=1),
        ))
        db.add(ProcessedEvent(
            key="live", created_at=utcnow(), expires_at=utcnow() + timedelta(hours=1),
        ))
        db.commit()

        assert IdempotencyLedger(db=db, ttl_seconds=60).is_duplicate("fresh") is False

        keys = set(db.scalars(select(ProcessedEvent.key)).all())
        assert keys == {"live", "fresh"}


class TestRedisLedger:

    def test_set_nx_semantics(self):
        redis = MagicMock()
        redis.set.side_effect = [True, None]
        ledger = IdempotencyLedger(redis_client=redis, ttl_seconds=30)
        assert ledger.is_duplicate("k") is False
        assert ledger.is_duplicate("k") is True
        redis.set.assert_called_with("k", "1", nx=True, ex=30)

    def test_fails_open_when_unavailable(self):
        redis = MagicMock()
        redis.set.side_effect = ConnectionError("redis down")
        ledger = IdempotencyLedger(redis_client=redis)
        assert ledger.is_duplicate("k") is False

    def test_fails_open_without_backend(self):
        assert IdempotencyLedger().is_duplicate("k") is False
