"""
Tests for the job ledger: bounded completed/failed history plus the active
and delayed sets behind queue stats. Runs against fakeredis.
"""

from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from planner_core.queue import JobLedger

LEDGER = "planner_core.queue.ledger"


class TestBoundedHistory:

    @pytest.mark.parametrize("keep_complete, keep_fail", [(10, 50), (5, 20)])
    def test_history_is_trimmed(self, fake_redis, keep_complete, keep_fail):
        ledger = JobLedger("Q", fake_redis, remove_on_complete=keep_complete, remove_on_fail=keep_fail)

        for i in range(keep_complete + 3):
            ledger.completed(f"c{i}")
        for i in range(keep_fail + 3):
            ledger.failed(f"f{i}", {"n": i}, "boom", attempts_made=3)

        counts = ledger.counts()
        assert counts["completed"] == keep_complete
        assert counts["failed"] == keep_fail

    def test_newest_failure_comes_first(self, fake_redis):
        ledger = JobLedger("Q", fake_redis, remove_on_fail=2)
        for i in range(3):
            ledger.failed(f"f{i}", {"n": i}, f"reason {i}", attempts_made=i + 1, priority=4)

        entries = ledger.failed_entries(limit=5)

        assert [e["id"] for e in entries] == ["f2", "f1"]
        assert entries[0]["data"] == {"n": 2}
        assert entries[0]["failed_reason"] == "reason 2"
        assert entries[0]["attempts_made"] == 3
        assert entries[0]["priority"] == 4

    def test_zero_retention_keeps_nothing(self, fake_redis):
        ledger = JobLedger("Q", fake_redis, remove_on_complete=0)

        ledger.completed("c1")

        assert ledger.counts()["completed"] == 0

    def test_undecodable_entries_are_skipped(self, fake_redis):
        ledger = JobLedger("Q", fake_redis)
        ledger.failed("f1", "raw", "boom", attempts_made=1)
        fake_redis.lpush(ledger.failed_key, "garbage{")

        assert [e["id"] for e in ledger.failed_entries()] == ["f1"]

    def test_keys_are_namespaced(self, fake_redis):
        ledger = JobLedger("TICKET_GENERATED", fake_redis, prefix="planner")

        assert ledger.failed_key == "planner:TICKET_GENERATED:failed"
        assert ledger.active_key == "planner:TICKET_GENERATED:active"


class TestActiveAndDelayed:

    def test_job_moves_through_active_and_delayed(self, fake_redis):
        ledger = JobLedger("Q", fake_redis)

        ledger.started("j1")
        assert ledger.counts()["active"] == 1

        ledger.retrying("j1", due_ms=10**15)
        ledger.finished("j1")
        counts = ledger.counts()
        assert (counts["active"], counts["delayed"]) == (0, 1)

        ledger.started("j1")
        counts = ledger.counts()
        assert (counts["active"], counts["delayed"]) == (1, 0)

    def test_expired_locks_are_dropped(self, fake_redis):
        ledger = JobLedger("Q", fake_redis, lock_ms=1000)
        with patch(f"{LEDGER}.now_ms", return_value=5000):
            ledger.started("dead-worker")
            ledger.retrying("never-redelivered", due_ms=5000)

        with patch(f"{LEDGER}.now_ms", return_value=5999):
            assert ledger.counts()["active"] == 1
        with patch(f"{LEDGER}.now_ms", return_value=6001):
            counts = ledger.counts()

        assert counts["active"] == 0
        assert counts["delayed"] == 0


class TestBrokerErrors:

    def test_writes_never_raise(self):
        redis_client = MagicMock()
        redis_client.pipeline.return_value.execute.side_effect = RedisConnectionError("down")
        redis_client.zrem.side_effect = RedisConnectionError("down")
        redis_client.zadd.side_effect = RedisConnectionError("down")
        ledger = JobLedger("Q", redis_client)

        ledger.started("j1")
        ledger.completed("j1", {"ok": True})
        ledger.failed("j1", {}, "boom", attempts_made=1)
        ledger.retrying("j1", due_ms=1)
        ledger.finished("j1")

    def test_counts_raise(self):
        redis_client = MagicMock()
        redis_client.pipeline.return_value.execute.side_effect = RedisConnectionError("down")

        with pytest.raises(RedisConnectionError):
            JobLedger("Q", redis_client).counts()
