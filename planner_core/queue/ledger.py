# planner_core/queue/ledger.py
"""
Per-queue job bookkeeping kept next to the broker's own lists.

Keys under `{prefix}:{name}`:

    active      ZSET  job id -> lock deadline (epoch ms)
    delayed     ZSET  job id -> retry due time (epoch ms)
    completed   LIST  JSON entries, newest first, trimmed to remove_on_complete
    failed      LIST  JSON entries, newest first, trimmed to remove_on_fail

The broker owns delivery. The ledger only answers "how many" and "which
ones failed", so a write that fails here is logged and never affects the
handler's outcome.
"""
import json
import logging
import time
from typing import Any, Dict, List, Optional

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class JobLedger:

    def __init__(
        self,
        name: str,
        redis_client: Redis,
        *,
        prefix: str = "planner",
        remove_on_complete: int = 10,
        remove_on_fail: int = 50,
        lock_ms: int = 60000,
    ):
        self.name = name
        self.redis = redis_client
        self.remove_on_complete = remove_on_complete
        self.remove_on_fail = remove_on_fail
        self.lock_ms = lock_ms

        base = f"{prefix}:{name}"
        self.active_key = f"{base}:active"
        self.delayed_key = f"{base}:delayed"
        self.completed_key = f"{base}:completed"
        self.failed_key = f"{base}:failed"

    def started(self, job_id: str) -> None:
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.zrem(self.delayed_key, job_id)
            pipe.zadd(self.active_key, {job_id: now_ms() + self.lock_ms})
            pipe.execute()
        except RedisError as e:
            logger.warning(f"Queue {self.name}: could not record start of job {job_id}: {e}")

    def finished(self, job_id: str) -> None:
        try:
            self.redis.zrem(self.active_key, job_id)
        except RedisError as e:
            logger.warning(f"Queue {self.name}: could not clear active job {job_id}: {e}")

    def retrying(self, job_id: str, due_ms: int) -> None:
        try:
            self.redis.zadd(self.delayed_key, {job_id: due_ms})
        except RedisError as e:
            logger.warning(f"Queue {self.name}: could not record retry of job {job_id}: {e}")

    def completed(self, job_id: str, return_value: Any = None) -> None:
        entry = {"id": job_id, "finished_at": now_ms(), "return_value": return_value}
        self._push(self.completed_key, entry, self.remove_on_complete)

    def failed(
        self,
        job_id: str,
        data: Any,
        reason: str,
        attempts_made: int,
        priority: int = 0,
    ) -> None:
        entry = {
            "id": job_id,
            "data": data,
            "priority": priority,
            "attempts_made": attempts_made,
            "failed_reason": reason,
            "finished_at": now_ms(),
        }
        self._push(self.failed_key, entry, self.remove_on_fail)

    def _push(self, key: str, entry: Dict[str, Any], keep: int) -> None:
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.lpush(key, json.dumps(entry, default=str))
            if keep > 0:
                pipe.ltrim(key, 0, keep - 1)
            else:
                pipe.delete(key)
            pipe.execute()
        except RedisError as e:
            logger.warning(f"Queue {self.name}: could not record job {entry['id']} in {key}: {e}")

    def counts(self) -> Dict[str, int]:
        """Active, delayed, completed and failed counts. Raises RedisError."""
        now = now_ms()
        pipe = self.redis.pipeline(transaction=False)
        # A lock past its deadline belongs to a worker that died; the broker
        # redelivers that message on its own.
        pipe.zremrangebyscore(self.active_key, "-inf", now)
        pipe.zremrangebyscore(self.delayed_key, "-inf", now - self.lock_ms)
        pipe.zcard(self.active_key)
        pipe.zcard(self.delayed_key)
        pipe.llen(self.completed_key)
        pipe.llen(self.failed_key)
        _, _, active, delayed, completed, failed = pipe.execute()
        return {
            "delayed": int(delayed),
            "active": int(active),
            "completed": int(completed),
            "failed": int(failed),
        }

    def failed_entries(self, limit: int = 20) -> List[Dict[str, Any]]:
        entries = []
        for raw in self.redis.lrange(self.failed_key, 0, max(limit - 1, 0)):
            entry = _decode(raw)
            if entry is not None:
                entries.append(entry)
        return entries


def _decode(raw: Any) -> Optional[Dict[str, Any]]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        entry = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return entry if isinstance(entry, dict) else None
