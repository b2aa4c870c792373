# planner_core/queue/outcome.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class HandlerOutcome(str, Enum):
    ACK = "ack"
    RETRY = "retry"
    POISON = "poison"


@dataclass(frozen=True)
class Outcome:
    """
    What a consumer handler tells the transport to do with a message.

    ACK completes it, RETRY puts it back under the queue's backoff policy
    (moving it to the failed list once attempts are exhausted), POISON moves
    it to the failed list straight away.
    """
    tag: HandlerOutcome
    reason: Optional[str] = None
    result: Any = field(default=None, compare=False)

    @classmethod
    def ack(cls, result: Any = None) -> "Outcome":
        return cls(HandlerOutcome.ACK, result=result)

    @classmethod
    def retry(cls, reason: str) -> "Outcome":
        return cls(HandlerOutcome.RETRY, reason=reason)

    @classmethod
    def poison(cls, reason: str) -> "Outcome":
        return cls(HandlerOutcome.POISON, reason=reason)
