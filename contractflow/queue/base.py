"""
Broker-agnostic job queue interface.

A queue delivers messages for a topic to a handler. When the handler raises,
the broker retries with exponential backoff until the message's retry policy
is exhausted. A claimed message is acknowledged once its outcome is recorded;
backends that outlive the process (Redis) redeliver unacknowledged messages,
so delivery is at-least-once and handlers must tolerate replays. The
in-process backend loses everything with its process.
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """`attempts` counts deliveries, including the first one."""
    attempts: int = 3
    backoff_ms: int = 1000

    def delay_ms(self, attempts_made: int) -> int:
        """Delay before the next delivery, after `attempts_made` failures."""
        return self.backoff_ms * 2 ** (attempts_made - 1)


@dataclass
class QueueMessage:
    topic: str
    name: str
    payload: Dict[str, Any]
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempts_made: int = 0
    available_at: float = 0.0  # Seconds on the broker's clock
    last_error: Optional[str] = None
    # Backend handle for acknowledging this delivery; never serialized
    receipt: Optional[str] = field(default=None, compare=False, repr=False)

    @property
    def exhausted(self) -> bool:
        return self.attempts_made >= self.policy.attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "name": self.name,
            "payload": self.payload,
            "policy": {"attempts": self.policy.attempts, "backoff_ms": self.policy.backoff_ms},
            "attempts_made": self.attempts_made,
            "available_at": self.available_at,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueMessage":
        return cls(
            id=data["id"],
            topic=data["topic"],
            name=data["name"],
            payload=data["payload"],
            policy=RetryPolicy(**data["policy"]),
            attempts_made=data.get("attempts_made", 0),
            available_at=data.get("available_at", 0.0),
            last_error=data.get("last_error"),
        )


Handler = Callable[[QueueMessage], Any]
FailureHandler = Callable[[QueueMessage, BaseException], Any]


class Queue(ABC):
    """
    Subclasses supply storage: `_push`, `_claim`, `_schedule_retry`, `_now`,
    and optionally `_ack`.
    """

    def enqueue(
        self,
        topic: str,
        payload: Dict[str, Any],
        retry_policy: Optional[RetryPolicy] = None,
        name: str = "default",
    ) -> str:
        message = QueueMessage(
            topic=topic,
            name=name,
            payload=payload,
            policy=retry_policy or RetryPolicy(),
            available_at=self._now(),
        )
        self._push(message)
        logger.debug("Enqueued %s message %s on %s", name, message.id, topic)
        return message.id

    def process_next(
        self,
        topic: str,
        handler: Handler,
        on_failed: Optional[FailureHandler] = None,
    ) -> bool:
        """Run at most one due message. Returns False when nothing was due."""
        message = self._claim(topic)
        if message is None:
            return False

        try:
            handler(message)
        except Exception as e:
            message.attempts_made += 1
            message.last_error = str(e)
            if not message.exhausted:
                delay_ms = message.policy.delay_ms(message.attempts_made)
                message.available_at = self._now() + delay_ms / 1000
                self._schedule_retry(message)
                logger.info(
                    "Message %s failed (attempt %d/%d), retrying in %dms",
                    message.id, message.attempts_made, message.policy.attempts, delay_ms,
                )
            else:
                logger.error(
                    "Message %s failed after %d attempts: %s",
                    message.id, message.attempts_made, e,
                )
            if on_failed is not None:
                try:
                    on_failed(message, e)
                except Exception:
                    logger.exception("Failure handler raised for message %s", message.id)
        self._ack(message)
        return True

    def consume(
        self,
        topic: str,
        handler: Handler,
        on_failed: Optional[FailureHandler] = None,
        stop_event: Optional[threading.Event] = None,
        poll_interval: float = 1.0,
    ) -> None:
        """Block, handling one message at a time, until `stop_event` is set."""
        stop_event = stop_event or threading.Event()
        logger.info("Consuming %s", topic)
        while not stop_event.is_set():
            if not self.process_next(topic, handler, on_failed):
                stop_event.wait(poll_interval)
        logger.info("Stopped consuming %s", topic)

    @abstractmethod
    def _now(self) -> float:
        ...

    @abstractmethod
    def _push(self, message: QueueMessage) -> None:
        ...

    @abstractmethod
    def _claim(self, topic: str) -> Optional[QueueMessage]:
        ...

    @abstractmethod
    def _schedule_retry(self, message: QueueMessage) -> None:
        ...

    def _ack(self, message: QueueMessage) -> None:
        """Release a claimed message. Skipped when processing dies midway."""
