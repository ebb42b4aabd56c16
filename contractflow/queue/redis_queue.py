"""
Redis-backed queue shared by API processes and worker processes.

Per topic: a list of ready messages, a sorted set of delayed retries scored
by due time in epoch milliseconds, and a processing list holding claimed
messages until they are acknowledged. Claim times live in a hash keyed by
the raw message.

A claim atomically moves a message from the ready list to the processing
list. A message still in the processing list after `visibility_timeout`
seconds belonged to a worker that died, and is moved back to the ready
list. Due retries are promoted and stale claims requeued on every claim.
"""
import json
import logging
import time
from typing import Optional

from contractflow.queue.base import Queue, QueueMessage

logger = logging.getLogger(__name__)


class RedisQueue(Queue):

    def __init__(self, client, prefix: str = "queue", visibility_timeout: float = 300.0):
        # Expects a client created with decode_responses=True
        self.client = client
        self.prefix = prefix
        self.visibility_timeout = visibility_timeout

    def _waiting_key(self, topic: str) -> str:
        return f"{self.prefix}:{topic}:waiting"

    def _delayed_key(self, topic: str) -> str:
        return f"{self.prefix}:{topic}:delayed"

    def _processing_key(self, topic: str) -> str:
        return f"{self.prefix}:{topic}:processing"

    def _claimed_key(self, topic: str) -> str:
        return f"{self.prefix}:{topic}:claimed"

    def _now(self) -> float:
        return time.time()

    def _now_ms(self) -> int:
        return int(self._now() * 1000)

    def _push(self, message: QueueMessage) -> None:
        self.client.lpush(self._waiting_key(message.topic), json.dumps(message.to_dict()))

    def _schedule_retry(self, message: QueueMessage) -> None:
        self.client.zadd(
            self._delayed_key(message.topic),
            {json.dumps(message.to_dict()): int(message.available_at * 1000)},
        )

    def _promote_due(self, topic: str) -> None:
        delayed_key = self._delayed_key(topic)
        due = self.client.zrangebyscore(delayed_key, "-inf", self._now_ms())
        for raw in due:
            # zrem decides the winner when several workers promote at once
            if self.client.zrem(delayed_key, raw):
                self.client.lpush(self._waiting_key(topic), raw)

    def requeue_stale(self, topic: str) -> int:
        """Move claims older than the visibility timeout back to the ready list. Returns the count."""
        processing_key = self._processing_key(topic)
        claimed_key = self._claimed_key(topic)
        now_ms = self._now_ms()
        deadline_ms = now_ms - int(self.visibility_timeout * 1000)

        requeued = 0
        for raw in self.client.lrange(processing_key, 0, -1):
            claimed_at = self.client.hget(claimed_key, raw)
            if claimed_at is None:
                # Claimer died between the move and the timestamp; start the clock now
                self.client.hsetnx(claimed_key, raw, now_ms)
                continue
            if int(claimed_at) > deadline_ms:
                continue
            # lrem decides the winner when several workers requeue at once
            if self.client.lrem(processing_key, 1, raw):
                self.client.hdel(claimed_key, raw)
                self.client.lpush(self._waiting_key(topic), raw)
                requeued += 1
        if requeued:
            logger.warning("Requeued %d unacknowledged message(s) on %s", requeued, topic)
        return requeued

    def _claim(self, topic: str) -> Optional[QueueMessage]:
        self.requeue_stale(topic)
        self._promote_due(topic)
        while True:
            raw = self.client.lmove(self._waiting_key(topic), self._processing_key(topic), "RIGHT", "LEFT")
            if raw is None:
                return None
            self.client.hset(self._claimed_key(topic), raw, self._now_ms())
            try:
                message = QueueMessage.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError) as e:
                logger.error("Dropping malformed message on %s: %s", topic, e)
                self._release(topic, raw)
                continue
            message.receipt = raw
            return message

    def _release(self, topic: str, raw: str) -> None:
        self.client.lrem(self._processing_key(topic), 1, raw)
        self.client.hdel(self._claimed_key(topic), raw)

    def _ack(self, message: QueueMessage) -> None:
        if message.receipt is not None:
            self._release(message.topic, message.receipt)

    def pending(self, topic: str) -> int:
        """Ready, delayed and claimed-but-unacknowledged messages."""
        return (
            self.client.llen(self._waiting_key(topic))
            + self.client.zcard(self._delayed_key(topic))
            + self.client.llen(self._processing_key(topic))
        )
