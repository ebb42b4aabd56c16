"""In-process queue. Messages live only as long as the process."""
import heapq
import itertools
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from contractflow.queue.base import FailureHandler, Handler, Queue, QueueMessage


class InMemoryQueue(Queue):

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._seq = itertools.count()
        self._topics: Dict[str, List[Tuple[float, int, QueueMessage]]] = {}

    def _now(self) -> float:
        return self._clock()

    def _push(self, message: QueueMessage) -> None:
        with self._lock:
            heap = self._topics.setdefault(message.topic, [])
            heapq.heappush(heap, (message.available_at, next(self._seq), message))

    _schedule_retry = _push

    def _claim(self, topic: str) -> Optional[QueueMessage]:
        with self._lock:
            heap = self._topics.get(topic)
            if not heap or heap[0][0] > self._now():
                return None
            return heapq.heappop(heap)[2]

    def pending(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, []))

    def next_available_at(self, topic: str) -> Optional[float]:
        with self._lock:
            heap = self._topics.get(topic)
            return heap[0][0] if heap else None

    def drain(self, topic: str, handler: Handler, on_failed: Optional[FailureHandler] = None) -> int:
        """Process until the topic is empty, sleeping through retry backoff. Returns deliveries."""
        deliveries = 0
        while True:
            if self.process_next(topic, handler, on_failed):
                deliveries += 1
                continue
            available_at = self.next_available_at(topic)
            if available_at is None:
                return deliveries
            self._sleep(max(0.0, available_at - self._now()))
