"""
Push-style delivery of newly recorded events to live subscribers.

Events are queued by the writer and handed to handlers on a single background
thread, so delivery is FIFO per test and ingestion never waits on a consumer.
"""

import itertools
import logging
import queue
import threading
import time
from typing import Callable, Dict, Optional, Sequence

from .exceptions import SubscriberFailure
from .schema import ExperimentEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[ExperimentEvent], None]
ErrorHandler = Callable[[SubscriberFailure], None]

_STOP = object()


class Subscription:
    """Handle returned by ``subscribe``; call ``unsubscribe`` to cancel."""

    def __init__(self, registry: "SubscriberRegistry", sub_id: int, test_id: str, handler: EventHandler):
        self._registry = registry
        self.sub_id = sub_id
        self.test_id = test_id
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._registry.remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"Subscription(test_id={self.test_id!r}, {state})"


class SubscriberRegistry:
    """Listener set per test plus the dispatcher thread that drives it."""

    def __init__(self, error_handler: Optional[ErrorHandler] = None):
        self._error_handler = error_handler
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Dict[int, Subscription]] = {}
        self._ids = itertools.count(1)
        self._queue: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._closed = False

    def subscribe(self, test_id: str, handler: EventHandler) -> Subscription:
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._lock:
            if self._closed:
                raise RuntimeError("Subscriber registry is closed")
            sub = Subscription(self, next(self._ids), test_id, handler)
            self._subscriptions.setdefault(test_id, {})[sub.sub_id] = sub
            self._ensure_worker()
        logger.debug(f"Subscribed {sub.sub_id} to test {test_id}")
        return sub

    def remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(sub.test_id)
            if subs is not None:
                subs.pop(sub.sub_id, None)
                if not subs:
                    del self._subscriptions[sub.test_id]
        logger.debug(f"Unsubscribed {sub.sub_id} from test {sub.test_id}")

    def subscriber_count(self, test_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(test_id, {}))

    def publish(self, events: Sequence[ExperimentEvent]) -> None:
        """Queue deliveries. Callers hold the ledger write lock, which fixes the order."""
        with self._lock:
            if self._closed or not self._subscriptions:
                return
            for event in events:
                for sub in self._subscriptions.get(event.test_id, {}).values():
                    self._queue.put((sub, event))

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued delivery has been dispatched; False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        done = self._queue.all_tasks_done
        with done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                done.wait(remaining)
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker
            self._subscriptions.clear()
        if worker is not None:
            self._queue.put(_STOP)
            worker.join()

    def _ensure_worker(self) -> None:
        if self._worker is None:
            self._worker = threading.Thread(
                target=self._run, name="experiment-event-dispatch", daemon=True
            )
            self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                sub, event = item
                if sub.active:
                    self._deliver(sub, event)
            finally:
                self._queue.task_done()

    def _deliver(self, sub: Subscription, event: ExperimentEvent) -> None:
        try:
            sub.handler(event)
        except Exception as exc:
            failure = SubscriberFailure(sub.test_id, event, sub.handler, exc)
            logger.exception(str(failure))
            if self._error_handler is not None:
                try:
                    self._error_handler(failure)
                except Exception:
                    logger.exception("Subscriber error handler failed")
