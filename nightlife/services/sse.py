"""
Server-sent events for checkout status.

Browsers waiting on a payment open ``/api/sse/transaction/<id>`` and receive
``data: {...}`` frames. The registry lives on the Flask app
(``app.extensions["sse_registry"]``) and is process-local.
"""
from __future__ import annotations

import json
import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

from nightlife.observability import set_gauge

logger = logging.getLogger(__name__)

EXTENSION_KEY = "sse_registry"


class EventType:
    CONNECTED = "connected"
    STATUS_UPDATE = "status_update"
    PING = "ping"
    ERROR = "error"


def make_event(event_type: str, transaction_id: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
    event: Dict[str, Any] = {
        "type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if transaction_id is not None:
        event["transactionId"] = transaction_id
    event.update(fields)
    return event


def format_event(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


class Subscription:
    """One open stream. Events are buffered in a bounded queue until the stream reads them."""

    def __init__(self, registry: "ConnectionRegistry", transaction_id: str, maxsize: int = 100) -> None:
        self.registry = registry
        self.transaction_id = transaction_id
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=maxsize)
        self.closed = False

    def deliver(self, event: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("SSE buffer full for transaction %s, dropping subscriber", self.transaction_id)
            return False
        return True

    def next_event(self, timeout: Optional[float]) -> Optional[Dict[str, Any]]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.registry.unsubscribe(self)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, transaction_id: str) -> Subscription:
        subscription = Subscription(self, transaction_id)
        with self._lock:
            self._subscribers.setdefault(transaction_id, []).append(subscription)
        self._report()
        logger.info("SSE client connected for transaction %s", transaction_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            current = self._subscribers.get(subscription.transaction_id, [])
            remaining = [s for s in current if s is not subscription]
            if remaining:
                self._subscribers[subscription.transaction_id] = remaining
            else:
                self._subscribers.pop(subscription.transaction_id, None)
        subscription.closed = True
        self._report()

    def publish(self, transaction_id: str, event: Dict[str, Any]) -> int:
        """Fan ``event`` out to every open stream for the transaction. Returns how many received it."""
        with self._lock:
            targets = list(self._subscribers.get(transaction_id, []))

        delivered = 0
        for subscription in targets:
            if subscription.deliver(event):
                delivered += 1
            else:
                self.unsubscribe(subscription)
        if targets:
            logger.info("SSE %s sent to %d client(s) for %s", event.get("type"), delivered, transaction_id)
        return delivered

    def connection_count(self, transaction_id: Optional[str] = None) -> int:
        with self._lock:
            if transaction_id is not None:
                return len(self._subscribers.get(transaction_id, []))
            return sum(len(subs) for subs in self._subscribers.values())

    def _report(self) -> None:
        set_gauge("sse_connections", self.connection_count())


def stream(subscription: Subscription, initial: Iterable[Dict[str, Any]], ping_interval: float) -> Iterator[str]:
    """Yield SSE frames until the client goes away; a ping is sent after each quiet interval."""
    try:
        for event in initial:
            yield format_event(event)
        while not subscription.closed:
            event = subscription.next_event(timeout=ping_interval)
            if event is None:
                event = make_event(EventType.PING, subscription.transaction_id)
            yield format_event(event)
    finally:
        subscription.close()
