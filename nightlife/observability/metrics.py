from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

LabelSet = Tuple[Tuple[str, str], ...]
SeriesKey = Tuple[str, LabelSet]

MAX_RECENT_EVENTS = 100


def _freeze(labels: Optional[Dict[str, str]]) -> LabelSet:
    if not labels:
        return ()
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


@dataclass
class LatencyStats:
    count: int = 0
    total: float = 0.0
    low: float = field(default=float("inf"))
    high: float = field(default=float("-inf"))

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        if value < self.low:
            self.low = value
        if value > self.high:
            self.high = value

    def summary(self) -> Dict[str, Any]:
        if not self.count:
            return {"count": 0, "avg": 0.0, "min": None, "max": None}
        return {
            "count": self.count,
            "avg": self.total / self.count,
            "min": self.low,
            "max": self.high,
        }


class MetricsRegistry:
    """Process-local counters, gauges, latency stats and a ring of recent events."""

    def __init__(self, max_events: int = MAX_RECENT_EVENTS) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[SeriesKey, float] = defaultdict(float)
        self._gauges: Dict[SeriesKey, float] = {}
        self._latencies: Dict[SeriesKey, LatencyStats] = {}
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)

    def increment(self, name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._counters[(name, _freeze(labels))] += amount

    def gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._gauges[(name, _freeze(labels))] = value

    def latency(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._latencies.setdefault((name, _freeze(labels)), LatencyStats()).add(value)

    def event(self, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._events.append({"name": name, "timestamp": time.time(), "payload": payload})

    def counter_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._counters.get((name, _freeze(labels)), 0.0)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": _group(self._counters.items(), lambda v: {"value": v}),
                "gauges": _group(self._gauges.items(), lambda v: {"value": v}),
                "histograms": _group(self._latencies.items(), lambda v: {"stats": v.summary()}),
                "events": list(self._events),
            }

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._latencies.clear()
            self._events.clear()


def _group(series, render) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for (name, labels), value in series:
        grouped.setdefault(name, []).append({"labels": dict(labels), **render(value)})
    return grouped


registry = MetricsRegistry()


def increment_counter(name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
    registry.increment(name, amount, labels)


def set_gauge(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    registry.gauge(name, value, labels)


def observe_latency(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    registry.latency(name, value, labels)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    registry.event(name, payload)


def get_metrics_snapshot() -> Dict[str, Any]:
    return registry.snapshot()


def reset_metrics() -> None:
    """Testing helper."""
    registry.clear()
