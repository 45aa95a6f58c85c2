from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Tuple

MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]

MAX_EVENTS = 100


def _labels_tuple(labels: Optional[Dict[str, str]]) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return ()
    return tuple(sorted((key, str(value)) for key, value in labels.items()))


@dataclass
class Histogram:
    count: int = 0
    total: float = 0.0
    min_value: float = field(default=float("inf"))
    max_value: float = field(default=float("-inf"))

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min_value = min(self.min_value, value)
        self.max_value = max(self.max_value, value)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg": self.total / self.count if self.count else 0.0,
            "min": self.min_value if self.count else None,
            "max": self.max_value if self.count else None,
        }


_lock = threading.Lock()
_counters: Dict[MetricKey, float] = defaultdict(float)
_histograms: Dict[MetricKey, Histogram] = {}
_events: Deque[Dict[str, Any]] = deque(maxlen=MAX_EVENTS)


def increment_counter(name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
    with _lock:
        _counters[(name, _labels_tuple(labels))] += amount


def observe_latency(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    with _lock:
        _histograms.setdefault((name, _labels_tuple(labels)), Histogram()).observe(value)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    """Append to the bounded in-memory event log shown on /metrics."""
    with _lock:
        _events.append({"name": name, "timestamp": time.time(), "payload": payload})


def get_metrics_snapshot() -> Dict[str, Any]:
    snapshot: Dict[str, Any] = {"counters": {}, "histograms": {}}
    with _lock:
        for (name, labels), value in _counters.items():
            snapshot["counters"].setdefault(name, []).append({"labels": dict(labels), "value": value})
        for (name, labels), histogram in _histograms.items():
            snapshot["histograms"].setdefault(name, []).append(
                {"labels": dict(labels), "stats": histogram.snapshot()}
            )
        snapshot["events"] = list(_events)
    return snapshot


def reset_metrics() -> None:
    """Testing helper."""
    with _lock:
        _counters.clear()
        _histograms.clear()
        _events.clear()
