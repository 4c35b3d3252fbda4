"""Minimal in-memory metrics collector.

Purpose:
    - Counters and simple latency samples for dispatch observability.
    - Zero external deps; can be swapped by a Prometheus exporter later.

Core API (intentionally tiny):
    inc(name, labels=None, value=1)
    observe(name, value, labels=None)
    snapshot() -> dict (copy for safe reading)

Thread-safety: coarse RLock; overhead negligible for in-process volume.

Dispatcher metric names (documented for discoverability):
    - dispatch_total{event,status}           # status: ok|error
    - dispatch_latency_ms{event}             # histogram
    - dispatch_errors_total{type}            # taxonomy code (relay.errors)
    - subscriptions_total{kind}              # kind: name|pattern
    - unsubscriptions_total{kind}
    - listener_exceptions_total{topic}
    - env_override_total{path}               # config loader
"""
from __future__ import annotations

from collections import deque
from threading import RLock
from time import time
from typing import Deque, Dict, Tuple, Any

# samples kept per histogram key for p50; count/min/max run over all values
HIST_WINDOW = 1024


class _Hist:
    __slots__ = ("count", "min", "max", "samples")

    def __init__(self) -> None:
        self.count = 0
        self.min = float("inf")
        self.max = float("-inf")
        self.samples: Deque[float] = deque(maxlen=HIST_WINDOW)

    def add(self, value: float) -> None:
        self.count += 1
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self.samples.append(value)


_COUNTERS: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
_HIST: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], _Hist] = {}
_LOCK = RLock()
_ENABLED = True


def _norm_labels(labels: dict[str, Any] | None) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def configure(enabled: bool) -> None:
    global _ENABLED  # noqa: PLW0603
    _ENABLED = bool(enabled)


def inc(
    name: str,
    labels: dict[str, Any] | None = None,
    value: float = 1.0,
) -> None:
    if not _ENABLED:
        return
    key = (name, _norm_labels(labels))
    with _LOCK:
        _COUNTERS[key] = _COUNTERS.get(key, 0.0) + value


def observe(
    name: str,
    value: float,
    labels: dict[str, Any] | None = None,
) -> None:
    if not _ENABLED:
        return
    key = (name, _norm_labels(labels))
    with _LOCK:
        _HIST.setdefault(key, _Hist()).add(value)


def snapshot() -> dict[str, Any]:
    with _LOCK:
        counters: dict[str, float] = {}
        for (name, labels), v in _COUNTERS.items():
            label_str = ""
            if labels:
                label_str = "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"
            counters[name + label_str] = v
        hist = {}
        for (name, labels), h in _HIST.items():
            if not h.count:
                continue
            label_str = ""
            if labels:
                label_str = "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"
            hist[name + label_str] = {
                "count": h.count,
                "min": h.min,
                "max": h.max,
                "p50": sorted(h.samples)[len(h.samples) // 2],
                "last": h.samples[-1],
            }
        return {
            "ts": time(),
            "counters": counters,
            "histograms": hist,
        }


def reset_for_tests() -> None:  # pragma: no cover
    with _LOCK:
        _COUNTERS.clear()
        _HIST.clear()


__all__ = [
    "configure",
    "inc",
    "observe",
    "snapshot",
    "reset_for_tests",
]


# ------------------- Dispatcher helpers -------------------

def inc_dispatch(event: str, status: str) -> None:
    """Count a settled dispatch; status is ok|error."""
    inc("dispatch_total", {"event": event, "status": status})


def observe_dispatch_latency(event: str, latency_ms: float) -> None:
    observe("dispatch_latency_ms", latency_ms, {"event": event})


def inc_dispatch_error(error_type: str) -> None:
    """Increment failure counter keyed by taxonomy code (relay.errors)."""
    if error_type:
        inc("dispatch_errors_total", {"type": error_type})


def inc_subscription(kind: str, removed: bool = False) -> None:
    name = "unsubscriptions_total" if removed else "subscriptions_total"
    inc(name, {"kind": kind})


def inc_listener_exception(topic: str) -> None:
    inc("listener_exceptions_total", {"topic": topic})


__all__ += [
    "inc_dispatch",
    "observe_dispatch_latency",
    "inc_dispatch_error",
    "inc_subscription",
    "inc_listener_exception",
]
