"""Notification primitive (sync, in-process).

Carries the dispatcher's lifecycle topics: ``error``, ``subscribed``,
``unsubscribed``, ``before:<event>`` and ``after:<event>``.

Features:
  - on(topic, listener) -> unsubscribe callable
  - emit(topic, *args) delivers positional args to every listener
  - listener isolation: exceptions are logged and counted, never propagated
    (so a broken ``error`` listener cannot take the dispatcher down)
  - metrics counter listener_exceptions_total{topic}
"""
from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Callable, Dict, List

from relay import metrics

Listener = Callable[..., Any]

log = logging.getLogger(__name__)


class EventBus:
    def __init__(self) -> None:
        self._subs: Dict[str, List[Listener]] = {}
        self._lock = RLock()

    def on(self, topic: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._subs.setdefault(topic, []).append(listener)

        def _unsub() -> None:  # noqa: D401
            self.off(topic, listener)

        return _unsub

    def off(self, topic: str, listener: Listener) -> None:
        with self._lock:
            subs = self._subs.get(topic)
            if not subs:
                return
            try:
                subs.remove(listener)
            except ValueError:
                return
            if not subs:
                del self._subs[topic]

    def emit(self, topic: str, *args: Any) -> bool:
        with self._lock:
            subs = list(self._subs.get(topic, ()))
        for listener in subs:
            try:
                listener(*args)
            except Exception:  # noqa: BLE001
                metrics.inc_listener_exception(topic)
                log.warning("listener for %r raised", topic, exc_info=True)
        return bool(subs)

    def listener_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subs.get(topic, ()))

    def reset_for_tests(self) -> None:  # pragma: no cover
        with self._lock:
            self._subs.clear()


def create_event_emitter() -> EventBus:
    return EventBus()


__all__ = ["EventBus", "Listener", "create_event_emitter"]
