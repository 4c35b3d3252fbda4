"""Dispatch facade.

``create_event_dispatcher()`` builds a ``Dispatcher`` bundling a
subscription store, a notification emitter and the parameter processor.

Dispatch flow:
  normalize name → proxy redirection → resolve subscribers (snapshot)
  → ``before:<event>`` → cascade → ``after:<event>`` (success only)
  → future result / callback

``dispatch`` needs a running event loop and returns an ``asyncio.Future``.
Identifier and handler errors raise synchronously; runtime failures
(no subscribers, schema validation, handler failure) fail the future and
are broadcast once on the ``error`` topic.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, fields, replace
from functools import partial
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional

from relay import metrics
from relay.cascade import Cascade, as_failure
from relay.config import AggregatedConfig, ConfigError, get_config
from relay.config.schemas.dispatcher import DispatcherSettings
from relay.errors import (
    InvalidEventIdentifier,
    InvalidHandler,
    NoSubscribers,
    map_exception,
)
from relay.event import DEFAULT_DELIMITER, RESERVED_NAMES, Event
from relay.eventbus import EventBus, create_event_emitter
from relay.logs import setup_logging
from relay.params import process_params as default_process_params
from relay.store import Handler, Proxy, Subscriber, SubscriptionStore

log = logging.getLogger(__name__)

_OPTION_ALIASES = {
    "processParams": "process_params",
    "createEventEmitter": "create_event_emitter",
    "reservedNames": "reserved_names",
}


def _identity(value: Any) -> Any:
    return value


@dataclass(frozen=True)
class DispatcherOptions:
    delimiter: str = DEFAULT_DELIMITER
    process_params: Callable[[Any, Any], Any] = default_process_params
    create_event_emitter: Callable[[], EventBus] = create_event_emitter
    reserved_names: FrozenSet[str] = RESERVED_NAMES

    @classmethod
    def from_config(
        cls, cfg: Optional[AggregatedConfig] = None, **overrides: Any
    ) -> "DispatcherOptions":
        cfg = cfg or get_config()
        base = cls(
            delimiter=cfg.dispatcher.delimiter,
            reserved_names=frozenset(cfg.dispatcher.reserved_names),
        )
        return base.merged(**overrides)

    def merged(self, **overrides: Any) -> "DispatcherOptions":
        known = {f.name for f in fields(self)}
        clean: Dict[str, Any] = {}
        for key, value in overrides.items():
            key = _OPTION_ALIASES.get(key, key)
            if key not in known:
                raise ConfigError(f"Unknown dispatcher option '{key}'")
            if value is not None:
                clean[key] = value
        if "delimiter" in clean:
            try:
                DispatcherSettings(delimiter=clean["delimiter"])
            except Exception as e:  # noqa: BLE001
                raise ConfigError(f"Invalid delimiter: {e}") from e
        if "reserved_names" in clean:
            clean["reserved_names"] = frozenset(clean["reserved_names"])
        return replace(self, **clean)


@dataclass(frozen=True)
class NotificationContext:
    """Trailing argument of dispatcher-emitted notifications."""

    dispatch: Callable[..., asyncio.Future]
    lookup: Callable[[Any], "Methods"]
    options: Dict[str, Any] = field(default_factory=dict)


class Methods(dict):
    """Dispatch shortcuts keyed by leaf name, also reachable as attributes."""

    def __getattr__(self, name: str) -> Callable[..., asyncio.Future]:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None


class Dispatcher:
    def __init__(self, options: Optional[DispatcherOptions] = None) -> None:
        self.options = options or DispatcherOptions()
        self._store = SubscriptionStore(self.options.delimiter)
        self._emitter = self.options.create_event_emitter()
        self._capabilities = {
            "dispatch": self.dispatch,
            "lookup": self.lookup,
            "emit": self.emit,
            "emit_before": self.emit_before,
            "emit_after": self.emit_after,
        }

    @property
    def store(self) -> SubscriptionStore:
        return self._store

    # ------------------------------------------------------------------
    # identity helpers
    def _event(self, identifier: Any) -> Event:
        return Event.from_identifier(
            identifier,
            delimiter=self.options.delimiter,
            reserved=self.options.reserved_names,
        )

    def _name(self, identifier: Any) -> str:
        ev = self._event(identifier)
        if ev.is_pattern:
            raise InvalidEventIdentifier(
                identifier, "only names can be dispatched or proxied"
            )
        return ev.identifier

    # ------------------------------------------------------------------
    # notifications
    def on(
        self, topic: str, listener: Callable[..., Any]
    ) -> Callable[[], None]:
        return self._emitter.on(topic, listener)

    def on_before(
        self, event: Any, listener: Callable[..., Any]
    ) -> Callable[[], None]:
        return self.on(f"before:{self._name(event)}", listener)

    def on_after(
        self, event: Any, listener: Callable[..., Any]
    ) -> Callable[[], None]:
        return self.on(f"after:{self._name(event)}", listener)

    def emit(
        self, topic: str, *args: Any, options: Optional[Dict[str, Any]] = None
    ) -> bool:
        ctx = NotificationContext(self.dispatch, self.lookup, options or {})
        return self._emitter.emit(topic, *args, ctx)

    def emit_before(self, event: Any, *args: Any, **kwargs: Any) -> bool:
        return self.emit(f"before:{self._name(event)}", *args, **kwargs)

    def emit_after(self, event: Any, *args: Any, **kwargs: Any) -> bool:
        return self.emit(f"after:{self._name(event)}", *args, **kwargs)

    def _report_error(self, err: BaseException) -> None:
        # one broadcast per failure even when it bubbles through nested steps
        if getattr(err, "_reported", False):
            return
        try:
            err._reported = True  # type: ignore[attr-defined]
        except AttributeError:  # pragma: no cover
            pass
        code = map_exception(err)
        metrics.inc_dispatch_error(code)
        log.warning("dispatch failure type=%s: %s", code, err)
        self._emitter.emit("error", err)

    # ------------------------------------------------------------------
    # subscriptions
    def subscribe(
        self, event: Any, handler: Handler, config: Any = None
    ) -> Callable[[], None]:
        if not callable(handler):
            raise InvalidHandler(event, handler)
        ev = self._event(event)
        subscriber = Subscriber.create(handler, config)
        self._store.add(ev.identifier, subscriber)
        metrics.inc_subscription("pattern" if ev.is_pattern else "name")
        log.debug("subscribed %s uid=%s", ev, ev.uid)
        self.emit("subscribed", ev.identifier, subscriber)

        def _unsub() -> None:  # noqa: D401
            self.unsubscribe(ev.identifier, handler)

        return _unsub

    def unsubscribe(
        self, event: Any, handler: Optional[Handler] = None
    ) -> None:
        ev = self._event(event)
        if self._store.remove(ev.identifier, handler):
            metrics.inc_subscription(
                "pattern" if ev.is_pattern else "name", removed=True
            )
        self.emit("unsubscribed", ev.identifier, handler)

    def subscribe_map(
        self, prefix: Any, handler_map: Mapping[str, Handler]
    ) -> Dict[str, Callable[[], None]]:
        prefix = self._name(prefix)
        unsubscribers: Dict[str, Callable[[], None]] = {}
        for method, handler in handler_map.items():
            name = f"{prefix}{self.options.delimiter}{method}"
            unsubscribers[method] = self.subscribe(name, handler)
        return unsubscribers

    def proxy(
        self,
        source: Any,
        target: Any,
        transform: Optional[Callable[[Any], Any]] = None,
    ) -> None:
        transform = transform or _identity
        if not callable(transform):
            raise InvalidHandler(source, transform)
        self._store.set_proxy(
            self._name(source), Proxy(self._name(target), transform)
        )

    def lookup(self, prefix: Any) -> Methods:
        prefix = self._name(prefix)
        methods = Methods()
        for leaf in self._store.leaves(prefix):
            name = f"{prefix}{self.options.delimiter}{leaf}"
            methods[leaf] = partial(self._dispatch_leaf, name)
        return methods

    def _dispatch_leaf(self, name: str, params: Any = None) -> asyncio.Future:
        return self.dispatch(name, params)

    # ------------------------------------------------------------------
    # dispatch
    def dispatch(
        self,
        event: Any,
        params: Any = None,
        options: Any = None,
        callback: Optional[Callable[..., Any]] = None,
    ) -> asyncio.Future:
        if callback is None and callable(options):
            callback, options = options, None
        if options is None:
            options = {}
        ev = self._event(event)
        if ev.is_pattern:
            raise InvalidEventIdentifier(event, "only names can be dispatched")
        name = ev.identifier
        loop = asyncio.get_running_loop()
        result = loop.create_future()
        started = time.perf_counter()
        settle = partial(self._settle, ev, options, callback, result, started)

        proxy = self._store.get_proxy(name)
        target = proxy.target if proxy else name
        subscribers = self._store.resolve(target)
        if proxy:
            try:
                params = proxy.transform(params)
            except Exception as e:  # noqa: BLE001
                settle(error=as_failure(e))
                return result
        if not subscribers:
            settle(error=NoSubscribers(name))
            return result

        log.debug(
            "dispatch %s uid=%s target=%s subscribers=%d",
            name, ev.uid, target, len(subscribers),
        )
        self.emit_before(name, params, options=options)
        cascade = Cascade(
            ev,
            subscribers,
            self.options.process_params,
            self._report_error,
            self._capabilities,
        )
        cascade.run(params, options).add_done_callback(
            lambda fut: settle(fut=fut)
        )
        return result

    def _settle(
        self,
        ev: Event,
        options: Dict[str, Any],
        callback: Optional[Callable[..., Any]],
        result: asyncio.Future,
        started: float,
        fut: Optional[asyncio.Future] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        name = ev.identifier
        if fut is not None:
            if fut.cancelled():
                result.cancel()
                return
            error = fut.exception()
        metrics.observe_dispatch_latency(
            name, (time.perf_counter() - started) * 1000
        )
        if error is not None:
            self._report_error(error)
            metrics.inc_dispatch(name, "error")
            if callback is None:
                result.set_exception(error)
                return
            self._complete(result, callback, error)
            return
        value = fut.result()
        metrics.inc_dispatch(name, "ok")
        self.emit_after(name, value, options=options)
        if callback is None:
            result.set_result(value)
        else:
            self._complete(result, callback, None, value)

    @staticmethod
    def _complete(
        result: asyncio.Future, callback: Callable[..., Any], *args: Any
    ) -> None:
        try:
            value = callback(*args)
        except Exception as e:  # noqa: BLE001
            result.set_exception(e)
            return
        result.set_result(value)


def create_event_dispatcher(
    options: Any = None, **overrides: Any
) -> Dispatcher:
    """Build a dispatcher from the loaded config plus per-instance overrides.

    ``options`` may be a ``DispatcherOptions`` or a mapping; keyword
    overrides are applied on top. Options are merged once and never mutated.
    """
    cfg = get_config()
    setup_logging(cfg.logging.level, cfg.logging.format)
    metrics.configure(cfg.metrics.enabled)
    if isinstance(options, DispatcherOptions):
        opts = options.merged(**overrides)
    else:
        merged = {**(options or {}), **overrides}
        opts = DispatcherOptions.from_config(cfg, **merged)
    return Dispatcher(opts)


__all__ = [
    "Dispatcher",
    "DispatcherOptions",
    "NotificationContext",
    "Methods",
    "create_event_dispatcher",
]
