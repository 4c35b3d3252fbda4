"""Cascade executor.

Runs a resolved subscriber list as a chain. Each handler receives a
``HandlerContext`` (and, when its signature takes a second positional
argument, a completion callback ``done(error, result)``) and settles its
step by exactly one of:

  - returning a non-``None`` value (awaitables are awaited and their result
    is the value)
  - calling ``done(error, result)``
  - calling ``ctx.reply(value)`` (an exception value settles as failure)

``ctx.next(params, options)`` hands off to the rest of the chain and
returns an awaitable of its result; the handler settles its own step with
that awaitable (``return ctx.next(...)`` or ``return await ctx.next(...)``).
Once the chain is exhausted the step settles with the params most recently
passed to ``next``. A plain handler that calls ``next`` without returning
its awaitable leaves the step pending (logged at debug level).

``async def`` handlers run to completion before their step is claimed, so
the coroutine body may settle through ``reply`` or ``done``. A coroutine that
finishes with ``None`` without having settled settles the step with
``None``.

Steps are scheduled with ``loop.call_soon`` on a cursor over the subscriber
snapshot, so a long ``next`` chain does not grow the Python stack.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping

from relay.errors import AlreadyHandled, DispatchError, HandlerFailure
from relay.event import Event
from relay.store import Subscriber

log = logging.getLogger(__name__)

ErrorReporter = Callable[[BaseException], None]
ParamsProcessor = Callable[[Any, Any], Any]


@dataclass(frozen=True)
class HandlerContext:
    event: Event
    params: Any
    options: Dict[str, Any]
    next: Callable[..., Awaitable[Any]]
    reply: Callable[[Any], None]
    dispatch: Callable[..., Awaitable[Any]]
    lookup: Callable[[Any], Any]
    emit: Callable[..., bool]
    emit_before: Callable[..., bool]
    emit_after: Callable[..., bool]


def as_failure(error: Any) -> DispatchError:
    """Dispatcher errors pass through; anything else becomes HandlerFailure."""
    if isinstance(error, DispatchError):
        return error
    failure = HandlerFailure(error)
    if isinstance(error, BaseException):
        failure.__cause__ = error
    return failure


class _Invocation:
    """Single-fire settlement guard for one handler call."""

    __slots__ = ("_future", "_report", "settled")

    def __init__(self, future: asyncio.Future, report: ErrorReporter) -> None:
        self._future = future
        self._report = report
        self.settled = False

    def _claim(self) -> bool:
        if self.settled:
            return False
        self.settled = True
        return True

    def _duplicate(self) -> AlreadyHandled:
        err = AlreadyHandled()
        self._report(err)
        return err

    # completion paths -------------------------------------------------
    def done(self, error: Any = None, result: Any = None) -> None:
        if not self._claim():
            raise self._duplicate()
        if error:
            self._reject(error)
        else:
            self._resolve(result)

    def reply(self, value: Any) -> None:
        if isinstance(value, BaseException):
            self.done(value)
        else:
            self.done(None, value)

    def returned(self, value: Any) -> None:
        if not self._claim():
            # nobody to raise to: the handler already returned
            self._duplicate()
            return
        self._resolve(value)

    def awaiting(self, awaitable: Any) -> None:
        """Settle from a coroutine once it finishes, unless its body already
        settled the step through ``done`` or ``reply``."""
        asyncio.ensure_future(awaitable).add_done_callback(self._finished)

    def _finished(self, fut: asyncio.Future) -> None:
        if fut.cancelled():
            if self._claim():
                self._future.cancel()
            return
        exc = fut.exception()
        if exc is not None:
            self.raised(exc)
            return
        value = fut.result()
        if value is not None:
            self.returned(value)
        elif self._claim():
            self._resolve(None)

    def raised(self, exc: Exception) -> None:
        if self._claim():
            self._reject(exc)
        elif not isinstance(exc, AlreadyHandled):
            # late failure after the step settled; result stays as is
            self._report(as_failure(exc))

    # settlement -------------------------------------------------------
    def _resolve(self, value: Any) -> None:
        if inspect.isawaitable(value):
            asyncio.ensure_future(value).add_done_callback(self._chain)
        elif not self._future.done():
            self._future.set_result(value)

    def _chain(self, fut: asyncio.Future) -> None:
        if fut.cancelled():
            self._future.cancel()
            return
        exc = fut.exception()
        if exc is not None:
            self._reject(exc)
        elif not self._future.done():
            self._future.set_result(fut.result())

    def _reject(self, error: Any) -> None:
        err = as_failure(error)
        self._report(err)
        if not self._future.done():
            self._future.set_exception(err)


class Cascade:
    def __init__(
        self,
        event: Event,
        subscribers: List[Subscriber],
        process_params: ParamsProcessor,
        report_error: ErrorReporter,
        capabilities: Mapping[str, Callable[..., Any]],
    ) -> None:
        self.event = event
        self._subscribers = list(subscribers)
        self._process_params = process_params
        self._report_error = report_error
        self._capabilities = dict(capabilities)
        self._loop = asyncio.get_running_loop()

    def __len__(self) -> int:
        return len(self._subscribers)

    def run(self, params: Any, options: Dict[str, Any]) -> asyncio.Future:
        return self._advance(0, params, options)

    def _advance(
        self, index: int, params: Any, options: Dict[str, Any]
    ) -> asyncio.Future:
        future = self._loop.create_future()
        self._loop.call_soon(self._step, index, params, options, future)
        return future

    def _step(
        self,
        index: int,
        params: Any,
        options: Dict[str, Any],
        future: asyncio.Future,
    ) -> None:
        if index >= len(self._subscribers):
            if not future.done():
                future.set_result(params)
            return

        subscriber = self._subscribers[index]
        invocation = _Invocation(future, self._report_error)

        handed_off = []

        def next_(
            new_params: Any = None, new_options: Any = None
        ) -> asyncio.Future:
            handed_off.append(index + 1)
            if new_options is None:
                new_options = options
            return self._advance(index + 1, new_params, new_options)

        try:
            processed = self._process_params(params, subscriber.config)
            ctx = HandlerContext(
                event=self.event,
                params=processed,
                options=options,
                next=next_,
                reply=invocation.reply,
                **self._capabilities,
            )
            if subscriber.wants_callback:
                result = subscriber.handler(ctx, invocation.done)
            else:
                result = subscriber.handler(ctx)
        except Exception as e:  # noqa: BLE001
            invocation.raised(e)
            return
        if inspect.isawaitable(result):
            invocation.awaiting(result)
        elif result is not None:
            invocation.returned(result)
        elif (
            handed_off
            and not subscriber.wants_callback
            and not invocation.settled
        ):
            log.debug(
                "%s handler %r called next() without returning it; "
                "step stays pending",
                self.event, subscriber.handler,
            )


__all__ = ["HandlerContext", "Cascade", "as_failure"]
