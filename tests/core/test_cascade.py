import asyncio
import logging
import re

import pytest

from relay.errors import AlreadyHandled, HandlerFailure


def test_returned_value_settles(dispatcher):
    dispatcher.subscribe("test", lambda ctx: "it works")

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == "it works"


def test_returning_value_stops_the_chain(dispatcher):
    calls = []

    def older(ctx):
        calls.append("older")
        return "older"

    def newer(ctx):
        calls.append("newer")
        return "newer"

    dispatcher.subscribe("test", older)
    dispatcher.subscribe("test", newer)

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == "newer"
    assert calls == ["newer"]


def test_next_hands_off_through_patterns(dispatcher):
    dispatcher.subscribe(
        re.compile("^te"), lambda ctx: ctx.next(f"{ctx.params} works")
    )
    dispatcher.subscribe(re.compile("st$"), lambda ctx: ctx.next("it"))

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == "it works"


def test_patterns_take_precedence_over_names(dispatcher):
    dispatcher.subscribe(
        re.compile("^test$"),
        lambda ctx: ctx.next(f"{ctx.params or ''} first"),
    )
    dispatcher.subscribe(
        "test", lambda ctx: ctx.next(f"{ctx.params or ''} second")
    )

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()).strip() == "first second"


def test_exhausted_chain_settles_with_last_params(dispatcher):
    dispatcher.subscribe(
        "test", lambda ctx: ctx.next({**ctx.params, "seen": True})
    )

    async def scenario():
        return await dispatcher.dispatch("test", {"a": 1})

    assert asyncio.run(scenario()) == {"a": 1, "seen": True}


def test_next_keeps_options_unless_replaced(dispatcher):
    seen = []

    def last(ctx):
        seen.append(ctx.options)
        return "done"

    def middle(ctx):
        seen.append(ctx.options)
        return ctx.next(ctx.params, {"stage": 2})

    def first(ctx):
        seen.append(ctx.options)
        return ctx.next(ctx.params)

    dispatcher.subscribe("test", last)
    dispatcher.subscribe("test", middle)
    dispatcher.subscribe("test", first)

    async def scenario():
        return await dispatcher.dispatch("test", None, {"stage": 1})

    assert asyncio.run(scenario()) == "done"
    assert seen == [{"stage": 1}, {"stage": 1}, {"stage": 2}]


def test_awaited_next_inside_async_handler(dispatcher):
    dispatcher.subscribe("test", lambda ctx: ctx.params * 2)

    async def wrapper(ctx):
        inner = await ctx.next(ctx.params + 1)
        return inner + 100

    dispatcher.subscribe("test", wrapper)

    async def scenario():
        return await dispatcher.dispatch("test", 1)

    assert asyncio.run(scenario()) == 104


def test_completion_callback(dispatcher):
    def handler(ctx, done):
        done(None, "it works")

    dispatcher.subscribe("test", handler)

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == "it works"


def test_callback_from_later_loop_iteration(dispatcher):
    def handler(ctx, done):
        asyncio.get_running_loop().call_soon(done, None, "later")

    dispatcher.subscribe("test", handler)

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == "later"


def test_callback_error_rejects(dispatcher):
    errors = []
    dispatcher.on("error", errors.append)

    def handler(ctx, done):
        done(RuntimeError("it doesn't work!"), "it works")

    dispatcher.subscribe("test", handler)

    async def scenario():
        with pytest.raises(HandlerFailure) as info:
            await dispatcher.dispatch("test")
        return info.value

    err = asyncio.run(scenario())
    assert str(err) == "it doesn't work!"
    assert isinstance(err.error, RuntimeError)
    assert isinstance(err.__cause__, RuntimeError)
    assert errors == [err]


def test_reply_resolves_or_rejects(dispatcher):
    dispatcher.subscribe("ok", lambda ctx: ctx.reply("fine"))
    dispatcher.subscribe("bad", lambda ctx: ctx.reply(ValueError("nope")))

    async def scenario():
        ok = await dispatcher.dispatch("ok")
        with pytest.raises(HandlerFailure, match="nope"):
            await dispatcher.dispatch("bad")
        return ok

    assert asyncio.run(scenario()) == "fine"


def test_second_completion_after_settle_raises(dispatcher):
    holder = {}
    errors = []
    dispatcher.on("error", errors.append)

    def handler(ctx, done):
        holder["done"] = done
        done(None, "first")

    dispatcher.subscribe("test", handler)

    async def scenario():
        fut = dispatcher.dispatch("test")
        result = await fut
        with pytest.raises(AlreadyHandled):
            holder["done"](None, "second")
        return result, fut.result()

    assert asyncio.run(scenario()) == ("first", "first")
    assert len(errors) == 1
    assert isinstance(errors[0], AlreadyHandled)


def test_double_completion_inside_handler(dispatcher):
    errors = []
    dispatcher.on("error", errors.append)

    def handler(ctx, done):
        done(None, 1)
        done(None, 2)

    dispatcher.subscribe("test", handler)

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == 1
    assert [type(e) for e in errors] == [AlreadyHandled]


def test_return_after_callback_is_reported_not_applied(dispatcher):
    errors = []
    dispatcher.on("error", errors.append)

    def handler(ctx, done):
        done(None, "callback")
        return "returned"

    dispatcher.subscribe("test", handler)

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == "callback"
    assert [type(e) for e in errors] == [AlreadyHandled]


def test_reply_then_reply_raises(dispatcher):
    outcome = {}

    def handler(ctx):
        ctx.reply("one")
        try:
            ctx.reply("two")
        except AlreadyHandled:
            outcome["raised"] = True

    dispatcher.subscribe("test", handler)

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == "one"
    assert outcome == {"raised": True}


def test_throw_halts_remaining_subscribers(dispatcher):
    calls = []
    errors = []
    dispatcher.on("error", errors.append)

    def older(ctx):
        calls.append("older")
        return "older"

    def newer(ctx):
        calls.append("newer")
        raise RuntimeError("boom")

    dispatcher.subscribe("test", older)
    dispatcher.subscribe("test", newer)

    async def scenario():
        with pytest.raises(HandlerFailure, match="boom"):
            await dispatcher.dispatch("test")

    asyncio.run(scenario())
    assert calls == ["newer"]
    assert len(errors) == 1


def test_failure_deep_in_chain_reported_once(dispatcher):
    errors = []
    dispatcher.on("error", errors.append)

    def failing(ctx):
        raise KeyError("deep")

    dispatcher.subscribe("test", failing)
    dispatcher.subscribe("test", lambda ctx: ctx.next(ctx.params))
    dispatcher.subscribe("test", lambda ctx: ctx.next(ctx.params))

    async def scenario():
        with pytest.raises(HandlerFailure):
            await dispatcher.dispatch("test")

    asyncio.run(scenario())
    assert len(errors) == 1


def test_async_handler_rejection(dispatcher):
    async def handler(ctx):
        await asyncio.sleep(0)
        raise ValueError("async boom")

    dispatcher.subscribe("test", handler)

    async def scenario():
        with pytest.raises(HandlerFailure, match="async boom"):
            await dispatcher.dispatch("test")

    asyncio.run(scenario())


def test_async_handler_returning_none_settles(dispatcher):
    async def handler(ctx):
        await asyncio.sleep(0)

    dispatcher.subscribe("test", handler)

    async def scenario():
        return await dispatcher.dispatch("test", {"ignored": True})

    assert asyncio.run(scenario()) is None


def test_long_chain_does_not_recurse(dispatcher):
    for _ in range(3000):
        dispatcher.subscribe("count", lambda ctx: ctx.next(ctx.params + 1))

    async def scenario():
        return await dispatcher.dispatch("count", 0)

    assert asyncio.run(scenario()) == 3000


def test_unsubscribe_mid_cascade_keeps_snapshot(dispatcher):
    calls = []

    def older(ctx):
        calls.append("older")
        return "older"

    def other(ctx):
        return "other"

    def newer(ctx):
        calls.append("newer")
        dispatcher.unsubscribe("other", other)
        dispatcher.unsubscribe("test", older)
        return ctx.next(ctx.params)

    dispatcher.subscribe("other", other)
    dispatcher.subscribe("test", older)
    dispatcher.subscribe("test", newer)

    async def scenario():
        first = await dispatcher.dispatch("test")
        second = await dispatcher.dispatch("test")
        return first, second

    assert asyncio.run(scenario()) == ("older", None)
    assert calls == ["newer", "older", "newer"]


def test_handler_context_exposes_dispatcher_surface(dispatcher):
    seen = {}

    def handler(ctx):
        seen["event"] = str(ctx.event)
        names = ("dispatch", "lookup", "emit", "emit_before", "emit_after")
        for name in names:
            seen[name] = callable(getattr(ctx, name))
        return "ok"

    dispatcher.subscribe("ns.test", handler)

    async def scenario():
        return await dispatcher.dispatch("ns.test")

    assert asyncio.run(scenario()) == "ok"
    assert seen.pop("event") == "ns.test"
    assert all(seen.values())


def test_async_handler_settles_through_reply(dispatcher):
    errors = []
    dispatcher.on("error", errors.append)

    async def handler(ctx):
        await asyncio.sleep(0)
        ctx.reply("ok")

    dispatcher.subscribe("test", handler)

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == "ok"
    assert errors == []


def test_async_handler_settles_through_done(dispatcher):
    errors = []
    dispatcher.on("error", errors.append)

    async def handler(ctx, done):
        await asyncio.sleep(0)
        done(None, "ok")

    dispatcher.subscribe("test", handler)

    async def scenario():
        return await dispatcher.dispatch("test")

    assert asyncio.run(scenario()) == "ok"
    assert errors == []


def test_async_reply_error_rejects(dispatcher):
    async def handler(ctx):
        await asyncio.sleep(0)
        ctx.reply(ValueError("async nope"))

    dispatcher.subscribe("test", handler)

    async def scenario():
        with pytest.raises(HandlerFailure, match="async nope"):
            await dispatcher.dispatch("test")

    asyncio.run(scenario())


def test_async_return_after_reply_keeps_reply(dispatcher):
    errors = []
    dispatcher.on("error", errors.append)

    async def handler(ctx):
        ctx.reply("replied")
        await asyncio.sleep(0)
        return "returned"

    dispatcher.subscribe("test", handler)

    async def scenario():
        result = await dispatcher.dispatch("test")
        for _ in range(3):
            await asyncio.sleep(0)
        return result

    assert asyncio.run(scenario()) == "replied"
    assert [type(e) for e in errors] == [AlreadyHandled]


def test_unreturned_next_leaves_step_pending_and_logs(dispatcher, caplog):
    caplog.set_level(logging.DEBUG, logger="relay.cascade")
    dispatcher.subscribe("test", lambda ctx: "never reached by the result")

    def forgetful(ctx):
        ctx.next(ctx.params)

    dispatcher.subscribe("test", forgetful)

    async def scenario():
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(dispatcher.dispatch("test"), 0.2)

    asyncio.run(scenario())
    assert any(
        "without returning it" in r.getMessage() for r in caplog.records
    )
