import pytest

from keysync_lib.errors import ConsistencyViolation
from keysync_lib.events import EventBus
from keysync_lib.owner import Owner


def test_trigger_returns_non_none_results_in_order():
    bus = EventBus()
    ctx = Owner()
    bus.register(ctx, "saved", lambda uid: f"a:{uid}")
    bus.register(ctx, "saved", lambda uid: None)
    bus.register(ctx, "saved", lambda uid: f"b:{uid}")

    assert bus.trigger("saved", "c1") == ["a:c1", "b:c1"]


def test_delayed_handlers_run_last():
    bus = EventBus()
    log = []
    bus.register(Owner(), "e", lambda: log.append("delayed"), delayed=True)
    bus.register(Owner(), "e", lambda: log.append("normal"))

    bus.trigger("e")

    assert log == ["normal", "delayed"]


def test_trigger_without_listeners():
    bus = EventBus()
    assert bus.trigger("nothing") == []
    assert not bus.has_listeners("nothing")


def test_destroyed_context_is_unregistered_and_skipped():
    bus = EventBus()
    ctx = Owner()
    calls = []
    bus.register(ctx, "e", lambda: calls.append(1))
    bus.register(ctx, "other", lambda: calls.append(2))
    ctx.destroy()

    bus.trigger("e")

    assert calls == []
    assert not bus.has_listeners("e")
    assert not bus.has_listeners("other")


def test_handler_exception_does_not_stop_others(caplog):
    bus = EventBus()
    calls = []

    def boom():
        raise RuntimeError("boom")

    bus.register(Owner(), "e", boom)
    bus.register(Owner(), "e", lambda: calls.append("ran"))

    bus.trigger("e")

    assert calls == ["ran"]
    assert any(r.levelname == "ERROR" for r in caplog.records)


def test_handler_removed_mid_trigger_is_skipped():
    bus = EventBus()
    late = Owner()
    calls = []
    bus.register(Owner(), "e", lambda: bus.unregister(late))
    bus.register(late, "e", lambda: calls.append("late"))

    bus.trigger("e")

    assert calls == []


def test_unregister_narrowing():
    bus = EventBus()
    ctx = Owner()

    def h1():
        return 1

    def h2():
        return 2

    bus.register(ctx, "a", h1)
    bus.register(ctx, "a", h2)
    bus.register(ctx, "b", h1)

    assert bus.unregister(ctx, "a", h1) == 1
    assert bus.trigger("a") == [2]
    assert bus.unregister(ctx) == 2
    assert not bus.has_listeners("a")


def test_stack_tracks_nested_triggers():
    bus = EventBus()
    seen = []
    bus.register(Owner(), "outer", lambda: bus.trigger("inner"))
    bus.register(Owner(), "inner", lambda: seen.append(list(bus.stack)))

    bus.trigger("outer")

    assert seen == [["outer", "inner"]]
    assert bus.stack == []


@pytest.mark.parametrize("ctx,name,handler,exc", [
    (None, "e", print, ConsistencyViolation),
    (Owner(), 3, print, TypeError),
    (Owner(), "e", "not callable", TypeError),
])
def test_register_validation(ctx, name, handler, exc):
    with pytest.raises(exc):
        EventBus().register(ctx, name, handler)
