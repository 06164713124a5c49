from client.events import EventEmitter


def test_on_returns_handle_that_off_consumes():
    emitter = EventEmitter()
    calls = []
    handle = emitter.on("ping", lambda value: calls.append(value))

    emitter.emit("ping", 1)
    assert emitter.off(handle) is True
    emitter.emit("ping", 2)

    assert calls == [1]
    assert emitter.listener_count("ping") == 0


def test_off_with_stale_handle_is_harmless():
    emitter = EventEmitter()
    handle = emitter.on("ping", lambda: None)
    emitter.off(handle)
    assert emitter.off(handle) is False


def test_identical_inline_callbacks_are_independent():
    emitter = EventEmitter()
    calls = []
    first = emitter.on("ping", lambda: calls.append("first"))
    emitter.on("ping", lambda: calls.append("second"))

    emitter.off(first)
    emitter.emit("ping")

    assert calls == ["second"]


def test_once_fires_a_single_time():
    emitter = EventEmitter()
    calls = []
    emitter.once("ping", lambda: calls.append(True))
    emitter.emit("ping")
    emitter.emit("ping")
    assert calls == [True]


def test_failing_listener_does_not_block_others():
    emitter = EventEmitter()
    calls = []

    def broken():
        raise ValueError("boom")

    emitter.on("ping", broken)
    emitter.on("ping", lambda: calls.append(True))
    emitter.emit("ping")
    assert calls == [True]


async def test_coroutine_listeners_are_scheduled_and_drained():
    emitter = EventEmitter()
    calls = []

    async def listener(value):
        calls.append(value)

    emitter.on("ping", listener)
    emitter.emit("ping", "a")
    assert calls == []
    await emitter.drain()
    assert calls == ["a"]
