import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from backend import MessagingBackend
from core_services import EventBridge
from events import ChatMessageEvent, MixnodePoolSizeEvent


def make_backend(accept=True):
    backend = MagicMock(spec=MessagingBackend)
    backend.callbacks = {}

    def on(event_name, callback):
        backend.callbacks[event_name] = callback
        return accept
    backend.on.side_effect = on
    return backend


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_events_from_backend_thread_keep_order():
    backend = make_backend()
    bridge = EventBridge(backend)
    bridge.start()
    received = []
    handler_threads = set()

    def handler(event):
        handler_threads.add(threading.get_ident())
        received.append(event.text)

    assert bridge.subscribe("chatMessage", handler) is True

    def producer():
        for i in range(200):
            backend.callbacks["chatMessage"](["t", "alice", str(i)])

    thread = threading.Thread(target=producer)
    thread.start()
    thread.join()

    await wait_for(lambda: len(received) == 200)
    assert received == [str(i) for i in range(200)]
    assert handler_threads == {threading.get_ident()}
    bridge.stop()


@pytest.mark.asyncio
async def test_handlers_receive_typed_events():
    backend = make_backend()
    bridge = EventBridge(backend)
    bridge.start()
    received = []
    bridge.subscribe("chatMessage", received.append)
    bridge.subscribe("mixnodePoolSizeResponse", received.append)

    backend.callbacks["chatMessage"](["2024-01-01 10:00:00", "alice", "hi", "extra"])
    backend.callbacks["mixnodePoolSizeResponse"](["5"])
    await bridge.drain()

    assert received == [ChatMessageEvent("2024-01-01 10:00:00", "alice", "hi"), MixnodePoolSizeEvent(5)]
    bridge.stop()


@pytest.mark.asyncio
async def test_rejected_subscription_returns_false(caplog):
    bridge = EventBridge(make_backend(accept=False))
    bridge.start()

    assert bridge.subscribe("chatMessage", lambda event: None) is False
    assert "Failed to subscribe to chatMessage" in caplog.text
    bridge.stop()


@pytest.mark.asyncio
async def test_subscription_exception_returns_false():
    backend = MagicMock(spec=MessagingBackend)
    backend.on.side_effect = RuntimeError("backend not ready")
    bridge = EventBridge(backend)
    bridge.start()

    assert bridge.subscribe("chatMessage", lambda event: None) is False
    bridge.stop()


@pytest.mark.asyncio
async def test_handler_error_does_not_stop_consumer(caplog):
    backend = make_backend()
    bridge = EventBridge(backend)
    bridge.start()
    received = []

    def handler(event):
        if event.text == "boom":
            raise ValueError("bad handler")
        received.append(event.text)

    bridge.subscribe("chatMessage", handler)
    backend.callbacks["chatMessage"](["t", "a", "boom"])
    backend.callbacks["chatMessage"](["t", "a", "after"])
    await bridge.drain()

    assert received == ["after"]
    assert "Error handling event 'chatMessage'" in caplog.text
    bridge.stop()


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking(caplog):
    backend = make_backend()
    bridge = EventBridge(backend, maxsize=1)
    bridge.start()
    received = []
    bridge.subscribe("chatMessage", received.append)

    for i in range(3):
        backend.callbacks["chatMessage"](["t", "a", str(i)])
    await bridge.drain()

    assert [e.text for e in received] == ["0"]
    assert "Event queue full" in caplog.text
    bridge.stop()


@pytest.mark.asyncio
async def test_events_after_stop_are_dropped():
    backend = make_backend()
    bridge = EventBridge(backend)
    bridge.start()
    received = []
    bridge.subscribe("chatMessage", received.append)
    bridge.stop()

    backend.callbacks["chatMessage"](["t", "a", "late"])
    await asyncio.sleep(0.01)

    assert received == []


@pytest.mark.asyncio
async def test_restart_does_not_replay_pending_events():
    backend = make_backend()
    bridge = EventBridge(backend)
    bridge.start()
    received = []
    bridge.subscribe("chatMessage", received.append)

    # Handed to the loop but not yet enqueued when the bridge stops
    backend.callbacks["chatMessage"](["t", "a", "old"])
    bridge.stop()

    bridge.start()
    bridge.subscribe("chatMessage", received.append)
    await bridge.drain()
    assert received == []

    backend.callbacks["chatMessage"](["t", "a", "new"])
    await bridge.drain()
    assert [event.text for event in received] == ["new"]
    bridge.stop()


@pytest.mark.asyncio
async def test_mapping_payload_is_dropped(caplog):
    backend = make_backend()
    bridge = EventBridge(backend)
    bridge.start()
    received = []
    bridge.subscribe("chatMessage", received.append)

    backend.callbacks["chatMessage"]({"timestamp": "t", "sender": "a", "text": "hi"})
    await bridge.drain()

    assert received == []
    assert "not a positional list" in caplog.text
    bridge.stop()


@pytest.mark.asyncio
async def test_bridges_do_not_share_handlers():
    backend_a, backend_b = make_backend(), make_backend()
    bridge_a, bridge_b = EventBridge(backend_a), EventBridge(backend_b)
    bridge_a.start()
    bridge_b.start()
    got_a, got_b = [], []
    bridge_a.subscribe("chatMessage", got_a.append)
    bridge_b.subscribe("chatMessage", got_b.append)

    backend_a.callbacks["chatMessage"](["t", "a", "for a"])
    await bridge_a.drain()
    await bridge_b.drain()

    assert [e.text for e in got_a] == ["for a"]
    assert got_b == []
    bridge_a.stop()
    bridge_b.stop()
