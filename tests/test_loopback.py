import asyncio
import json

import pytest

from config_manager import SettingsRegistry
from core_services import SessionController
from loopback_backend import LoopbackBackend
from settings_store import JsonSettingsStore
from state_manager import SessionStatus


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def loopback():
    backend = LoopbackBackend()
    yield backend
    backend.stop()


@pytest.mark.asyncio
async def test_chat_round_trip(loopback, settings_path):
    controller = SessionController(loopback, SettingsRegistry(JsonSettingsStore(settings_path)), default_channel="general")
    assert controller.initialize() is True
    assert controller.status is SessionStatus.READY

    controller.send_message("hello")
    await wait_for(lambda: len(controller.messages) == 3)
    assert controller.messages[-1].sender == controller.username
    assert controller.messages[-1].text == "hello"

    controller.join_channel("other")
    controller.join_channel("general")
    await wait_for(lambda: len(controller.messages) == 3)
    history = controller.messages[-1]
    assert history.is_history
    assert history.sender == f"[HISTORY] {controller.username}"
    controller.close()


@pytest.mark.asyncio
async def test_metrics_reach_slow_mode(loopback, settings_path):
    registry = SettingsRegistry(JsonSettingsStore(settings_path))
    controller = SessionController(loopback, registry)
    for i in range(3):
        controller.add_bootstrap_node(f"/ip4/10.0.0.{i}/tcp/60000", f"key{i}")
    controller.initialize()

    await wait_for(lambda: controller.mixnode_pool_size == 1)
    controller.refresh_metrics()
    controller.refresh_metrics()
    await wait_for(lambda: controller.mixnode_pool_size == 3)

    assert controller.poll_interval_ms == 30000
    assert controller.lightpush_peers_count == 1
    controller.close()


def test_rejects_payload_without_node_key(loopback):
    assert loopback.initialize(json.dumps({"mode": 2})) is False
    assert loopback.initialize("not json") is False
    assert loopback.is_connected() is False


def test_rejects_unknown_event(loopback):
    assert loopback.on("presence", lambda payload: None) is False
