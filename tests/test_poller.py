import asyncio
from unittest.mock import MagicMock

import pytest

from backend import MessagingBackend
from network_service import MetricsPoller
from state_manager import NetworkMetrics


def make_poller(active=True):
    backend = MagicMock(spec=MessagingBackend)
    poller = MetricsPoller(backend, NetworkMetrics(), lambda: active)
    return poller, backend


@pytest.mark.asyncio
async def test_slow_mode_scenario(controller, backend):
    controller.initialize()
    emit = backend.callbacks["mixnodePoolSizeResponse"]

    emit([2])
    await controller.bridge.drain()
    assert controller.mixnode_pool_size == 2
    assert controller.poll_interval_ms == 5000

    emit([3])
    await controller.bridge.drain()
    assert controller.poll_interval_ms == 30000

    emit([1])
    await controller.bridge.drain()
    assert controller.mixnode_pool_size == 1
    assert controller.poll_interval_ms == 30000
    assert controller.metrics.slow_mode_engaged is True
    controller.close()


@pytest.mark.parametrize("sizes, expected_interval", [
    ([], 5000),
    ([0], 5000),
    ([0, 1, 2, 2], 5000),
    ([3], 30000),
    ([10, 0], 30000),
    ([1, 2, 5, 0, 1], 30000),
])
def test_interval_latches_once_threshold_seen(sizes, expected_interval):
    poller, _ = make_poller()
    for size in sizes:
        poller.on_mixnode_pool_size(size)
        assert poller.metrics.mixnode_pool_size == size

    assert poller.metrics.poll_interval_ms == expected_interval
    assert poller.metrics.slow_mode_engaged is (expected_interval == 30000)


def test_latch_reports_change_only_once():
    poller, _ = make_poller()
    assert poller.on_mixnode_pool_size(3) is True
    assert poller.on_mixnode_pool_size(7) is False


def test_tick_queries_both_metrics():
    poller, backend = make_poller()

    assert poller.tick() is True

    backend.get_mixnode_pool_size.assert_called_once()
    backend.get_lightpush_peers_count.assert_called_once()


def test_tick_reports_backend_error():
    poller, backend = make_poller()
    backend.get_mixnode_pool_size.side_effect = RuntimeError("backend gone")

    assert poller.tick() is False
    backend.get_lightpush_peers_count.assert_not_called()


def test_tick_suppressed_when_not_ready():
    poller, backend = make_poller(active=False)

    assert poller.tick() is False

    backend.get_mixnode_pool_size.assert_not_called()
    backend.get_lightpush_peers_count.assert_not_called()


@pytest.mark.asyncio
async def test_start_and_stop():
    poller, _ = make_poller()
    assert poller.state == "stopped"

    poller.start()
    assert poller.state == "fast"
    poller.on_mixnode_pool_size(4)
    assert poller.state == "slow"

    poller.stop()
    assert poller.state == "stopped"


@pytest.mark.asyncio
async def test_timer_ticks_at_poll_interval():
    poller, backend = make_poller()
    poller.metrics.poll_interval_ms = 10

    poller.start()
    await asyncio.sleep(0.1)
    poller.stop()

    assert backend.get_mixnode_pool_size.call_count >= 2


@pytest.mark.asyncio
async def test_timer_survives_backend_errors():
    poller, backend = make_poller()
    poller.metrics.poll_interval_ms = 10
    backend.get_mixnode_pool_size.side_effect = RuntimeError("backend gone")

    poller.start()
    await asyncio.sleep(0.1)

    assert poller.state == "fast"
    assert backend.get_mixnode_pool_size.call_count >= 2
    poller.stop()


@pytest.mark.asyncio
async def test_controller_close_stops_poller(controller):
    controller.initialize()
    assert controller.poller.state == "fast"

    controller.close()
    assert controller.poller.state == "stopped"
