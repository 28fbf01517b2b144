import random
from unittest.mock import MagicMock

import pytest

from backend import MessagingBackend
from config_manager import SettingsRegistry
from core_services import SessionController
from settings_store import JsonSettingsStore


@pytest.fixture
def backend():
    """Mock backend that records event callbacks so tests can emit events."""
    mock_backend = MagicMock(spec=MessagingBackend)
    mock_backend.callbacks = {}

    def on(event_name, callback):
        mock_backend.callbacks[event_name] = callback
        return True

    mock_backend.on.side_effect = on
    mock_backend.initialize.return_value = True
    mock_backend.join_channel.return_value = True
    mock_backend.retrieve_history.return_value = True
    mock_backend.is_connected.return_value = True
    return mock_backend


@pytest.fixture
def settings_path(tmp_path):
    return str(tmp_path / "settings.json")


@pytest.fixture
def registry(settings_path):
    return SettingsRegistry(JsonSettingsStore(settings_path))


@pytest.fixture
def ui():
    return MagicMock()


@pytest.fixture
def controller(backend, registry, ui):
    return SessionController(backend, registry, ui=ui, default_channel="general", rng=random.Random(7))
