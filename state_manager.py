# state_manager.py
import logging
from dataclasses import dataclass, field
from enum import Enum

from constants import FAST_POLL_INTERVAL_MS
from utility import now_timestamp

logger = logging.getLogger("StateManager")


class SessionStatus(Enum):
    NOT_INITIALIZED = "NotInitialized"
    INITIALIZING = "Initializing"
    READY = "Ready"
    ERROR = "Error"


@dataclass(frozen=True)
class Message:
    sender: str
    text: str
    timestamp: str = field(default_factory=now_timestamp)
    is_system: bool = False
    is_history: bool = False


@dataclass
class NetworkMetrics:
    mixnode_pool_size: int = 0
    lightpush_peers_count: int = 0
    poll_interval_ms: int = FAST_POLL_INTERVAL_MS
    slow_mode_engaged: bool = False


class MessageLog:
    """Messages of the current channel, in arrival order."""
    def __init__(self):
        self._messages = []

    def append(self, message: Message):
        self._messages.append(message)

    def clear(self):
        if self._messages:
            logger.debug(f"Clearing {len(self._messages)} messages")
        self._messages.clear()

    def get_all(self):
        return tuple(self._messages)

    def __len__(self):
        return len(self._messages)

    def __iter__(self):
        return iter(tuple(self._messages))
