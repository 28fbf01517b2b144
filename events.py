import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

from constants import (
    EVENT_CHAT_MESSAGE,
    EVENT_HISTORY_MESSAGE,
    EVENT_LIGHTPUSH_PEERS_COUNT,
    EVENT_MIXNODE_POOL_SIZE,
)

logger = logging.getLogger("Events")


class SessionObserver(ABC):
    """Receives change notifications; re-read the controller on each call."""
    @abstractmethod
    def on_property_changed(self, name): pass


@dataclass(frozen=True)
class ChatMessageEvent:
    timestamp: str
    sender: str
    text: str


@dataclass(frozen=True)
class HistoryMessageEvent:
    timestamp: str
    sender: str
    text: str


@dataclass(frozen=True)
class MixnodePoolSizeEvent:
    size: int


@dataclass(frozen=True)
class LightpushPeersCountEvent:
    count: int


BackendEvent = Union[ChatMessageEvent, HistoryMessageEvent, MixnodePoolSizeEvent, LightpushPeersCountEvent]


def _parse_count(event_name, payload) -> Optional[int]:
    if len(payload) < 1:
        logger.warning(f"{event_name} payload missing fields: {payload!r}")
        return None
    try:
        value = int(payload[0])
    except (TypeError, ValueError):
        logger.warning(f"{event_name} payload is not an integer: {payload[0]!r}")
        return None
    if value < 0:
        logger.warning(f"{event_name} payload is negative: {value}")
        return None
    return value


def parse_event(event_name: str, payload) -> Optional[BackendEvent]:
    """Turn a positional backend payload into a typed event, or None if malformed."""
    if payload is None:
        payload = ()
    elif isinstance(payload, (str, bytes, int, float)):
        payload = (payload,)
    elif not isinstance(payload, (list, tuple)):
        logger.warning(f"{event_name} payload is not a positional list: {type(payload).__name__}")
        return None

    if event_name in (EVENT_CHAT_MESSAGE, EVENT_HISTORY_MESSAGE):
        if len(payload) < 3:
            logger.warning(f"{event_name} payload missing fields: {list(payload)!r}")
            return None
        timestamp, sender, text = (str(field) for field in payload[:3])
        if event_name == EVENT_CHAT_MESSAGE:
            return ChatMessageEvent(timestamp, sender, text)
        return HistoryMessageEvent(timestamp, sender, text)

    if event_name == EVENT_MIXNODE_POOL_SIZE:
        size = _parse_count(event_name, payload)
        return MixnodePoolSizeEvent(size) if size is not None else None

    if event_name == EVENT_LIGHTPUSH_PEERS_COUNT:
        count = _parse_count(event_name, payload)
        return LightpushPeersCountEvent(count) if count is not None else None

    logger.warning(f"Unknown backend event '{event_name}' ignored")
    return None
