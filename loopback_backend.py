# loopback_backend.py
import json
import logging
import queue
import threading
from collections import defaultdict

from backend import MessagingBackend
from constants import (
    EVENT_CHAT_MESSAGE,
    EVENT_HISTORY_MESSAGE,
    EVENT_LIGHTPUSH_PEERS_COUNT,
    EVENT_MIXNODE_POOL_SIZE,
)
from utility import now_timestamp, split_csv

logger = logging.getLogger("LoopbackBackend")


class LoopbackBackend(MessagingBackend):
    """In-process backend for offline use and tests.

    Sent messages are echoed back on the channel, history is kept per channel,
    and every event is emitted from a worker thread like a real network module.
    """
    def __init__(self):
        self._callbacks = {}
        self._history = defaultdict(list)
        self._outbox = queue.Queue()
        self._thread = None
        self._running = False
        self._joined = set()
        self._mixnode_count = 0
        self._pool_size = 0

    def on(self, event_name, callback) -> bool:
        if event_name not in (EVENT_CHAT_MESSAGE, EVENT_HISTORY_MESSAGE,
                              EVENT_MIXNODE_POOL_SIZE, EVENT_LIGHTPUSH_PEERS_COUNT):
            return False
        self._callbacks[event_name] = callback
        return True

    def initialize(self, config_payload: str) -> bool:
        try:
            config = json.loads(config_payload)
        except (TypeError, json.JSONDecodeError) as e:
            logger.error(f"Invalid config payload: {e}")
            return False
        if not config.get("nodeKey"):
            logger.error("Config payload has no node key")
            return False

        self._mixnode_count = len(split_csv(config.get("mixnodes", "")))
        self._running = True
        self._thread = threading.Thread(target=self._emit_loop, name="loopback-events", daemon=True)
        self._thread.start()
        logger.info(f"Loopback backend started (mode={config.get('mode')}, mixnodes={self._mixnode_count})")
        return True

    def stop(self):
        if not self._running:
            return
        self._running = False
        self._outbox.put(None)
        if self._thread:
            self._thread.join(timeout=1.0)

    def is_connected(self) -> bool:
        return self._running

    def join_channel(self, channel) -> bool:
        if not self._running:
            return False
        self._joined.add(channel)
        return True

    def send_message(self, channel, sender, text):
        if channel not in self._joined:
            logger.warning(f"Send to unjoined channel {channel} ignored")
            return
        entry = (now_timestamp(), sender, text)
        self._history[channel].append(entry)
        self._emit(EVENT_CHAT_MESSAGE, list(entry))

    def retrieve_history(self, channel) -> bool:
        if channel not in self._joined:
            return False
        for entry in list(self._history[channel]):
            self._emit(EVENT_HISTORY_MESSAGE, list(entry))
        return True

    def get_mixnode_pool_size(self):
        # The pool fills up one node per query until every mixnode plus ourselves is known
        self._pool_size = min(self._pool_size + 1, self._mixnode_count + 1)
        self._emit(EVENT_MIXNODE_POOL_SIZE, [self._pool_size])

    def get_lightpush_peers_count(self):
        self._emit(EVENT_LIGHTPUSH_PEERS_COUNT, [len(self._joined)])

    def _emit(self, event_name, payload):
        if self._running:
            self._outbox.put((event_name, payload))

    def _emit_loop(self):
        while self._running:
            item = self._outbox.get()
            if item is None:
                break
            event_name, payload = item
            callback = self._callbacks.get(event_name)
            if callback is None:
                continue
            try:
                callback(payload)
            except Exception:
                logger.exception(f"Subscriber failed on {event_name}")
