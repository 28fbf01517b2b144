# core_services.py
import asyncio
import logging
import random
from functools import partial
from typing import Optional

from backend import MessagingBackend, build_config_payload
from config_manager import SettingsRegistry
from constants import (
    DEFAULT_CHANNEL,
    EVENT_CHAT_MESSAGE,
    EVENT_HISTORY_MESSAGE,
    EVENT_LIGHTPUSH_PEERS_COUNT,
    EVENT_MIXNODE_POOL_SIZE,
    EVENT_QUEUE_SIZE,
    HISTORY_MARKER,
    HISTORY_PREFIX,
    SYSTEM_SENDER,
)
from events import (
    ChatMessageEvent,
    HistoryMessageEvent,
    LightpushPeersCountEvent,
    MixnodePoolSizeEvent,
    SessionObserver,
    parse_event,
)
from identity import IdentityManager
from network_service import MetricsPoller
from state_manager import Message, MessageLog, NetworkMetrics, SessionStatus

logger = logging.getLogger("CoreService")


class EventBridge:
    """Moves backend events onto the controller's event loop.

    Backend callbacks may fire on any thread. Each payload is validated into a
    typed event, handed to the loop with call_soon_threadsafe and queued on a
    bounded asyncio.Queue drained by a single consumer task, so handlers run
    one at a time and in emission order.
    """
    def __init__(self, backend: MessagingBackend, maxsize=EVENT_QUEUE_SIZE):
        self.backend = backend
        self.maxsize = maxsize
        self.loop = None
        self._handlers = {}
        self._queue = None
        self._consumer = None
        self._generation = 0

    def start(self, loop=None):
        self.loop = loop or asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        if self._consumer is None or self._consumer.done():
            self._consumer = self.loop.create_task(self._consume())

    def stop(self):
        if self._consumer:
            self._consumer.cancel()
            self._consumer = None
        self._handlers.clear()
        self.loop = None
        # Hand-offs already scheduled on the loop belong to the old generation and get dropped
        self._queue = None
        self._generation += 1

    def subscribe(self, event_name, handler) -> bool:
        self._handlers[event_name] = handler
        try:
            accepted = bool(self.backend.on(event_name, partial(self._receive, event_name)))
        except Exception as e:
            logger.warning(f"Backend raised while subscribing to {event_name}: {e}")
            accepted = False

        if not accepted:
            self._handlers.pop(event_name, None)
            logger.warning(f"Failed to subscribe to {event_name} events")
        return accepted

    def _receive(self, event_name, payload):
        # Runs on the backend's thread
        event = parse_event(event_name, payload)
        if event is None:
            return
        generation = self._generation
        loop = self.loop
        if loop is None or loop.is_closed():
            logger.debug(f"Bridge stopped, dropping {event_name}")
            return
        try:
            loop.call_soon_threadsafe(self._enqueue, event_name, event, generation)
        except RuntimeError:
            logger.debug(f"Event loop closed, dropping {event_name}")

    def _enqueue(self, event_name, event, generation):
        if self._queue is None or generation != self._generation:
            logger.debug(f"Dropping {event_name} handed over before the bridge was restarted")
            return
        try:
            self._queue.put_nowait((event_name, event))
        except asyncio.QueueFull:
            logger.warning(f"Event queue full ({self.maxsize}), dropping {event_name}")

    async def _consume(self):
        while True:
            event_name, event = await self._queue.get()
            try:
                handler = self._handlers.get(event_name)
                if handler:
                    handler(event)
            except Exception:
                logger.exception(f"Error handling event '{event_name}'")
            finally:
                self._queue.task_done()

    async def drain(self):
        """Wait until every event handed over so far has been handled."""
        await asyncio.sleep(0)
        if self._queue is not None:
            await self._queue.join()


class SessionController:
    """Session state machine between the UI and the messaging backend.

    All methods must be called on the event loop that runs the bridge.
    Observers get on_property_changed(name) and re-read the properties below.
    """
    def __init__(self, backend: MessagingBackend, registry: SettingsRegistry,
                 ui: Optional[SessionObserver] = None, default_channel=DEFAULT_CHANNEL, rng=random):
        self.backend = backend
        self.registry = registry
        self.ui = ui
        self.default_channel = default_channel

        _, has_node_key = registry.load()
        self.identity = IdentityManager(registry, has_node_key, rng)
        self.metrics = NetworkMetrics()
        self.log = MessageLog()
        self.bridge = EventBridge(backend)
        self.poller = MetricsPoller(backend, self.metrics, lambda: self._status is SessionStatus.READY)

        self._status = SessionStatus.NOT_INITIALIZED
        self._current_channel = ""
        self.restart_required = False

    # --- Observable state ---
    @property
    def status(self):
        return self._status

    @property
    def current_channel(self):
        return self._current_channel

    @property
    def username(self):
        return self.identity.username

    @property
    def node_key(self):
        return self.identity.node_key

    @property
    def messages(self):
        return self.log.get_all()

    @property
    def mixnode_pool_size(self):
        return self.metrics.mixnode_pool_size

    @property
    def lightpush_peers_count(self):
        return self.metrics.lightpush_peers_count

    @property
    def poll_interval_ms(self):
        return self.metrics.poll_interval_ms

    @property
    def discovery_mode(self):
        return self.registry.config.mode

    @property
    def bootstrap_nodes(self):
        return tuple(self.registry.config.bootstrap_nodes)

    @property
    def store_node(self):
        return self.registry.config.store_node

    def _notify(self, name):
        if not self.ui:
            return
        try:
            self.ui.on_property_changed(name)
        except Exception:
            logger.exception(f"Observer failed on '{name}' change")

    def _set_status(self, status: SessionStatus):
        if self._status is not status:
            self._status = status
            logger.info(f"Status changed to {status.value}")
            self._notify("status")

    def _set_current_channel(self, channel):
        if self._current_channel != channel:
            self._current_channel = channel
            logger.info(f"Current channel changed to {channel}")
            self._notify("current_channel")

    # --- Commands ---
    def initialize(self) -> bool:
        if self._status is not SessionStatus.NOT_INITIALIZED:
            logger.warning(f"initialize() ignored in status {self._status.value}")
            return False

        self._set_status(SessionStatus.INITIALIZING)
        self.bridge.start()
        self.bridge.subscribe(EVENT_CHAT_MESSAGE, self._on_chat_message)
        self.bridge.subscribe(EVENT_HISTORY_MESSAGE, self._on_history_message)
        self.bridge.subscribe(EVENT_MIXNODE_POOL_SIZE, self._on_mixnode_pool_size)
        self.bridge.subscribe(EVENT_LIGHTPUSH_PEERS_COUNT, self._on_lightpush_peers_count)

        payload = build_config_payload(self.registry.config, self.identity.node_key)
        try:
            success = bool(self.backend.initialize(payload))
        except Exception as e:
            logger.error(f"Backend initialize raised: {e}", exc_info=True)
            success = False

        if not success:
            logger.error("Backend failed to initialize")
            self._set_status(SessionStatus.ERROR)
            return False

        self._set_status(SessionStatus.READY)
        self.poller.start()
        self.refresh_metrics()
        self.join_channel(self.default_channel)
        return True

    def join_channel(self, name) -> bool:
        name = (name or "").strip()
        if not name:
            logger.warning("Cannot join channel with empty name")
            return False
        if self._status is not SessionStatus.READY:
            logger.warning(f"Chat not ready, cannot join channel {name}")
            return False

        self.log.clear()
        self._notify("messages")

        try:
            joined = bool(self.backend.join_channel(name))
        except Exception as e:
            logger.error(f"Backend join_channel raised: {e}", exc_info=True)
            joined = False
        if not joined:
            logger.warning(f"Failed to join channel: {name}")
            return False

        self._set_current_channel(name)
        self.log.append(Message(SYSTEM_SENDER, f"You have joined channel: {name}", is_system=True))
        self.log.append(Message(SYSTEM_SENDER, HISTORY_MARKER, is_system=True))
        self._notify("messages")

        try:
            requested = self.backend.retrieve_history(name)
            logger.debug(f"retrieve_history({name}) -> {requested}")
        except Exception as e:
            logger.error(f"Backend retrieve_history raised: {e}", exc_info=True)
        return True

    def send_message(self, text) -> bool:
        if not text or not text.strip():
            return False
        if self._status is not SessionStatus.READY:
            logger.warning("Chat not ready, cannot send message")
            return False
        if not self._current_channel:
            logger.warning("No channel selected, cannot send message")
            return False
        try:
            if not self.backend.is_connected():
                logger.warning("Backend not connected, message dropped")
                return False
            # Not appended locally: the backend echoes it back as chatMessage
            self.backend.send_message(self._current_channel, self.identity.username, text)
        except Exception as e:
            logger.error(f"Backend send_message raised, message dropped: {e}", exc_info=True)
            return False
        logger.debug(f"Sent message to channel {self._current_channel}")
        return True

    def refresh_metrics(self) -> bool:
        return self.poller.tick()

    def reset_peer_id(self):
        node_key = self.identity.reset_node_key()
        self.restart_required = True
        self._notify("node_key")
        self._notify("restart_required")
        return node_key

    # --- Settings ---
    def set_discovery_mode(self, mode):
        self.registry.set_mode(mode)
        self._notify("discovery_mode")

    def set_store_node(self, address):
        self.registry.set_store_node(address)
        self._notify("store_node")

    def add_bootstrap_node(self, address, mix_pub_key="") -> bool:
        added = self.registry.add_bootstrap_node(address, mix_pub_key)
        if added:
            self._notify("bootstrap_nodes")
        return added

    def update_mix_key(self, index, mix_pub_key) -> bool:
        updated = self.registry.update_mix_key(index, mix_pub_key)
        if updated:
            self._notify("bootstrap_nodes")
        return updated

    def remove_bootstrap_node(self, index) -> bool:
        removed = self.registry.remove_bootstrap_node(index)
        if removed:
            self._notify("bootstrap_nodes")
        return removed

    def save_settings(self):
        self.registry.save(node_key=self.identity.node_key)
        # A running backend only picks up discovery changes on its next start
        if self._status is SessionStatus.READY and not self.restart_required:
            self.restart_required = True
            self._notify("restart_required")

    def close(self):
        self.poller.stop()
        self.bridge.stop()

    # --- Event handlers (run on the loop via the bridge) ---
    def _on_chat_message(self, event: ChatMessageEvent):
        logger.debug(f"chatMessage [{event.timestamp}] {event.sender}: {event.text}")
        self.log.append(Message(event.sender, event.text))
        self._notify("messages")

    def _on_history_message(self, event: HistoryMessageEvent):
        logger.debug(f"historyMessage [{event.timestamp}] {event.sender}: {event.text}")
        self.log.append(Message(HISTORY_PREFIX + event.sender, event.text, is_history=True))
        self._notify("messages")

    def _on_mixnode_pool_size(self, event: MixnodePoolSizeEvent):
        interval_changed = self.poller.on_mixnode_pool_size(event.size)
        self._notify("mixnode_pool_size")
        if interval_changed:
            self._notify("poll_interval_ms")

    def _on_lightpush_peers_count(self, event: LightpushPeersCountEvent):
        self.poller.on_lightpush_peers_count(event.count)
        self._notify("lightpush_peers_count")
