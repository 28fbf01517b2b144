# backend.py
import importlib
import json
import logging
from abc import ABC, abstractmethod

from config_manager import DiscoveryConfig

logger = logging.getLogger("Backend")


class MessagingBackend(ABC):
    """Capability API of the external messaging module.

    Event callbacks registered with on() may be invoked from any thread.
    Commands never block on a network round-trip; results arrive as events.
    """
    @abstractmethod
    def on(self, event_name, callback) -> bool: pass
    @abstractmethod
    def initialize(self, config_payload: str) -> bool: pass
    @abstractmethod
    def join_channel(self, channel) -> bool: pass
    @abstractmethod
    def send_message(self, channel, sender, text): pass
    @abstractmethod
    def retrieve_history(self, channel) -> bool: pass
    @abstractmethod
    def get_mixnode_pool_size(self): pass
    @abstractmethod
    def get_lightpush_peers_count(self): pass
    @abstractmethod
    def is_connected(self) -> bool: pass

    def stop(self):
        pass


def build_config_payload(config: DiscoveryConfig, node_key: str) -> str:
    payload = {
        "mode": int(config.mode),
        "bootstrapNodes": ",".join(node.address for node in config.bootstrap_nodes),
        "mixnodes": ",".join(
            f"{node.address}:{node.mix_pub_key}"
            for node in config.bootstrap_nodes if node.mix_pub_key
        ),
        "storeNode": config.store_node,
        "nodeKey": node_key,
    }
    return json.dumps(payload)


def load_backend(factory: str) -> MessagingBackend:
    """Build a backend from "loopback" or a "package.module:attr" factory path."""
    if factory == "loopback":
        from loopback_backend import LoopbackBackend
        return LoopbackBackend()

    module_name, _, attr = factory.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Backend factory must look like 'module:attr', got {factory!r}")

    module = importlib.import_module(module_name)
    backend = getattr(module, attr)()
    logger.info(f"Loaded backend {factory}")
    return backend
