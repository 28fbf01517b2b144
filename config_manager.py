# config_manager.py
import copy
import logging
import os
import tomllib
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

from constants import DEFAULT_CHANNEL, DEFAULT_LOG_PATH, SETTINGS_FILE
from settings_store import KeyValueStore

logger = logging.getLogger("ConfigManager")

# Persisted settings keys
KEY_NODE_KEY = "nodeKey"
KEY_DISCOVERY_MODE = "discoveryMode"
KEY_BOOTSTRAP_NODES = "bootstrapNodes"
KEY_STORE_NODE = "storeNode"


class DiscoveryMode(IntEnum):
    EXT_KAD_ONLY = 0
    STD_DISCOVERY = 1
    ALL = 2


@dataclass
class BootstrapNode:
    address: str
    mix_pub_key: str = ""

    def to_dict(self):
        return {"address": self.address, "mixPubKey": self.mix_pub_key}


@dataclass
class DiscoveryConfig:
    mode: DiscoveryMode = DiscoveryMode.ALL
    bootstrap_nodes: List[BootstrapNode] = field(default_factory=list)
    store_node: str = ""

    def has_address(self, address):
        return any(node.address == address for node in self.bootstrap_nodes)


def parse_mode(value, default=DiscoveryMode.ALL) -> DiscoveryMode:
    if isinstance(value, str) and value.upper() in DiscoveryMode.__members__:
        return DiscoveryMode[value.upper()]
    try:
        return DiscoveryMode(int(value))
    except (TypeError, ValueError):
        logger.warning(f"Invalid discovery mode {value!r}, using {default.name}")
        return default


def parse_bootstrap_nodes(raw) -> List[BootstrapNode]:
    """Coerce stored node entries, dropping blanks and duplicate addresses."""
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning(f"Ignoring bootstrap node list of type {type(raw).__name__}")
        return []

    nodes = []
    seen = set()
    for entry in raw:
        if isinstance(entry, str):
            address, mix_key = entry, ""
        elif isinstance(entry, dict):
            address = entry.get("address", "")
            mix_key = entry.get("mixPubKey", entry.get("mix_pub_key", "")) or ""
        else:
            logger.warning(f"Skipping malformed bootstrap node: {entry!r}")
            continue

        address = str(address).strip()
        if not address or address in seen:
            continue
        seen.add(address)
        nodes.append(BootstrapNode(address, str(mix_key).strip()))
    return nodes


@dataclass
class BackendConfig:
    factory: str = "loopback"


@dataclass
class ChatConfig:
    default_channel: str = DEFAULT_CHANNEL


@dataclass
class StorageConfig:
    settings_path: str = SETTINGS_FILE


@dataclass
class LoggingConfig:
    debug: bool = False
    file_path: str = DEFAULT_LOG_PATH
    max_size_mb: int = 10
    backup_count: int = 5


class Settings:
    """Application configuration read from a TOML file."""
    def __init__(self, config_path="config.toml"):
        self.path = config_path
        self.load()

    def load(self):
        if not os.path.exists(self.path):
            raise FileNotFoundError(f"Configuration file not found: {self.path}")

        try:
            with open(self.path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Invalid TOML format in {self.path}: {e}")
            raise ValueError(f"Config syntax error: {e}")

        try:
            self.backend = BackendConfig(**data.get('backend', {}))
            self.chat = ChatConfig(**data.get('chat', {}))
            self.storage = StorageConfig(**data.get('storage', {}))
            self.logging = LoggingConfig(**data.get('logging', {}))
        except TypeError as e:
            raise ValueError(f"Config schema error in {self.path}: {e}")

        discovery = data.get('discovery', {})
        self.discovery = DiscoveryConfig(
            mode=parse_mode(discovery.get('mode', DiscoveryMode.ALL)),
            bootstrap_nodes=parse_bootstrap_nodes(discovery.get('bootstrap_nodes', [])),
            store_node=str(discovery.get('store_node', "")).strip(),
        )

        # Relative storage paths live next to the config file
        if not os.path.isabs(self.storage.settings_path):
            base = os.path.dirname(os.path.abspath(self.path))
            self.storage.settings_path = os.path.join(base, self.storage.settings_path)


class SettingsRegistry:
    """Discovery configuration and node key, persisted through a KeyValueStore.

    Bootstrap-node edits only touch the in-memory record; call save() to
    persist them.
    """
    def __init__(self, store: KeyValueStore, defaults: Optional[DiscoveryConfig] = None):
        self.store = store
        self.defaults = defaults or DiscoveryConfig()
        self.config = copy.deepcopy(self.defaults)
        self.node_key = ""

    def load(self) -> tuple[DiscoveryConfig, bool]:
        stored_mode = self.store.get(KEY_DISCOVERY_MODE)
        mode = self.defaults.mode if stored_mode is None else parse_mode(stored_mode, self.defaults.mode)

        stored_nodes = self.store.get(KEY_BOOTSTRAP_NODES)
        if stored_nodes is None:
            nodes = copy.deepcopy(self.defaults.bootstrap_nodes)
        else:
            nodes = parse_bootstrap_nodes(stored_nodes)

        store_node = self.store.get(KEY_STORE_NODE)
        if not isinstance(store_node, str):
            if store_node is not None:
                logger.warning(f"Ignoring non-string store node: {store_node!r}")
            store_node = self.defaults.store_node

        self.config = DiscoveryConfig(mode=mode, bootstrap_nodes=nodes, store_node=store_node.strip())

        node_key = self.store.get(KEY_NODE_KEY)
        self.node_key = node_key if isinstance(node_key, str) else ""
        has_node_key = bool(self.node_key)

        logger.info(f"Loaded settings: mode={mode.name}, {len(nodes)} bootstrap nodes, node key {'present' if has_node_key else 'missing'}")
        return self.config, has_node_key

    def save(self, config: Optional[DiscoveryConfig] = None, node_key: Optional[str] = None):
        if config is not None:
            self.config = config
        if node_key is not None:
            self.node_key = node_key

        self.store.set(KEY_NODE_KEY, self.node_key)
        self.store.set(KEY_DISCOVERY_MODE, int(self.config.mode))
        self.store.set(KEY_BOOTSTRAP_NODES, [node.to_dict() for node in self.config.bootstrap_nodes])
        self.store.set(KEY_STORE_NODE, self.config.store_node)
        self.store.sync()
        logger.info("Settings saved")

    def save_node_key(self, node_key: str):
        self.node_key = node_key
        self.store.set(KEY_NODE_KEY, node_key)
        self.store.sync()

    # --- Mutations (not persisted until save) ---
    def set_mode(self, mode):
        self.config.mode = parse_mode(mode, self.config.mode)

    def set_store_node(self, address):
        self.config.store_node = (address or "").strip()

    def add_bootstrap_node(self, address, mix_pub_key="") -> bool:
        address = (address or "").strip()
        if not address:
            logger.warning("Cannot add bootstrap node with empty address")
            return False
        if self.config.has_address(address):
            logger.info(f"Bootstrap node already present: {address}")
            return False
        self.config.bootstrap_nodes.append(BootstrapNode(address, (mix_pub_key or "").strip()))
        return True

    def update_mix_key(self, index, mix_pub_key) -> bool:
        if not 0 <= index < len(self.config.bootstrap_nodes):
            logger.warning(f"Bootstrap node index out of range: {index}")
            return False
        self.config.bootstrap_nodes[index].mix_pub_key = (mix_pub_key or "").strip()
        return True

    def remove_bootstrap_node(self, index) -> bool:
        if not 0 <= index < len(self.config.bootstrap_nodes):
            logger.warning(f"Bootstrap node index out of range: {index}")
            return False
        removed = self.config.bootstrap_nodes.pop(index)
        logger.info(f"Removed bootstrap node: {removed.address}")
        return True
