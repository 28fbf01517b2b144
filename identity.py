# identity.py
import logging
import random
import secrets
import string

from config_manager import SettingsRegistry

logger = logging.getLogger("Identity")

ADJECTIVES = (
    "Amber", "Brave", "Calm", "Clever", "Cosmic", "Dusty", "Eager", "Fuzzy",
    "Gentle", "Hidden", "Jolly", "Lucky", "Mellow", "Misty", "Nimble", "Quiet",
    "Rapid", "Rusty", "Silent", "Sunny", "Swift", "Tidy", "Vivid", "Witty",
)

NOUNS = (
    "Badger", "Comet", "Falcon", "Fern", "Fox", "Harbor", "Heron", "Lantern",
    "Lynx", "Maple", "Meadow", "Otter", "Owl", "Pebble", "Raven", "River",
    "Robin", "Sparrow", "Summit", "Tiger", "Tram", "Walrus", "Willow", "Yak",
)

NODE_KEY_BYTES = 32


def generate_username(rng=random):
    return f"{rng.choice(ADJECTIVES)}{rng.choice(NOUNS)}"


def generate_node_key():
    return secrets.token_hex(NODE_KEY_BYTES)


def is_valid_node_key(node_key):
    return (isinstance(node_key, str) and len(node_key) == NODE_KEY_BYTES * 2
            and all(ch in string.hexdigits for ch in node_key))


class IdentityManager:
    """Display username for this session plus the persisted node key."""
    def __init__(self, registry: SettingsRegistry, has_node_key: bool, rng=random):
        self.registry = registry
        self.username = generate_username(rng)
        logger.info(f"Generated username for this session: {self.username}")

        if has_node_key and is_valid_node_key(registry.node_key):
            self.node_key = registry.node_key
        else:
            if has_node_key:
                logger.warning("Stored node key is not 64 hex characters, replacing it")
            self.node_key = generate_node_key()
            registry.save_node_key(self.node_key)
            logger.info("Generated and persisted a new node key")

    def reset_node_key(self):
        self.node_key = generate_node_key()
        self.registry.save_node_key(self.node_key)
        logger.info("Node key reset; backend restart required")
        return self.node_key
