# settings_store.py
import json
import logging
import os
from abc import ABC, abstractmethod

logger = logging.getLogger("SettingsStore")


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key, default=None): pass
    @abstractmethod
    def set(self, key, value): pass
    @abstractmethod
    def sync(self): pass


class JsonSettingsStore(KeyValueStore):
    """Durable key-value store backed by a single JSON file.

    Writes are buffered in memory until sync(), which replaces the file
    atomically so a crash never leaves half-written settings behind.
    """
    def __init__(self, path):
        self.path = path
        self._data = {}
        self._load()

    def _load(self):
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Settings file {self.path} is corrupt, starting empty: {e}")
            return
        if isinstance(data, dict):
            self._data = data
        else:
            logger.warning(f"Settings file {self.path} does not hold an object, starting empty")

    def get(self, key, default=None):
        return self._data.get(key, default)

    def set(self, key, value):
        self._data[key] = value

    def sync(self):
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)
        logger.debug(f"Settings synced to {self.path}")
