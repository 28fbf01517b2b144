# constants.py

# Backend event names
EVENT_CHAT_MESSAGE = "chatMessage"
EVENT_HISTORY_MESSAGE = "historyMessage"
EVENT_MIXNODE_POOL_SIZE = "mixnodePoolSizeResponse"
EVENT_LIGHTPUSH_PEERS_COUNT = "lightpushPeersCountResponse"

# Chat
DEFAULT_CHANNEL = "baixa-chiado"
SYSTEM_SENDER = "System"
HISTORY_PREFIX = "[HISTORY] "
HISTORY_MARKER = "--- Message History ---"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Metrics polling (ms)
FAST_POLL_INTERVAL_MS = 5000
SLOW_POLL_INTERVAL_MS = 30000
SLOW_MODE_POOL_THRESHOLD = 3

# Defaults
DEFAULT_CONFIG_PATH = "config.toml"
DEFAULT_LOG_PATH = "logs/app.jsonl"
SETTINGS_FILE = "settings.json"
EVENT_QUEUE_SIZE = 1024
