import time

from constants import TIMESTAMP_FORMAT


def now_timestamp():
    """Local wall-clock time as shown next to chat lines."""
    return time.strftime(TIMESTAMP_FORMAT, time.localtime())


def format_bytes(size):
    labels = ['', 'K', 'M', 'G', 'T']
    n = 0
    while size >= 1024 and n < len(labels) - 1:
        size /= 1024
        n += 1
    return f"{size:.2f} {labels[n]}B"


def short_key(node_key, head=8, tail=4):
    if not node_key or len(node_key) <= head + tail:
        return node_key or ""
    return f"{node_key[:head]}…{node_key[-tail:]}"


def split_csv(value):
    """Split a comma-joined list, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
