import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from constants import DEFAULT_LOG_PATH

# Noisy third-party loggers, quiet unless debugging
QUIET_LIBRARIES = ["asyncio", "prompt_toolkit", "questionary"]


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""
    def format(self, record):
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.levelno >= logging.ERROR:
            entry["module"] = record.module
            entry["line"] = record.lineno
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(log_filename=DEFAULT_LOG_PATH, debug_mode=False, max_size_mb=10, backup_count=5, console=True):
    log_folder = os.path.dirname(log_filename)
    if log_folder:
        os.makedirs(log_folder, exist_ok=True)

    root = logging.getLogger()

    # Drop handlers from a previous setup so reloads don't double-log
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(logging.DEBUG if debug_mode else logging.INFO)

    file_handler = RotatingFileHandler(
        log_filename,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setFormatter(JsonFormatter(datefmt='%Y-%m-%d %H:%M:%S'))
    root.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s', datefmt='%H:%M:%S'))
        console_handler.setLevel(logging.DEBUG if debug_mode else logging.WARNING)
        root.addHandler(console_handler)

    lib_level = logging.DEBUG if debug_mode else logging.WARNING
    for lib in QUIET_LIBRARIES:
        logging.getLogger(lib).setLevel(lib_level)

    return root
