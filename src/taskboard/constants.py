"""Shared constants for the task board engine."""

STATE_DIR_NAME = ".taskboard"
CONFIG_FILE = "config.yaml"
STORE_FILENAME = "board.yaml"
LOCK_FILENAME = "board.lock"
EVENTS_FILENAME = "events.jsonl"

STORE_VERSION = 1

DEFAULT_LOCK_TIMEOUT = 30.0  # seconds
DEFAULT_LOG_LEVEL = "INFO"
LOCK_POLL_INTERVAL = 0.05  # seconds between non-blocking lock attempts

WINDOWS_LOCK_BYTES = 1
