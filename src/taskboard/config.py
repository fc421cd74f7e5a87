"""Load optional board configuration from `<state_dir>/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import CONFIG_FILE, DEFAULT_LOCK_TIMEOUT, DEFAULT_LOG_LEVEL
from .io_utils import _load_data_with_error

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def load_board_config(state_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional board config file.

    Args:
        state_dir: Directory holding the board state (``.taskboard/``).

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = state_dir / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_lock_timeout(config: dict[str, Any]) -> float:
    """Seconds a transaction waits for the store lock before reporting contention."""
    raw = _get_nested(config, "store", "lock_timeout")
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw < 0:
        return DEFAULT_LOCK_TIMEOUT
    return float(raw)


def get_log_level(config: dict[str, Any]) -> str:
    raw = config.get("log_level")
    if isinstance(raw, str) and raw.upper() in VALID_LOG_LEVELS:
        return raw.upper()
    return DEFAULT_LOG_LEVEL


def events_enabled(config: dict[str, Any]) -> bool:
    raw = _get_nested(config, "events", "enabled")
    return raw if isinstance(raw, bool) else True
