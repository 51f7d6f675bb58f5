"""
Event log and status-line fan-out.

Every meaningful bot event goes through ``log_event`` (console + in-memory
ring for the dashboard). ``report`` additionally pushes the line to each
registered control-channel listener.
"""

import logging
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Callable

logger = logging.getLogger("derivbot")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

_recent: deque[dict] = deque(maxlen=200)
_listeners: list[Callable[[str], None]] = []


def setup_logging(level=logging.INFO):
    """Attach a console handler to the bot logger (idempotent)."""
    formatter = logging.Formatter(
        "%(asctime)s | %(name)-10s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logger.setLevel(level)
    if not logger.handlers:
        logger.addHandler(handler)
    return logger


def log_event(level: str, message: str):
    _recent.append({
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "message": message,
    })
    logger.log(_LEVELS.get(level, logging.INFO), "[%s] %s", level, message)


def report(message: str, level: str = "BOT"):
    """Log a status line and relay it to every control-channel listener."""
    log_event(level, message)
    for listener in list(_listeners):
        try:
            listener(message)
        except Exception as exc:
            logger.warning("Status listener failed: %r", exc)


def add_listener(listener: Callable[[str], None]):
    if listener not in _listeners:
        _listeners.append(listener)


def remove_listener(listener: Callable[[str], None]):
    if listener in _listeners:
        _listeners.remove(listener)


def get_recent_logs(limit: int = 50) -> list[dict]:
    return list(reversed(_recent))[:limit]


def clear_recent_logs():
    _recent.clear()
