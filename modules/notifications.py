"""
Workflow notifications.

The orchestrator reports validation errors, submission results, payment
results and completion here. Fire-and-forget: nothing the notifier returns
is used.

Two notifiers:
    LoggingNotifier - writes to the log (headless runs)
    QueueNotifier   - keeps notices until the web layer drains them into
                      the next JSON response
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List

from logging_config import get_logger


logger = get_logger(__name__)

INFO = "info"
SUCCESS = "success"
WARNING = "warning"
ERROR = "error"

_LOG_LEVELS = {INFO: logging.INFO, SUCCESS: logging.INFO, WARNING: logging.WARNING, ERROR: logging.ERROR}


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class Notifier:
    """Base notifier. Subclasses implement `notify`."""

    def notify(self, level: str, message: str) -> None:
        raise NotImplementedError

    def info(self, message: str) -> None:
        self.notify(INFO, message)

    def success(self, message: str) -> None:
        self.notify(SUCCESS, message)

    def warning(self, message: str) -> None:
        self.notify(WARNING, message)

    def error(self, message: str) -> None:
        self.notify(ERROR, message)


class LoggingNotifier(Notifier):
    def notify(self, level: str, message: str) -> None:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), f"[{level}] {message}")


class QueueNotifier(Notifier):
    """
    Buffers notices for one workflow.

    Bounded so a workflow nobody reads from cannot grow without limit;
    the oldest notices are dropped first.
    """

    def __init__(self, max_notices: int = 50):
        self._notices: deque = deque(maxlen=max_notices)
        self._lock = threading.Lock()

    def notify(self, level: str, message: str) -> None:
        with self._lock:
            self._notices.append(Notice(level, message))
        logger.debug(f"Queued {level} notice: {message}")

    def drain(self) -> List[Notice]:
        """Return and clear all pending notices, oldest first."""
        with self._lock:
            notices = list(self._notices)
            self._notices.clear()
        return notices

    def __len__(self) -> int:
        with self._lock:
            return len(self._notices)
