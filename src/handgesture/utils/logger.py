"""
Structured logging with gesture event logging.
"""

import os
import logging
import logging.handlers
import time
from collections import deque
from functools import wraps


def setup_logging(level="INFO", log_file=None, max_size_mb=10, backup_count=3):
    """Configure structured logging for the application."""
    # Clean console format, compact and readable
    console_format = "%(asctime)s  %(levelname)-5s  %(message)s"
    # Verbose format for log file
    file_format = "%(asctime)s [%(levelname)-7s] %(name)-25s | %(message)s"
    date_format = "%H:%M:%S"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    root_logger.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(logging.Formatter(console_format, datefmt=date_format))
    root_logger.addHandler(console)

    # File handler (rotating)
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(file_format, datefmt=date_format))
        root_logger.addHandler(file_handler)

    return root_logger


class GestureEventLogger:
    """Logs delivered gesture events and keeps a bounded history.

    Subscribe ``log_event`` to the pipeline's event bus.
    """

    def __init__(self, max_history: int = 500):
        self.logger = logging.getLogger("gesture_events")
        self._history = deque(maxlen=max_history)

    def log_event(self, event, latency_ms=None):
        """Log a confirmed gesture transition."""
        self._history.append({
            "timestamp": event.timestamp,
            "gesture": event.label.value,
            "previous": event.previous.value,
            "slot": event.slot,
            "logged_at": time.time(),
        })
        self.logger.info(
            "Gesture: %-13s | From: %-13s | Slot: %d | Latency: %s",
            event.label.value,
            event.previous.value,
            event.slot,
            f"{latency_ms:.1f}ms" if latency_ms else "N/A",
        )

    def get_history(self, last_n=None):
        """Get recent event history."""
        if last_n:
            return list(self._history)[-last_n:]
        return list(self._history)

    @property
    def total_events(self):
        return len(self._history)


def log_timing(func):
    """Decorator to log function execution time."""
    logger = logging.getLogger(func.__module__)

    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        elapsed = (time.perf_counter() - start) * 1000
        logger.debug("%s took %.2fms", func.__name__, elapsed)
        return result

    return wrapper
