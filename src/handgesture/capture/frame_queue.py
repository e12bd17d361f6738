"""
Bounded newest-frame-wins queue between the camera and the inference thread.
"""

import logging
import threading
from collections import deque
from typing import Optional

from .frame import Frame

logger = logging.getLogger(__name__)


class FrameQueue:
    """
    Thread-safe bounded frame queue that drops the oldest frame on overflow.

    When inference cannot keep up with capture, stale frames are discarded
    instead of accumulating, which keeps latency bounded.

    Example:
        >>> queue = FrameQueue(maxsize=1)
        >>> queue.put(frame)          # camera thread, never blocks
        >>> frame = queue.get(0.1)    # inference thread
    """

    def __init__(self, maxsize: int = 1):
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1, got %r" % maxsize)
        self._frames = deque(maxlen=maxsize)
        self._cond = threading.Condition()
        self._closed = False
        self._dropped = 0

    def put(self, frame: Frame) -> bool:
        """Enqueue a frame without blocking.

        Returns:
            False if an older frame was dropped to make room, or if the
            queue is closed and the frame was rejected (check ``closed``)
        """
        with self._cond:
            if self._closed:
                return False
            dropped = len(self._frames) == self._frames.maxlen
            if dropped:
                self._dropped += 1
            self._frames.append(frame)
            self._cond.notify()
        if dropped:
            logger.debug("Frame queue full, dropped oldest frame (total dropped: %d)", self._dropped)
        return not dropped

    def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """Dequeue the oldest remaining frame.

        Returns None on timeout or once the queue is closed and empty.
        """
        with self._cond:
            if not self._frames and not self._closed:
                self._cond.wait(timeout)
            if not self._frames:
                return None
            return self._frames.popleft()

    def close(self) -> None:
        """Stop accepting frames and wake any waiting consumer."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def clear(self) -> None:
        with self._cond:
            self._frames.clear()

    def __len__(self) -> int:
        with self._cond:
            return len(self._frames)

    @property
    def maxsize(self) -> int:
        return self._frames.maxlen

    @property
    def dropped(self) -> int:
        """Number of frames dropped on overflow."""
        return self._dropped

    @property
    def closed(self) -> bool:
        return self._closed
