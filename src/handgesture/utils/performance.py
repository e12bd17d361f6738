"""
Performance Monitoring Module
==============================

Rolling FPS and per-stage latency for the inference thread.
"""

import time
import logging
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class PerformanceMetrics:
    """Container for performance metrics snapshot."""
    fps: float = 0.0
    frame_time_ms: float = 0.0
    inference_time_ms: float = 0.0
    extraction_time_ms: float = 0.0
    classification_time_ms: float = 0.0
    stabilization_time_ms: float = 0.0
    total_frames: int = 0
    dropped_frames: int = 0


class PerformanceMonitor:
    """
    Real-time performance monitoring for the gesture pipeline.

    Tracks:
    - FPS (frames per second, rolling)
    - Per-stage latency (inference, extraction, classification, stabilization)
    - Frames dropped by the newest-frame-wins queue

    Example:
        >>> monitor = PerformanceMonitor()
        >>> monitor.frame_start()
        >>> with monitor.measure("inference"):
        ...     hands = model.infer(frame)
        >>> monitor.frame_complete()
    """

    def __init__(self, window_size: int = 30):
        """
        Initialize performance monitor.

        Args:
            window_size: Number of frames for rolling average
        """
        self.window_size = window_size
        self._frame_times: deque = deque(maxlen=window_size)
        self._stage_times: Dict[str, deque] = {}
        self._frame_start: Optional[float] = None
        self._total_frames: int = 0
        self._dropped_frames: int = 0
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all collected timings."""
        with self._lock:
            self._total_frames = 0
            self._dropped_frames = 0
            self._frame_times.clear()
            self._stage_times.clear()
        self._frame_start = None

    def frame_start(self) -> None:
        """Mark the start of frame processing."""
        self._frame_start = time.perf_counter()

    def frame_complete(self) -> None:
        """Mark frame processing complete and update metrics."""
        if self._frame_start is None:
            return

        frame_time = time.perf_counter() - self._frame_start

        with self._lock:
            self._frame_times.append(frame_time)
            self._total_frames += 1

        self._frame_start = None

    def record_dropped(self, count: int = 1) -> None:
        """Count frames discarded before reaching inference."""
        with self._lock:
            self._dropped_frames += count

    @contextmanager
    def measure(self, stage: str):
        """
        Context manager to measure a processing stage.

        Args:
            stage: Name of the stage (e.g., "inference", "classification")
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                if stage not in self._stage_times:
                    self._stage_times[stage] = deque(maxlen=self.window_size)
                self._stage_times[stage].append(elapsed)

    @property
    def fps(self) -> float:
        """Get current FPS (rolling average)."""
        with self._lock:
            if not self._frame_times:
                return 0.0
            avg_frame_time = sum(self._frame_times) / len(self._frame_times)
            return 1.0 / avg_frame_time if avg_frame_time > 0 else 0.0

    @property
    def frame_time_ms(self) -> float:
        """Get average frame time in milliseconds."""
        with self._lock:
            if not self._frame_times:
                return 0.0
            return (sum(self._frame_times) / len(self._frame_times)) * 1000

    def stage_time_ms(self, stage: str) -> float:
        """Get average time for a specific stage in milliseconds."""
        with self._lock:
            if stage not in self._stage_times or not self._stage_times[stage]:
                return 0.0
            times = self._stage_times[stage]
            return (sum(times) / len(times)) * 1000

    @property
    def total_frames(self) -> int:
        return self._total_frames

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    def get_metrics(self) -> PerformanceMetrics:
        """Get current performance metrics snapshot."""
        return PerformanceMetrics(
            fps=self.fps,
            frame_time_ms=self.frame_time_ms,
            inference_time_ms=self.stage_time_ms("inference"),
            extraction_time_ms=self.stage_time_ms("extraction"),
            classification_time_ms=self.stage_time_ms("classification"),
            stabilization_time_ms=self.stage_time_ms("stabilization"),
            total_frames=self._total_frames,
            dropped_frames=self._dropped_frames,
        )

    def get_report(self) -> str:
        """Get formatted performance report string."""
        metrics = self.get_metrics()
        seen = metrics.total_frames + metrics.dropped_frames

        return (
            f"Performance Report\n"
            f"{'=' * 40}\n"
            f"FPS: {metrics.fps:.1f}\n"
            f"Frame Latency: {metrics.frame_time_ms:.1f}ms\n"
            f"\nPer-Stage Breakdown:\n"
            f"  Inference: {metrics.inference_time_ms:.2f}ms\n"
            f"  Extraction: {metrics.extraction_time_ms:.2f}ms\n"
            f"  Classification: {metrics.classification_time_ms:.2f}ms\n"
            f"  Stabilization: {metrics.stabilization_time_ms:.2f}ms\n"
            f"\nFrame Stats:\n"
            f"  Processed: {metrics.total_frames}\n"
            f"  Dropped: {metrics.dropped_frames} ({100*metrics.dropped_frames/max(1, seen):.1f}%)\n"
        )
