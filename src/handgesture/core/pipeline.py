"""
Pipeline driver for the gesture recognition system.

Architecture:
    submit(frame) -> FrameQueue -> [inference thread]
        LandmarkModel -> HandPoseExtractor -> GestureClassifier
        -> TemporalStabilizer -> EventBus subscribers

All stages of one frame run sequentially on a single inference thread,
so there is never more than one model call in flight and stabilizer
state is only touched from that thread.
"""

import logging
import threading
from typing import Dict, List, Optional

from ..capture.frame import Frame
from ..capture.frame_queue import FrameQueue
from ..detection.hand_pose_extractor import HandPoseExtractor
from ..detection.landmark_model import LandmarkModel
from ..detection.landmarks import HandPose
from ..detection.tracking import HandTracker
from ..recognition.gesture_classifier import Classification, GestureClassifier
from ..recognition.temporal_stabilizer import StabilizerPhase, TemporalStabilizer
from ..utils.config import PipelineConfig
from ..utils.logger import GestureEventLogger
from ..utils.performance import PerformanceMonitor
from .events import EventBus, Events
from .types import GestureEvent

logger = logging.getLogger(__name__)

_QUEUE_POLL_S = 0.1
_RESTART_JOIN_S = 5.0


class PipelineDriver:
    """Frame-to-event gesture pipeline.

    Can be driven two ways:
    - threaded: ``start()``, then ``submit(frame)`` from the capture side;
      events arrive through the event bus on the inference thread
    - synchronous: ``process_frame(frame)`` from the caller's own loop

    Example:
        >>> driver = PipelineDriver(model, config)
        >>> driver.event_bus.subscribe(Events.GESTURE_CHANGED, on_gesture)
        >>> with driver:
        ...     for frame in camera:
        ...         driver.submit(frame)
    """

    def __init__(
        self,
        model: LandmarkModel,
        config: Optional[PipelineConfig] = None,
        extractor: Optional[HandPoseExtractor] = None,
        classifier: Optional[GestureClassifier] = None,
        stabilizer: Optional[TemporalStabilizer] = None,
        event_bus: Optional[EventBus] = None,
        performance_monitor: Optional[PerformanceMonitor] = None,
        event_logger: Optional[GestureEventLogger] = None,
    ):
        self.config = config or PipelineConfig()
        self._model = model
        self._extractor = extractor or HandPoseExtractor(self.config.extractor)
        self._classifier = classifier or GestureClassifier(self.config.gestures)
        self._stabilizer = stabilizer or TemporalStabilizer(self.config.stabilizer)
        self._bus = event_bus or EventBus()
        self._perf = performance_monitor or PerformanceMonitor()
        self._event_logger = event_logger
        self._tracker = HandTracker(min(self._stabilizer.num_slots, model.max_hands_per_frame))

        self._queue = FrameQueue(self.config.queue_depth)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_results: Dict[int, Classification] = {}

    @classmethod
    def from_config(cls, config: PipelineConfig, **kwargs) -> "PipelineDriver":
        """Load the palm detector and landmark model from config and build a
        driver around them."""
        model = LandmarkModel.from_config(config.model, config.palm)
        return cls(model, config, **kwargs)

    # =========================================================================
    # Threaded operation
    # =========================================================================

    def submit(self, frame: Frame) -> bool:
        """Hand a frame to the inference thread without blocking.

        Returns:
            False if an older pending frame was dropped for this one, or
            if the pipeline is stopped and the frame was discarded
        """
        accepted = self._queue.put(frame)
        if not accepted:
            if self._queue.closed:
                logger.debug("Pipeline stopped, discarding frame at t=%.3f", frame.timestamp)
            else:
                self._perf.record_dropped()
        return accepted

    def start(self) -> None:
        """Start the inference thread.

        If a previous worker is still finishing a frame after ``stop()``,
        this waits for it so that only one worker ever runs.

        Raises:
            RuntimeError: If the previous worker does not finish in time
        """
        if self.is_running:
            logger.warning("Pipeline already running")
            return
        if self._thread is not None:
            self._thread.join(_RESTART_JOIN_S)
            if self._thread.is_alive():
                raise RuntimeError("Previous inference thread still running after %.1fs"
                                   % _RESTART_JOIN_S)
            self._thread = None

        if self._queue.closed:
            self._queue = FrameQueue(self.config.queue_depth)
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._queue, self._stop_event),
            name="gesture-inference", daemon=True,
        )
        self._thread.start()
        logger.info("Pipeline started (queue_depth=%d, slots=%d)",
                    self._queue.maxsize, self._tracker.num_slots)
        self._bus.emit(Events.PIPELINE_STARTED)

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the inference thread; pending frames are discarded.

        A worker still inside a frame after ``timeout`` finishes that frame
        and exits; ``start()`` waits for it.
        """
        if self._thread is None:
            return
        was_running = self.is_running
        self._stop_event.set()
        self._queue.close()
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Inference thread did not stop within %.1fs", timeout)
        else:
            self._thread = None
        if was_running:
            logger.info("Pipeline stopped (%d frames processed, %d dropped)",
                        self._perf.total_frames, self._perf.dropped_frames)
            self._bus.emit(Events.PIPELINE_STOPPED)

    @property
    def is_running(self) -> bool:
        return (self._thread is not None and self._thread.is_alive()
                and not self._stop_event.is_set())

    def close(self) -> None:
        """Stop the pipeline and release the models."""
        self.stop()
        if self._thread is not None:
            self._thread.join(_RESTART_JOIN_S)
            if self._thread.is_alive():
                logger.warning("Releasing models while the inference thread is still running")
        self._model.close()

    def __enter__(self) -> "PipelineDriver":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _run(self, queue: FrameQueue, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            frame = queue.get(timeout=_QUEUE_POLL_S)
            if frame is None:
                continue
            try:
                self.process_frame(frame)
            except Exception:
                logger.exception("Unexpected error processing frame at t=%.3f", frame.timestamp)

    # =========================================================================
    # Per-frame processing
    # =========================================================================

    def process_frame(self, frame: Frame) -> List[GestureEvent]:
        """
        Run one frame through every stage.

        Args:
            frame: Camera frame

        Returns:
            GestureEvents confirmed by this frame (already delivered to
            the event bus)
        """
        self._perf.frame_start()
        timestamp = frame.timestamp

        with self._perf.measure("inference"):
            raw_hands = self._model.infer(frame)

        with self._perf.measure("extraction"):
            poses = self._extractor.extract_all(raw_hands)

        with self._perf.measure("classification"):
            slots = self.assign_slots(poses)
            results = {slot: self._classifier.classify(pose) for slot, pose in slots.items()}
        self._last_results = results

        events = []
        appeared = []
        lost = []
        with self._perf.measure("stabilization"):
            for slot in range(self._stabilizer.num_slots):
                state = self._stabilizer.state(slot)
                if slot in results:
                    if state.phase is StabilizerPhase.IDLE:
                        appeared.append(slot)
                    event = self._stabilizer.update(results[slot].to_sample(timestamp), slot)
                else:
                    was_active = state.phase is not StabilizerPhase.IDLE
                    event = self._stabilizer.mark_absent(timestamp, slot)
                    if was_active and state.phase is StabilizerPhase.IDLE:
                        lost.append(slot)
                        self._tracker.release(slot)
                if event is not None:
                    events.append(event)

        self._perf.frame_complete()

        for slot in appeared:
            self._bus.emit(Events.HAND_DETECTED, slot=slot, pose=slots[slot])
        for slot in lost:
            self._bus.emit(Events.HAND_LOST, slot=slot)
        for event in events:
            logger.info("Gesture %s", event)
            if self._event_logger is not None:
                self._event_logger.log_event(event, latency_ms=self._perf.frame_time_ms)
            self._bus.emit(Events.GESTURE_CHANGED, event=event)

        return events

    def assign_slots(self, poses: List[HandPose]) -> Dict[int, HandPose]:
        """Map detected hands to stabilizer slots.

        A hand seen before keeps its slot by palm position. A new hand
        takes RIGHT 0 / LEFT 1 when free, else the lowest free slot. With
        a single-hand model every hand goes to slot 0. Hands beyond the
        slot count are ignored.
        """
        return self._tracker.assign(poses)

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def performance(self) -> PerformanceMonitor:
        return self._perf

    @property
    def stabilizer(self) -> TemporalStabilizer:
        return self._stabilizer

    @property
    def frame_queue(self) -> FrameQueue:
        return self._queue

    @property
    def last_results(self) -> Dict[int, Classification]:
        """Raw per-slot classifications from the most recent frame."""
        return dict(self._last_results)
