"""
Temporal Stabilizer
====================

Debounces per-frame classifications into discrete gesture transitions.
A new label is confirmed only after it has been observed for
``debounce_frames`` consecutive samples; one GestureEvent is emitted per
confirmed change, never per frame.

Each tracked hand gets its own slot with an independent state machine:

    IDLE ──sample──> UNCONFIRMED(candidate, count) ──count reached──> CONFIRMED(label)
      ^                                                                   |
      └──────────────────── no pose for idle_timeout ─────────────────────┘
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, List, Optional

from ..core.types import ClassificationSample, GestureEvent, GestureLabel
from ..utils.config import StabilizerConfig

logger = logging.getLogger(__name__)


class StabilizerPhase(Enum):
    IDLE = "idle"
    UNCONFIRMED = "unconfirmed"
    CONFIRMED = "confirmed"


@dataclass
class StabilizerState:
    """Debounce state for one hand slot."""
    history_size: int = 8
    phase: StabilizerPhase = StabilizerPhase.IDLE
    confirmed: GestureLabel = GestureLabel.NONE
    candidate: Optional[GestureLabel] = None
    count: int = 0
    last_seen: Optional[float] = None
    history: Deque[ClassificationSample] = field(init=False)

    def __post_init__(self):
        self.history = deque(maxlen=self.history_size)

    def reset(self) -> None:
        """Return to IDLE with nothing confirmed."""
        self.phase = StabilizerPhase.IDLE
        self.confirmed = GestureLabel.NONE
        self.candidate = None
        self.count = 0
        self.last_seen = None
        self.history.clear()

    @property
    def recent_labels(self) -> List[GestureLabel]:
        return [s.label for s in self.history]


class TemporalStabilizer:
    """
    Per-slot gesture debouncer.

    Debounce is counted in frames, so irregular timestamps do not affect
    it; only the idle timeout uses elapsed time. All methods are meant to
    be called from a single thread.

    Example:
        >>> stabilizer = TemporalStabilizer(StabilizerConfig(debounce_frames=3))
        >>> for sample in samples:
        ...     event = stabilizer.update(sample)
        ...     if event is not None:
        ...         print(event)
    """

    def __init__(self, config: Optional[StabilizerConfig] = None):
        self.config = config or StabilizerConfig()
        self._slots: List[StabilizerState] = [
            StabilizerState(history_size=self.config.history_size)
            for _ in range(self.config.max_slots)
        ]

    @property
    def num_slots(self) -> int:
        return len(self._slots)

    def state(self, slot: int = 0) -> StabilizerState:
        return self._slots[slot]

    def confirmed_label(self, slot: int = 0) -> GestureLabel:
        return self._slots[slot].confirmed

    def update(self, sample: ClassificationSample, slot: int = 0) -> Optional[GestureEvent]:
        """
        Feed one classification for a slot.

        Args:
            sample: Classifier output for this frame
            slot: Hand slot index

        Returns:
            GestureEvent when a new label is confirmed, otherwise None
        """
        state = self._slots[slot]
        label = sample.label
        if sample.confidence < self.config.min_sample_confidence:
            label = GestureLabel.NONE

        state.history.append(ClassificationSample(label, sample.confidence, sample.timestamp))
        state.last_seen = sample.timestamp

        if label is state.confirmed:
            # Includes NONE while idle: the slot is live but shows nothing
            state.phase = StabilizerPhase.CONFIRMED
            state.candidate = None
            state.count = 0
            return None

        if label is state.candidate:
            state.count += 1
        else:
            state.candidate = label
            state.count = 1
        state.phase = StabilizerPhase.UNCONFIRMED

        if state.count < self.config.debounce_frames:
            return None

        event = GestureEvent(label=label, timestamp=sample.timestamp,
                             slot=slot, previous=state.confirmed)
        state.confirmed = label
        state.phase = StabilizerPhase.CONFIRMED
        state.candidate = None
        state.count = 0
        logger.debug("Slot %d confirmed %s (was %s)", slot, label.value, event.previous.value)
        return event

    def mark_absent(self, timestamp: float, slot: int = 0) -> Optional[GestureEvent]:
        """
        Note that no pose was seen for a slot in this frame.

        Once the slot has had no pose for ``idle_timeout_s`` it resets to
        IDLE. If something other than NONE was confirmed, one closing
        NONE event is returned.
        """
        state = self._slots[slot]
        if state.phase is StabilizerPhase.IDLE or state.last_seen is None:
            return None
        if timestamp - state.last_seen < self.config.idle_timeout_s:
            return None

        previous = state.confirmed
        state.reset()
        logger.debug("Slot %d idle after %.3fs without a pose", slot, self.config.idle_timeout_s)
        if previous is GestureLabel.NONE:
            return None
        return GestureEvent(label=GestureLabel.NONE, timestamp=timestamp,
                            slot=slot, previous=previous)

    def reset(self) -> None:
        """Reset every slot to IDLE without emitting events."""
        for state in self._slots:
            state.reset()
