"""
Shared domain types for the gesture pipeline.

Centralizes enums and value objects used across modules to avoid
circular imports between detection, recognition and the driver.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


# =============================================================================
# Gesture Labels
# =============================================================================

class GestureLabel(Enum):
    """Closed set of recognized static gestures.

    NONE is an ordinary outcome: a hand is present but no rule matched.
    """
    VICTORY = "victory"
    OK = "ok"
    THUMBS_UP = "thumbs_up"
    POINTING = "pointing"
    I_LOVE_YOU = "i_love_you"
    FINGER_HEART = "finger_heart"
    FIST = "fist"
    OPEN_HAND = "open_hand"
    NONE = "none"

    @classmethod
    def from_string(cls, name: str) -> "GestureLabel":
        """Convert a string gesture name to GestureLabel, safely."""
        try:
            return cls(name)
        except ValueError:
            return cls.NONE

    @property
    def is_gesture(self) -> bool:
        return self is not GestureLabel.NONE


class Handedness(Enum):
    """Which hand a pose belongs to, when the model reports it."""
    LEFT = "left"
    RIGHT = "right"
    UNKNOWN = "unknown"

    @classmethod
    def from_score(cls, score: Optional[float]) -> Optional["Handedness"]:
        """Map a model handedness score to a Handedness.

        Scores >= 0.5 are right hands, scores in (0, 0.5) left hands and
        anything else unknown. A missing score stays unset.
        """
        if score is None:
            return None
        if score >= 0.5:
            return cls.RIGHT
        if score > 0.0:
            return cls.LEFT
        return cls.UNKNOWN


# =============================================================================
# Value Objects
# =============================================================================

@dataclass(frozen=True)
class ClassificationSample:
    """Raw per-frame classifier output, consumed by the stabilizer."""
    label: GestureLabel
    confidence: float
    timestamp: float


@dataclass(frozen=True)
class GestureEvent:
    """A confirmed gesture transition.

    Emitted once per stable change, never per frame.
    """
    label: GestureLabel
    timestamp: float
    slot: int = 0
    previous: GestureLabel = GestureLabel.NONE

    def __str__(self) -> str:
        return "GestureEvent(%s <- %s, slot=%d, t=%.3f)" % (
            self.label.value, self.previous.value, self.slot, self.timestamp)
