"""
Static Gesture Classifier
==========================

Rule-based gesture recognition using hand landmark geometry.
Each rule is a predicate returning a signed margin over HandGeometry
features; rules are tried in priority order and the first one with a
strictly positive margin wins.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

from ..core.types import ClassificationSample, GestureLabel
from ..detection.landmarks import FINGERS, HandPose
from ..utils.config import GestureThresholds
from .hand_geometry import HandGeometry, all_of, negate

logger = logging.getLogger(__name__)

RulePredicate = Callable[[HandGeometry], float]
Rule = Tuple[GestureLabel, RulePredicate]


@dataclass(frozen=True)
class Classification:
    """Per-frame classifier output."""
    label: GestureLabel
    confidence: float
    margin: float = 0.0

    def to_sample(self, timestamp: float) -> ClassificationSample:
        return ClassificationSample(self.label, self.confidence, timestamp)


# =============================================================================
# Rule predicates
# =============================================================================

def _curled(g: HandGeometry, *fingers: str) -> float:
    return all_of(*(g.finger_curled(f) for f in fingers))


def _extended(g: HandGeometry, *fingers: str) -> float:
    return all_of(*(g.finger_extended(f) for f in fingers))


def finger_heart(g: HandGeometry) -> float:
    """Thumb and index tips crossed, other fingers folded."""
    return all_of(
        g.thumb_index_touch(),
        negate(g.finger_curled("index")),
        _curled(g, "middle", "ring", "pinky"),
    )


def ok_sign(g: HandGeometry) -> float:
    """Thumb and index tips touching, remaining fingers straight."""
    return all_of(g.thumb_index_touch(), _extended(g, "middle", "ring", "pinky"))


def i_love_you(g: HandGeometry) -> float:
    """Thumb, index and pinky out, middle and ring folded."""
    return all_of(
        g.thumb_extended(),
        _extended(g, "index", "pinky"),
        _curled(g, "middle", "ring"),
    )


def victory(g: HandGeometry) -> float:
    """Index and middle straight and spread apart."""
    return all_of(
        _extended(g, "index", "middle"),
        _curled(g, "ring", "pinky"),
        g.victory_spread(),
    )


def pointing(g: HandGeometry) -> float:
    """Index straight, other fingers folded, thumb away from the index tip."""
    return all_of(
        g.finger_extended("index"),
        _curled(g, "middle", "ring", "pinky"),
        negate(g.thumb_index_touch()),
    )


def thumbs_up(g: HandGeometry) -> float:
    return all_of(g.thumb_extended(), g.thumb_up(), _curled(g, *FINGERS))


def fist(g: HandGeometry) -> float:
    return all_of(negate(g.thumb_extended()), _curled(g, *FINGERS))


def open_hand(g: HandGeometry) -> float:
    return all_of(
        g.thumb_extended(),
        _extended(g, *FINGERS),
        negate(g.thumb_index_touch()),
    )


# Most specific first. Every pair disagrees on at least one feature,
# so at most one can match.
DEFAULT_RULES: Tuple[Rule, ...] = (
    (GestureLabel.FINGER_HEART, finger_heart),
    (GestureLabel.OK, ok_sign),
    (GestureLabel.I_LOVE_YOU, i_love_you),
    (GestureLabel.VICTORY, victory),
    (GestureLabel.POINTING, pointing),
    (GestureLabel.THUMBS_UP, thumbs_up),
    (GestureLabel.FIST, fist),
    (GestureLabel.OPEN_HAND, open_hand),
)


class GestureClassifier:
    """
    Rule-based static gesture classifier.

    Pure and stateless: the same pose and thresholds always produce the
    same Classification. Handedness is never consulted.

    Confidence combines the pose confidence with how clearly the winning
    rule matched:

        rule_confidence = 0.5 + 0.5 * clip(margin / margin_saturation, 0, 1)
        confidence = min(pose.confidence, rule_confidence)

    Example:
        >>> classifier = GestureClassifier()
        >>> result = classifier.classify(pose)
        >>> if result.label.is_gesture:
        ...     print(f"Detected: {result.label.value} ({result.confidence:.2f})")
    """

    def __init__(self, thresholds: Optional[GestureThresholds] = None,
                 rules: Optional[Sequence[Rule]] = None):
        self.thresholds = thresholds or GestureThresholds()
        self.rules: Tuple[Rule, ...] = tuple(rules) if rules is not None else DEFAULT_RULES

    def classify(self, pose: HandPose) -> Classification:
        """
        Classify a hand pose.

        Args:
            pose: Validated hand pose

        Returns:
            Classification; NONE when no rule matches
        """
        geometry = HandGeometry(pose, self.thresholds)
        if geometry.degenerate:
            logger.debug("Degenerate hand geometry, palm width %.3g", geometry.palm_width)
            return Classification(GestureLabel.NONE, pose.confidence)

        for label, predicate in self.rules:
            margin = predicate(geometry)
            if margin > 0.0:
                confidence = min(pose.confidence, self._rule_confidence(margin))
                logger.debug("Matched %s (margin=%.3f, confidence=%.3f)",
                             label.value, margin, confidence)
                return Classification(label, confidence, margin)

        return Classification(GestureLabel.NONE, pose.confidence)

    def evaluate(self, pose: HandPose) -> Dict[GestureLabel, float]:
        """Margins of every rule for a pose, for debugging and tuning."""
        geometry = HandGeometry(pose, self.thresholds)
        if geometry.degenerate:
            return {}
        return {label: predicate(geometry) for label, predicate in self.rules}

    def _rule_confidence(self, margin: float) -> float:
        scaled = margin / self.thresholds.margin_saturation
        return 0.5 + 0.5 * max(0.0, min(1.0, scaled))
