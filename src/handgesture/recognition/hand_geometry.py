"""
Hand Geometry Features
=======================

Scale-free geometric features of a HandPose, each expressed as a signed
relative margin: positive when the condition holds, negative when it
does not, and larger in magnitude the clearer the case.

    greater than:  (value - threshold) / threshold
    less than:     (threshold - value) / threshold
    AND:           min of margins
    OR:            max of margins
    NOT:           negated margin

All distances are divided by the palm width, so features do not change
with the hand's distance from the camera.
"""

import math
from typing import Tuple

import numpy as np

from ..detection.landmarks import FINGER_JOINTS, HandPose, LandmarkIndex
from ..utils.config import GestureThresholds

# Below this palm width (in frame pixels) the hand is treated as degenerate
_MIN_PALM_WIDTH = 1e-6


def greater(value: float, threshold: float) -> float:
    """Margin of ``value > threshold``."""
    return (value - threshold) / threshold


def less(value: float, threshold: float) -> float:
    """Margin of ``value < threshold``."""
    return (threshold - value) / threshold


def all_of(*margins: float) -> float:
    return min(margins)


def any_of(*margins: float) -> float:
    return max(margins)


def negate(margin: float) -> float:
    return -margin


def joint_angle(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> float:
    """Angle at ``b`` between segments b->a and b->c, in degrees.

    Coincident points give 180 (treated as a straight joint).
    """
    ba = a - b
    bc = c - b
    norm = float(np.linalg.norm(ba) * np.linalg.norm(bc))
    if norm <= 0.0:
        return 180.0
    cos = float(np.dot(ba, bc)) / norm
    return math.degrees(math.acos(max(-1.0, min(1.0, cos))))


class HandGeometry:
    """
    Margin features for one pose under one set of thresholds.

    Example:
        >>> geom = HandGeometry(pose, GestureThresholds())
        >>> geom.finger_extended("index") > 0
        True
    """

    def __init__(self, pose: HandPose, thresholds: GestureThresholds):
        self.thresholds = thresholds
        self._points = pose.to_numpy()
        self.palm_width = self._palm_width()

    @property
    def degenerate(self) -> bool:
        """True when no usable palm scale exists."""
        return self.palm_width < _MIN_PALM_WIDTH

    def point(self, index: LandmarkIndex) -> np.ndarray:
        return self._points[index]

    def ratio(self, idx1: LandmarkIndex, idx2: LandmarkIndex) -> float:
        """Distance between two landmarks in palm widths."""
        return float(np.linalg.norm(self._points[idx1] - self._points[idx2])) / self.palm_width

    # =========================================================================
    # Raw measurements
    # =========================================================================

    def pip_angle(self, finger: str) -> float:
        """Angle at the middle joint of a finger (IP joint for the thumb)."""
        mcp, pip, dip, tip = FINGER_JOINTS[finger]
        if finger == "thumb":
            return joint_angle(self.point(pip), self.point(dip), self.point(tip))
        return joint_angle(self.point(mcp), self.point(pip), self.point(dip))

    def tip_reach(self, finger: str) -> float:
        """Fingertip to wrist distance in palm widths."""
        return self.ratio(FINGER_JOINTS[finger][3], LandmarkIndex.WRIST)

    def finger_measurements(self, finger: str) -> Tuple[float, float]:
        return self.pip_angle(finger), self.tip_reach(finger)

    # =========================================================================
    # Margin features
    # =========================================================================

    def finger_extended(self, finger: str) -> float:
        t = self.thresholds
        angle, reach = self.finger_measurements(finger)
        return all_of(greater(angle, t.extend_angle), greater(reach, t.extend_ratio))

    def finger_curled(self, finger: str) -> float:
        t = self.thresholds
        angle, reach = self.finger_measurements(finger)
        return any_of(less(angle, t.curl_angle), less(reach, t.curl_ratio))

    def thumb_extended(self) -> float:
        """Straight thumb reaching away from the pinky side of the palm."""
        t = self.thresholds
        return all_of(
            greater(self.pip_angle("thumb"), t.thumb_extend_angle),
            greater(self.ratio(LandmarkIndex.THUMB_TIP, LandmarkIndex.PINKY_MCP), t.thumb_reach_ratio),
        )

    def thumb_up(self) -> float:
        # Image y grows downward, so a raised tip has the smaller y
        rise = (self.point(LandmarkIndex.THUMB_MCP)[1] - self.point(LandmarkIndex.THUMB_TIP)[1])
        return greater(rise / self.palm_width, self.thresholds.thumb_up_ratio)

    def thumb_index_touch(self) -> float:
        return less(self.ratio(LandmarkIndex.THUMB_TIP, LandmarkIndex.INDEX_TIP),
                    self.thresholds.touch_ratio)

    def victory_spread(self) -> float:
        return greater(self.ratio(LandmarkIndex.INDEX_TIP, LandmarkIndex.MIDDLE_TIP),
                       self.thresholds.victory_spread_ratio)

    def _palm_width(self) -> float:
        width = float(np.linalg.norm(self.point(LandmarkIndex.INDEX_MCP)
                                     - self.point(LandmarkIndex.PINKY_MCP)))
        if width >= _MIN_PALM_WIDTH:
            return width
        # Edge-on palm: fall back to the palm length
        return float(np.linalg.norm(self.point(LandmarkIndex.WRIST)
                                    - self.point(LandmarkIndex.MIDDLE_MCP)))
