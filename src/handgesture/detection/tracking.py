"""
Hand tracking across frames.

Keeps each physical hand in the same stabilizer slot by matching palm
centres frame to frame. Handedness scores can flicker around 0.5 for a
single hand, so they only pick the slot for a newly seen hand.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..core.types import Handedness
from .landmarks import HandPose, LandmarkIndex

logger = logging.getLogger(__name__)

# Slot a newly seen hand prefers when it is free
_PREFERRED_SLOT = {
    Handedness.RIGHT: 0,
    Handedness.LEFT: 1,
}

_MIN_PALM_SIZE = 1e-6


@dataclass(frozen=True)
class TrackedHand:
    """Last known position of the hand held in one slot."""
    center: Tuple[float, float]
    palm_size: float
    handedness: Handedness


def palm_size(pose: HandPose) -> float:
    """Palm width, or palm length when the hand is seen edge-on."""
    width = pose.distance(LandmarkIndex.INDEX_MCP, LandmarkIndex.PINKY_MCP)
    if width >= _MIN_PALM_SIZE:
        return width
    return pose.distance(LandmarkIndex.WRIST, LandmarkIndex.MIDDLE_MCP)


class HandTracker:
    """Assigns detected hands to a fixed number of slots.

    A hand is matched to the tracked slot with the nearest palm centre,
    within ``max_match_distance`` palm sizes. Unmatched hands take the
    slot their handedness prefers (RIGHT 0, LEFT 1) if it is free, then
    the lowest free slot, then the lowest slot whose hand was not seen
    this frame. Hands left over are ignored.

    Example:
        >>> tracker = HandTracker(num_slots=2)
        >>> slots = tracker.assign(poses)    # {slot: HandPose}
        >>> tracker.release(lost_slot)       # once the slot times out
    """

    def __init__(self, num_slots: int = 2, max_match_distance: float = 2.0):
        if num_slots < 1:
            raise ValueError("num_slots must be >= 1, got %r" % num_slots)
        self.num_slots = num_slots
        self.max_match_distance = max_match_distance
        self._tracked: Dict[int, TrackedHand] = {}

    def assign(self, poses: List[HandPose]) -> Dict[int, HandPose]:
        """Map this frame's hands to slots and remember their positions."""
        assigned: Dict[int, HandPose] = {}
        pending = []

        for pose in poses:
            slot = self._find_closest_slot(pose, assigned)
            if slot is None:
                pending.append(pose)
            else:
                assigned[slot] = pose

        for pose in pending:
            slot = self._free_slot(pose, assigned)
            if slot is None:
                logger.debug("Ignoring hand beyond %d slot(s)", self.num_slots)
                continue
            if slot in self._tracked:
                logger.debug("Slot %d taken over by a new hand", slot)
            assigned[slot] = pose

        for slot, pose in assigned.items():
            self._tracked[slot] = TrackedHand(pose.palm_center, palm_size(pose), pose.handedness)

        return assigned

    def release(self, slot: int) -> None:
        """Forget the hand held in a slot."""
        self._tracked.pop(slot, None)

    def reset(self) -> None:
        self._tracked.clear()

    @property
    def tracked_slots(self) -> List[int]:
        return sorted(self._tracked)

    def _find_closest_slot(self, pose: HandPose, assigned: Dict[int, HandPose]) -> Optional[int]:
        cx, cy = pose.palm_center
        best_slot = None
        best_key = None
        for slot, hand in self._tracked.items():
            if slot in assigned:
                continue
            dist = math.hypot(cx - hand.center[0], cy - hand.center[1])
            if dist > self.max_match_distance * max(hand.palm_size, _MIN_PALM_SIZE):
                continue
            # Equal distances: prefer the slot whose hand had the same handedness
            key = (dist, hand.handedness is not pose.handedness, slot)
            if best_key is None or key < best_key:
                best_key = key
                best_slot = slot
        return best_slot

    def _free_slot(self, pose: HandPose, assigned: Dict[int, HandPose]) -> Optional[int]:
        free = [s for s in range(self.num_slots) if s not in assigned and s not in self._tracked]
        preferred = _PREFERRED_SLOT.get(pose.handedness)
        if preferred in free:
            return preferred
        if free:
            return free[0]
        stale = [s for s in range(self.num_slots) if s not in assigned]
        return stale[0] if stale else None
