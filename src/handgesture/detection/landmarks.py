"""
Hand landmark value types.

Coordinates are in frame pixel space: x and y in pixels of the original
frame (letterboxing undone), z in the same pixel units relative to the
wrist depth. The space is isotropic, so joint angles are not distorted
for non-square frames. Points may fall slightly outside the frame.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import NamedTuple, Optional, Tuple

import numpy as np

from ..core.types import Handedness


class LandmarkIndex(IntEnum):
    """Hand landmark indices following MediaPipe convention."""
    WRIST = 0
    THUMB_CMC = 1
    THUMB_MCP = 2
    THUMB_IP = 3
    THUMB_TIP = 4
    INDEX_MCP = 5
    INDEX_PIP = 6
    INDEX_DIP = 7
    INDEX_TIP = 8
    MIDDLE_MCP = 9
    MIDDLE_PIP = 10
    MIDDLE_DIP = 11
    MIDDLE_TIP = 12
    RING_MCP = 13
    RING_PIP = 14
    RING_DIP = 15
    RING_TIP = 16
    PINKY_MCP = 17
    PINKY_PIP = 18
    PINKY_DIP = 19
    PINKY_TIP = 20


# Finger joint chains: (MCP/CMC, PIP/MCP, DIP/IP, TIP)
FINGER_JOINTS = {
    "thumb": (LandmarkIndex.THUMB_CMC, LandmarkIndex.THUMB_MCP,
              LandmarkIndex.THUMB_IP, LandmarkIndex.THUMB_TIP),
    "index": (LandmarkIndex.INDEX_MCP, LandmarkIndex.INDEX_PIP,
              LandmarkIndex.INDEX_DIP, LandmarkIndex.INDEX_TIP),
    "middle": (LandmarkIndex.MIDDLE_MCP, LandmarkIndex.MIDDLE_PIP,
               LandmarkIndex.MIDDLE_DIP, LandmarkIndex.MIDDLE_TIP),
    "ring": (LandmarkIndex.RING_MCP, LandmarkIndex.RING_PIP,
             LandmarkIndex.RING_DIP, LandmarkIndex.RING_TIP),
    "pinky": (LandmarkIndex.PINKY_MCP, LandmarkIndex.PINKY_PIP,
              LandmarkIndex.PINKY_DIP, LandmarkIndex.PINKY_TIP),
}

FINGERS = ("index", "middle", "ring", "pinky")


class Landmark(NamedTuple):
    """A single joint sample with model confidence."""
    x: float
    y: float
    z: float
    confidence: float

    def to_pixel(self) -> Tuple[int, int]:
        """Integer pixel position for drawing."""
        return (int(round(self.x)), int(round(self.y)))


@dataclass(frozen=True, eq=False)
class RawHandLandmarks:
    """One hand as reported by the model, before validation.

    Attributes:
        points: (N, 4) array of x, y, z, confidence in frame pixel space
        presence: model hand-presence score
        handedness: model handedness, None when the model does not report it
    """
    points: np.ndarray
    presence: float
    handedness: Optional[Handedness] = None

    def __len__(self) -> int:
        return int(self.points.shape[0])


@dataclass(frozen=True)
class HandPose:
    """Validated, complete 21-point skeleton for one hand."""
    landmarks: Tuple[Landmark, ...]
    handedness: Handedness
    confidence: float

    def get(self, index: LandmarkIndex) -> Landmark:
        """Get landmark by index."""
        return self.landmarks[index]

    def to_numpy(self) -> np.ndarray:
        """Landmark positions as an array of shape (21, 3)."""
        return np.array([[lm.x, lm.y, lm.z] for lm in self.landmarks], dtype=np.float64)

    def distance(self, idx1: LandmarkIndex, idx2: LandmarkIndex) -> float:
        """Euclidean 3D distance between two landmarks."""
        a = self.get(idx1)
        b = self.get(idx2)
        return float(np.sqrt((a.x - b.x) ** 2 + (a.y - b.y) ** 2 + (a.z - b.z) ** 2))

    @property
    def min_landmark_confidence(self) -> float:
        return min(lm.confidence for lm in self.landmarks)

    @property
    def palm_center(self) -> Tuple[float, float]:
        """Palm center from wrist and finger MCPs."""
        idx = (LandmarkIndex.WRIST, LandmarkIndex.INDEX_MCP, LandmarkIndex.MIDDLE_MCP,
               LandmarkIndex.RING_MCP, LandmarkIndex.PINKY_MCP)
        xs = [self.get(i).x for i in idx]
        ys = [self.get(i).y for i in idx]
        return (sum(xs) / len(xs), sum(ys) / len(ys))

    @property
    def bounding_box(self) -> Tuple[float, float, float, float]:
        """Bounding box (x, y, width, height) in frame pixels."""
        xs = [lm.x for lm in self.landmarks]
        ys = [lm.y for lm in self.landmarks]
        return (min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))
