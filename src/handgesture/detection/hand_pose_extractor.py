"""
Hand Pose Extraction
=====================

Validates raw model landmark sets into complete HandPose skeletons.
A detection either becomes a full 21-point pose or is dropped; partial
poses never reach the classifier.
"""

import logging
from typing import Iterable, List, Optional

import numpy as np

from ..core.types import Handedness
from ..utils.config import ExtractorConfig
from .landmarks import HandPose, Landmark, RawHandLandmarks

logger = logging.getLogger(__name__)


class HandPoseExtractor:
    """
    Turns RawHandLandmarks into HandPose or rejects them.

    Rejection rules:
    - landmark count differs from the model topology
    - any coordinate is NaN or infinite
    - any landmark confidence is below min_landmark_confidence

    Example:
        >>> extractor = HandPoseExtractor()
        >>> pose = extractor.extract(raw)
        >>> if pose is not None:
        ...     gesture = classifier.classify(pose)
    """

    def __init__(self, config: Optional[ExtractorConfig] = None):
        self.config = config or ExtractorConfig()

    def extract(self, raw: RawHandLandmarks) -> Optional[HandPose]:
        """Validate one raw landmark set.

        Returns:
            HandPose, or None if the detection is rejected
        """
        points = np.asarray(raw.points, dtype=np.float64)
        if points.ndim != 2 or points.shape[0] != self.config.num_landmarks or points.shape[1] < 4:
            logger.debug("Rejected hand: expected %d landmarks, got shape %s",
                         self.config.num_landmarks, points.shape)
            return None

        if not np.all(np.isfinite(points[:, :4])):
            logger.debug("Rejected hand: non-finite landmark values")
            return None

        confidences = points[:, 3]
        worst = int(np.argmin(confidences))
        if confidences[worst] < self.config.min_landmark_confidence:
            logger.debug("Rejected hand: landmark %d confidence %.3f < %.3f",
                         worst, confidences[worst], self.config.min_landmark_confidence)
            return None

        landmarks = tuple(
            Landmark(float(x), float(y), float(z), float(c))
            for x, y, z, c in points[:, :4]
        )
        return HandPose(
            landmarks=landmarks,
            handedness=raw.handedness if raw.handedness is not None else Handedness.UNKNOWN,
            confidence=float(np.clip(raw.presence, 0.0, 1.0)),
        )

    def extract_all(self, raws: Iterable[RawHandLandmarks]) -> List[HandPose]:
        """Validate a batch of detections, keeping detection order."""
        poses = []
        for raw in raws:
            pose = self.extract(raw)
            if pose is not None:
                poses.append(pose)
        return poses
