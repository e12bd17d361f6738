"""
Tests for Hand Pose Extraction
===============================
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from handgesture.core.types import Handedness
from handgesture.detection.hand_pose_extractor import HandPoseExtractor
from handgesture.detection.landmarks import LandmarkIndex, RawHandLandmarks
from handgesture.utils.config import ExtractorConfig, MIN_LANDMARK_CONFIDENCE

from synthetic_hands import make_raw


@pytest.fixture
def extractor():
    return HandPoseExtractor()


class TestHandPoseExtractor:
    """Validation of raw detections into complete poses."""

    def test_valid_hand(self, extractor):
        raw = make_raw("fist", presence=0.9, handedness=Handedness.LEFT)
        pose = extractor.extract(raw)

        assert pose is not None
        assert len(pose.landmarks) == 21
        assert pose.handedness is Handedness.LEFT
        assert pose.confidence == pytest.approx(0.9)
        assert pose.get(LandmarkIndex.WRIST).x == pytest.approx(raw.points[0, 0])

    def test_missing_handedness_is_unknown(self, extractor):
        pose = extractor.extract(make_raw(handedness=None))
        assert pose.handedness is Handedness.UNKNOWN

    def test_wrong_landmark_count(self, extractor):
        raw = make_raw()
        short = RawHandLandmarks(points=raw.points[:20], presence=0.9)
        assert extractor.extract(short) is None

    def test_non_finite_coordinates(self, extractor):
        points = make_raw().points.copy()
        points[7, 1] = np.nan
        assert extractor.extract(RawHandLandmarks(points=points, presence=0.9)) is None

        points[7, 1] = np.inf
        assert extractor.extract(RawHandLandmarks(points=points, presence=0.9)) is None

    def test_single_low_confidence_landmark_rejects_pose(self, extractor):
        points = make_raw().points.copy()
        points[LandmarkIndex.PINKY_TIP, 3] = MIN_LANDMARK_CONFIDENCE - 0.01
        assert extractor.extract(RawHandLandmarks(points=points, presence=0.9)) is None

    def test_threshold_is_inclusive(self, extractor):
        raw = make_raw(landmark_confidence=MIN_LANDMARK_CONFIDENCE)
        assert extractor.extract(raw) is not None

    def test_threshold_from_config(self):
        extractor = HandPoseExtractor(ExtractorConfig(min_landmark_confidence=0.95))
        assert extractor.extract(make_raw(landmark_confidence=0.9)) is None

    def test_confidence_bounded(self, extractor):
        assert extractor.extract(make_raw(presence=1.4)).confidence == 1.0

    def test_extract_all_keeps_order(self, extractor):
        good_left = make_raw(handedness=Handedness.LEFT)
        bad = make_raw(landmark_confidence=0.1)
        good_right = make_raw(handedness=Handedness.RIGHT)

        poses = extractor.extract_all([good_left, bad, good_right])

        assert [p.handedness for p in poses] == [Handedness.LEFT, Handedness.RIGHT]

    def test_deterministic(self, extractor):
        raw = make_raw("victory")
        assert extractor.extract(raw) == extractor.extract(raw)


class TestHandPose:
    """HandPose helper methods."""

    @pytest.fixture
    def pose(self, extractor):
        return extractor.extract(make_raw("open_hand"))

    def test_to_numpy(self, pose):
        arr = pose.to_numpy()
        assert arr.shape == (21, 3)

    def test_palm_center(self, pose):
        palm_x, palm_y = pose.palm_center
        # Between the wrist and the finger bases
        assert 0.44 * 640 < palm_x < 0.61 * 640
        assert 0.59 * 640 < palm_y < 0.8 * 640

    def test_bounding_box(self, pose):
        x, y, w, h = pose.bounding_box
        assert w > 0
        assert h > 0
        assert x >= 0
        assert y >= 0

    def test_min_landmark_confidence(self, pose):
        assert pose.min_landmark_confidence == pytest.approx(0.9)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
