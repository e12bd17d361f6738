"""Palm detection, hand landmark inference, pose validation and tracking."""
from .landmarks import LandmarkIndex, Landmark, RawHandLandmarks, HandPose, FINGER_JOINTS
from .backends import InferenceBackend, OpenCVDnnBackend
from .transforms import LetterboxInfo, CropTransform
from .palm_detector import PalmDetector, PalmRegion
from .landmark_model import LandmarkModel
from .hand_pose_extractor import HandPoseExtractor
from .tracking import HandTracker
from .model_assets import ensure_model_available

__all__ = [
    "LandmarkIndex",
    "Landmark",
    "RawHandLandmarks",
    "HandPose",
    "FINGER_JOINTS",
    "InferenceBackend",
    "OpenCVDnnBackend",
    "LetterboxInfo",
    "CropTransform",
    "PalmDetector",
    "PalmRegion",
    "LandmarkModel",
    "HandPoseExtractor",
    "HandTracker",
    "ensure_model_available",
]
