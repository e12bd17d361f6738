"""Gesture classification and temporal stabilization."""
from .hand_geometry import HandGeometry
from .gesture_classifier import Classification, GestureClassifier, DEFAULT_RULES
from .temporal_stabilizer import StabilizerPhase, StabilizerState, TemporalStabilizer

__all__ = [
    "HandGeometry",
    "Classification",
    "GestureClassifier",
    "DEFAULT_RULES",
    "StabilizerPhase",
    "StabilizerState",
    "TemporalStabilizer",
]
