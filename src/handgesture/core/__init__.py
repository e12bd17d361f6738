"""Shared types, errors and the event bus.

The pipeline driver lives in ``handgesture.core.pipeline`` and is not
imported here, since it depends on every other subpackage.
"""
from .errors import (
    HandGestureError,
    ConfigError,
    ModelLoadError,
    ModelContractError,
    FrameError,
    InferenceError,
)
from .types import GestureLabel, Handedness, ClassificationSample, GestureEvent
from .events import EventBus, Events

__all__ = [
    "HandGestureError",
    "ConfigError",
    "ModelLoadError",
    "ModelContractError",
    "FrameError",
    "InferenceError",
    "GestureLabel",
    "Handedness",
    "ClassificationSample",
    "GestureEvent",
    "EventBus",
    "Events",
]
