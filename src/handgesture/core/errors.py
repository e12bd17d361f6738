"""
Exception hierarchy for the gesture pipeline.

Only startup failures (configuration, model loading) propagate to the
caller. Per-frame problems are reported with FrameError or InferenceError
internally and degrade to "no detection".
"""


class HandGestureError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(HandGestureError, ValueError):
    """Invalid configuration value."""


class ModelLoadError(HandGestureError):
    """The landmark model could not be loaded or initialized."""


class ModelContractError(ModelLoadError):
    """A loaded model's tensors do not match the expected I/O contract."""


class FrameError(HandGestureError):
    """A single frame could not be prepared for inference."""


class InferenceError(HandGestureError):
    """An inference backend failed on a single frame."""
