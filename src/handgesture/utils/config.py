"""
Pipeline configuration.

Typed dataclass sections with documented defaults, loadable from a YAML
file. Missing keys fall back to defaults so partial files are valid.
"""

import os
import logging
from dataclasses import dataclass, field, asdict
from typing import Optional, Tuple

import yaml

from ..core.errors import ConfigError

logger = logging.getLogger(__name__)

# Minimum per-landmark confidence for a detection to become a HandPose.
# Raising it trades recall for stability.
MIN_LANDMARK_CONFIDENCE = 0.5

# Number of joints in one hand skeleton, fixed by the model topology.
NUM_HAND_LANDMARKS = 21

DEFAULT_MODEL_FILENAME = "handpose_estimation_mediapipe_2023feb.onnx"
DEFAULT_MODEL_URL = (
    "https://raw.githubusercontent.com/214zzl995/gesture-universe/refs/heads/main/"
    "models/handpose_estimation_mediapipe_2023feb.onnx"
)

DEFAULT_PALM_MODEL_FILENAME = "palm_detection_mediapipe_2023feb.onnx"
DEFAULT_PALM_MODEL_URL = (
    "https://raw.githubusercontent.com/214zzl995/gesture-universe/refs/heads/main/"
    "models/palm_detection_mediapipe_2023feb.onnx"
)

_LAYOUTS = ("NHWC", "NCHW")
_COORDINATE_UNITS = ("pixels", "normalized")


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base dict."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class ModelConfig:
    """Landmark model I/O contract and loading options."""
    model_path: str = os.path.join("models", DEFAULT_MODEL_FILENAME)
    model_url: str = DEFAULT_MODEL_URL
    auto_download: bool = False
    input_size: int = 224
    layout: str = "NHWC"
    value_range: Tuple[float, float] = (0.0, 1.0)
    coordinate_units: str = "pixels"    # unit of model output coordinates
    landmark_dims: int = 3              # 3 = x,y,z   4 = x,y,z,confidence
    max_hands: int = 1
    landmark_output: int = 0
    presence_output: Optional[int] = 1
    handedness_output: Optional[int] = 2
    min_hand_presence: float = 0.2

    def __post_init__(self):
        self.value_range = tuple(float(v) for v in self.value_range)
        if self.input_size <= 0:
            raise ConfigError("model.input_size must be positive, got %r" % self.input_size)
        if self.layout not in _LAYOUTS:
            raise ConfigError("model.layout must be one of %s, got %r" % (_LAYOUTS, self.layout))
        if self.coordinate_units not in _COORDINATE_UNITS:
            raise ConfigError("model.coordinate_units must be one of %s, got %r"
                              % (_COORDINATE_UNITS, self.coordinate_units))
        if self.landmark_dims not in (3, 4):
            raise ConfigError("model.landmark_dims must be 3 or 4, got %r" % self.landmark_dims)
        if self.max_hands < 1:
            raise ConfigError("model.max_hands must be >= 1, got %r" % self.max_hands)
        if len(self.value_range) != 2 or self.value_range[0] >= self.value_range[1]:
            raise ConfigError("model.value_range must be (low, high), got %r" % (self.value_range,))
        if self.landmark_dims == 3 and self.presence_output is None:
            raise ConfigError(
                "model.presence_output is required when landmark_dims is 3: "
                "it supplies the per-landmark confidence")

    @classmethod
    def from_dict(cls, d: dict) -> "ModelConfig":
        """Create config from dictionary."""
        default = cls()
        return cls(
            model_path=d.get("model_path", default.model_path),
            model_url=d.get("model_url", default.model_url),
            auto_download=d.get("auto_download", default.auto_download),
            input_size=d.get("input_size", default.input_size),
            layout=d.get("layout", default.layout),
            value_range=tuple(d.get("value_range", default.value_range)),
            coordinate_units=d.get("coordinate_units", default.coordinate_units),
            landmark_dims=d.get("landmark_dims", default.landmark_dims),
            max_hands=d.get("max_hands", default.max_hands),
            landmark_output=d.get("landmark_output", default.landmark_output),
            presence_output=d.get("presence_output", default.presence_output),
            handedness_output=d.get("handedness_output", default.handedness_output),
            min_hand_presence=d.get("min_hand_presence", default.min_hand_presence),
        )


@dataclass
class PalmConfig:
    """Palm detector settings.

    When enabled, the landmark model sees a rotated crop around each
    detected palm instead of the whole letterboxed frame.
    """
    enabled: bool = True
    model_path: str = os.path.join("models", DEFAULT_PALM_MODEL_FILENAME)
    model_url: str = DEFAULT_PALM_MODEL_URL
    auto_download: bool = False
    input_size: int = 192
    layout: str = "NHWC"
    value_range: Tuple[float, float] = (0.0, 1.0)
    box_output: int = 0
    score_output: int = 1
    score_threshold: float = 0.5
    nms_threshold: float = 0.3
    top_k: int = 32
    max_hands: int = 1                  # palms cropped and passed on per frame
    crop_scale: float = 2.4             # crop side / palm size
    min_crop_size: float = 80.0         # frame pixels, before crop_scale

    def __post_init__(self):
        self.value_range = tuple(float(v) for v in self.value_range)
        if self.input_size <= 0:
            raise ConfigError("palm.input_size must be positive, got %r" % self.input_size)
        if self.layout not in _LAYOUTS:
            raise ConfigError("palm.layout must be one of %s, got %r" % (_LAYOUTS, self.layout))
        if len(self.value_range) != 2 or self.value_range[0] >= self.value_range[1]:
            raise ConfigError("palm.value_range must be (low, high), got %r" % (self.value_range,))
        for name in ("score_threshold", "nms_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError("palm.%s must be in [0, 1], got %r" % (name, value))
        if self.top_k < 1 or self.max_hands < 1:
            raise ConfigError("palm.top_k and palm.max_hands must be >= 1")
        if self.crop_scale <= 0 or self.min_crop_size <= 0:
            raise ConfigError("palm.crop_scale and palm.min_crop_size must be positive")

    @classmethod
    def from_dict(cls, d: dict) -> "PalmConfig":
        """Create config from dictionary, ignoring unknown keys."""
        known = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        unknown = set(d) - set(known)
        if unknown:
            logger.warning("Ignoring unknown palm settings: %s", sorted(unknown))
        if "value_range" in known:
            known["value_range"] = tuple(known["value_range"])
        return cls(**known)


@dataclass
class ExtractorConfig:
    """Hand pose validation settings."""
    num_landmarks: int = NUM_HAND_LANDMARKS
    min_landmark_confidence: float = MIN_LANDMARK_CONFIDENCE

    def __post_init__(self):
        if self.num_landmarks != NUM_HAND_LANDMARKS:
            raise ConfigError("extractor.num_landmarks is fixed by the model topology at %d, got %r"
                              % (NUM_HAND_LANDMARKS, self.num_landmarks))
        if not 0.0 <= self.min_landmark_confidence <= 1.0:
            raise ConfigError("extractor.min_landmark_confidence must be in [0, 1], got %r"
                              % self.min_landmark_confidence)

    @classmethod
    def from_dict(cls, d: dict) -> "ExtractorConfig":
        """Create config from dictionary."""
        return cls(
            num_landmarks=d.get("num_landmarks", NUM_HAND_LANDMARKS),
            min_landmark_confidence=d.get("min_landmark_confidence", MIN_LANDMARK_CONFIDENCE),
        )


@dataclass
class GestureThresholds:
    """Geometric thresholds for the gesture rules.

    Angles are in degrees. Ratios are distances divided by palm width,
    so they do not depend on how far the hand is from the camera.
    """
    extend_angle: float = 160.0         # PIP angle above this = straight finger
    curl_angle: float = 120.0           # PIP angle below this = curled finger
    extend_ratio: float = 1.6           # tip-to-wrist above this = extended
    curl_ratio: float = 1.3             # tip-to-wrist below this = curled
    thumb_extend_angle: float = 150.0
    thumb_reach_ratio: float = 1.2      # thumb tip to pinky MCP
    thumb_up_ratio: float = 0.5         # thumb tip rise above thumb MCP
    touch_ratio: float = 0.35           # thumb tip to index tip
    victory_spread_ratio: float = 0.3   # index tip to middle tip
    margin_saturation: float = 0.25     # margin giving full rule confidence

    def __post_init__(self):
        if self.extend_angle <= self.curl_angle:
            raise ConfigError("gestures.extend_angle (%r) must exceed curl_angle (%r)"
                              % (self.extend_angle, self.curl_angle))
        if self.extend_ratio <= self.curl_ratio:
            raise ConfigError("gestures.extend_ratio (%r) must exceed curl_ratio (%r)"
                              % (self.extend_ratio, self.curl_ratio))
        for name, value in asdict(self).items():
            if value <= 0:
                raise ConfigError("gestures.%s must be positive, got %r" % (name, value))

    @classmethod
    def from_dict(cls, d: dict) -> "GestureThresholds":
        """Create thresholds from dictionary, ignoring unknown keys."""
        known = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        unknown = set(d) - set(known)
        if unknown:
            logger.warning("Ignoring unknown gesture thresholds: %s", sorted(unknown))
        return cls(**known)


@dataclass
class StabilizerConfig:
    """Temporal debouncing settings."""
    debounce_frames: int = 3
    idle_timeout_s: float = 0.5
    history_size: int = 8
    max_slots: int = 2
    min_sample_confidence: float = 0.0

    def __post_init__(self):
        if self.debounce_frames < 1:
            raise ConfigError("stabilizer.debounce_frames must be >= 1, got %r" % self.debounce_frames)
        if self.idle_timeout_s < 0:
            raise ConfigError("stabilizer.idle_timeout_s must be >= 0, got %r" % self.idle_timeout_s)
        if self.history_size < self.debounce_frames:
            raise ConfigError("stabilizer.history_size (%r) must be >= debounce_frames (%r)"
                              % (self.history_size, self.debounce_frames))
        if self.max_slots < 1:
            raise ConfigError("stabilizer.max_slots must be >= 1, got %r" % self.max_slots)

    @classmethod
    def from_dict(cls, d: dict) -> "StabilizerConfig":
        """Create config from dictionary."""
        return cls(
            debounce_frames=d.get("debounce_frames", 3),
            idle_timeout_s=d.get("idle_timeout_s", 0.5),
            history_size=d.get("history_size", 8),
            max_slots=d.get("max_slots", 2),
            min_sample_confidence=d.get("min_sample_confidence", 0.0),
        )


@dataclass
class LoggingConfig:
    """Logging output settings."""
    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 10
    backup_count: int = 3

    @classmethod
    def from_dict(cls, d: dict) -> "LoggingConfig":
        return cls(
            level=d.get("level", "INFO"),
            file=d.get("file"),
            max_size_mb=d.get("max_size_mb", 10),
            backup_count=d.get("backup_count", 3),
        )


@dataclass
class PipelineConfig:
    """Top-level configuration for the whole pipeline."""
    queue_depth: int = 1
    model: ModelConfig = field(default_factory=ModelConfig)
    palm: PalmConfig = field(default_factory=PalmConfig)
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    gestures: GestureThresholds = field(default_factory=GestureThresholds)
    stabilizer: StabilizerConfig = field(default_factory=StabilizerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        if self.queue_depth < 1:
            raise ConfigError("queue_depth must be >= 1, got %r" % self.queue_depth)
        if self.palm.enabled and self.model.max_hands != 1:
            raise ConfigError("model.max_hands must be 1 when palm detection is enabled "
                              "(one crop per hand), got %r" % self.model.max_hands)

    @property
    def hands_per_frame(self) -> int:
        """Most hands the model stage can report for one frame."""
        return self.palm.max_hands if self.palm.enabled else self.model.max_hands

    @classmethod
    def from_dict(cls, d: dict) -> "PipelineConfig":
        """Create config from a (YAML parsed) dictionary."""
        d = d or {}
        return cls(
            queue_depth=d.get("queue_depth", 1),
            model=ModelConfig.from_dict(d.get("model") or {}),
            palm=PalmConfig.from_dict(d.get("palm") or {}),
            extractor=ExtractorConfig.from_dict(d.get("extractor") or {}),
            gestures=GestureThresholds.from_dict(d.get("gestures") or {}),
            stabilizer=StabilizerConfig.from_dict(d.get("stabilizer") or {}),
            logging=LoggingConfig.from_dict(d.get("logging") or {}),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["model"]["value_range"] = list(self.model.value_range)
        data["palm"]["value_range"] = list(self.palm.value_range)
        return data

    def merged(self, overrides: dict) -> "PipelineConfig":
        """Return a new config with nested overrides applied."""
        return PipelineConfig.from_dict(_deep_merge(self.to_dict(), overrides))


def load_config(config_path: Optional[str] = None) -> PipelineConfig:
    """Load pipeline configuration from a YAML file.

    A missing file yields the defaults. Malformed YAML or invalid values
    raise ConfigError.
    """
    if config_path is None:
        return PipelineConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded config from %s", config_path)
    except FileNotFoundError:
        logger.warning("Config file not found: %s, using defaults", config_path)
        return PipelineConfig()
    except yaml.YAMLError as e:
        raise ConfigError("Malformed YAML in %s: %s" % (config_path, e)) from e

    if not isinstance(data, dict):
        raise ConfigError("Config root in %s should be a mapping, got %s"
                          % (config_path, type(data).__name__))

    try:
        return PipelineConfig.from_dict(data)
    except TypeError as e:
        raise ConfigError("Invalid config in %s: %s" % (config_path, e)) from e
