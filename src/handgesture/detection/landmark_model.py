"""
Landmark Model Inference
=========================

Wraps a fixed-topology hand-pose network behind a narrow backend
interface. The model sees a square RGB tensor and returns, per hand,
21 joints plus optional presence and handedness scores.

Two ways of building that square input:
    - with a PalmDetector: one rotated, palm-centred crop per detected
      palm (the model is then run once per palm)
    - without one: the whole frame, letterboxed

Model boundary (checked once at load with a blank-input inference):
    input   (1, S, S, 3) for NHWC or (1, 3, S, S) for NCHW, float32
    output  landmarks:  max_hands * 21 * dims values (dims 3 or 4)
            presence:   max_hands values (required when dims is 3)
            handedness: max_hands values (optional)
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from ..capture.frame import Frame
from ..core.errors import FrameError, InferenceError, ModelContractError
from ..core.types import Handedness
from ..utils.config import ModelConfig, NUM_HAND_LANDMARKS, PalmConfig
from ..utils.logger import log_timing
from .backends import InferenceBackend, OpenCVDnnBackend, run_backend
from .landmarks import RawHandLandmarks
from .model_assets import ensure_model_available
from .palm_detector import PalmDetector, PalmRegion, crop_from_palm
from .transforms import CropTransform, LetterboxInfo, letterbox, rotated_crop, to_tensor

logger = logging.getLogger(__name__)

InputTransform = Union[LetterboxInfo, CropTransform]


class LandmarkModel:
    """
    Stateless hand landmark inference.

    Preprocessing crops or letterboxes the frame to the model resolution
    and scales pixel values into the model's range. Postprocessing maps
    model output back into frame pixel space and attaches per-joint
    confidence taken from the model output.

    Example:
        >>> model = LandmarkModel.from_config(ModelConfig(model_path="hand.onnx"))
        >>> hands = model.infer(frame)   # list of RawHandLandmarks
    """

    def __init__(self, backend: InferenceBackend, config: Optional[ModelConfig] = None,
                 palm_detector: Optional[PalmDetector] = None):
        """Wrap a backend and verify its tensors match the contract.

        Raises:
            ModelContractError: If the load check inference fails or output
                sizes differ from the configured contract
        """
        self.config = config or ModelConfig()
        if palm_detector is not None and self.config.max_hands != 1:
            raise ModelContractError("A palm-cropped landmark model must report one hand "
                                     "per crop, got max_hands=%d" % self.config.max_hands)
        self._backend = backend
        self._palm_detector = palm_detector
        self._validate_contract()
        logger.info(
            "Landmark model ready (backend=%s, input=%dx%d %s, max_hands=%d, dims=%d, palm=%s)",
            backend.name, self.config.input_size, self.config.input_size,
            self.config.layout, self.max_hands_per_frame, self.config.landmark_dims,
            "on" if palm_detector is not None else "off",
        )

    @classmethod
    @log_timing
    def from_config(cls, config: ModelConfig,
                    palm_config: Optional[PalmConfig] = None) -> "LandmarkModel":
        """Load the configured model files with the OpenCV DNN backend.

        The palm detector is loaded too when ``palm_config`` enables it.

        Raises:
            ModelLoadError: If a model cannot be fetched or loaded
        """
        palm_detector = None
        if palm_config is not None and palm_config.enabled:
            palm_detector = PalmDetector.from_config(palm_config)
        if config.auto_download:
            ensure_model_available(config.model_path, config.model_url)
        backend = OpenCVDnnBackend(config.model_path)
        return cls(backend, config, palm_detector)

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    @property
    def palm_detector(self) -> Optional[PalmDetector]:
        return self._palm_detector

    @property
    def max_hands_per_frame(self) -> int:
        """Most hands ``infer`` can return for one frame."""
        if self._palm_detector is not None:
            return self._palm_detector.config.max_hands
        return self.config.max_hands

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        size = self.config.input_size
        if self.config.layout == "NCHW":
            return (1, 3, size, size)
        return (1, size, size, 3)

    # =========================================================================
    # Inference
    # =========================================================================

    def infer(self, frame: Frame) -> List[RawHandLandmarks]:
        """Run landmark inference on one frame.

        Per-frame failures are logged and reported as zero detections.
        """
        try:
            if self._palm_detector is None:
                tensor, transform = self.preprocess(frame)
                return self.decode(run_backend(self._backend, tensor), transform)

            rgb = frame.to_rgb()
            regions = self._palm_detector.detect(rgb)
            hands = []
            for region in regions[:self._palm_detector.config.max_hands]:
                tensor, transform = self.preprocess_crop(rgb, region)
                outputs = run_backend(self._backend, tensor)
                hands.extend(self.decode(outputs, transform, region.score))
            return hands
        except (FrameError, InferenceError, ModelContractError, cv2.error, ValueError) as e:
            logger.warning("Landmark inference failed for frame at t=%.3f: %s",
                           getattr(frame, "timestamp", float("nan")), e)
            return []

    def preprocess(self, frame: Frame) -> Tuple[np.ndarray, LetterboxInfo]:
        """Letterbox a whole frame into the model input tensor.

        Deterministic for identical input bytes.
        """
        canvas, info = letterbox(frame.to_rgb(), self.config.input_size)
        return self._to_tensor(canvas), info

    def preprocess_crop(self, rgb: np.ndarray, region: PalmRegion) -> Tuple[np.ndarray, CropTransform]:
        """Cut the rotated, palm-centred crop for one palm."""
        palm = self._palm_detector.config if self._palm_detector is not None else PalmConfig()
        center, side, angle = crop_from_palm(region, palm.crop_scale, palm.min_crop_size)
        crop, transform = rotated_crop(rgb, center, side, angle, self.config.input_size)
        return self._to_tensor(crop), transform

    def decode(self, outputs: Sequence[np.ndarray], transform: InputTransform,
               region_score: float = 1.0) -> List[RawHandLandmarks]:
        """Convert raw output tensors into per-hand landmark sets in frame pixels.

        Args:
            outputs: Backend output tensors
            transform: The transform that produced the model input
            region_score: Palm detection score, folded into presence
        """
        cfg = self.config
        coords = self._output(outputs, cfg.landmark_output, "landmarks")
        expected = cfg.max_hands * NUM_HAND_LANDMARKS * cfg.landmark_dims
        if coords.size != expected:
            raise ModelContractError(
                "landmark output has %d values, expected %d (%d hands x %d joints x %d)"
                % (coords.size, expected, cfg.max_hands, NUM_HAND_LANDMARKS, cfg.landmark_dims))
        coords = coords.reshape(cfg.max_hands, NUM_HAND_LANDMARKS, cfg.landmark_dims)

        presence = self._scores(outputs, cfg.presence_output, "presence")
        handedness = self._scores(outputs, cfg.handedness_output, "handedness")

        hands = []
        for h in range(cfg.max_hands):
            if presence is not None:
                score = float(presence[h])
            else:
                score = float(np.min(coords[h, :, 3]))
            score *= region_score
            if not np.isfinite(score) or score < cfg.min_hand_presence:
                continue

            xyz = coords[h, :, :3].astype(np.float64)
            if cfg.coordinate_units == "normalized":
                xyz = xyz * cfg.input_size
            xyz = transform.to_frame(xyz)

            if cfg.landmark_dims == 4:
                confidence = coords[h, :, 3].astype(np.float64)
            else:
                confidence = np.full(NUM_HAND_LANDMARKS, score, dtype=np.float64)
            points = np.column_stack([xyz, np.clip(confidence, 0.0, 1.0)])

            hands.append(RawHandLandmarks(
                points=points,
                presence=min(1.0, max(0.0, score)),
                handedness=Handedness.from_score(
                    float(handedness[h]) if handedness is not None else None),
            ))

        return hands

    def close(self) -> None:
        self._backend.close()
        if self._palm_detector is not None:
            self._palm_detector.close()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _to_tensor(self, image: np.ndarray) -> np.ndarray:
        return to_tensor(image, self.config.value_range, self.config.layout)

    def _validate_contract(self) -> None:
        """Run the backend on a blank input and check output sizes."""
        cfg = self.config
        blank = np.zeros(self.input_shape, dtype=np.float32)
        try:
            outputs = run_backend(self._backend, blank)
        except InferenceError as e:
            raise ModelContractError(
                "Load check inference with input shape %s failed: %s" % (self.input_shape, e)) from e

        self._output(outputs, cfg.landmark_output, "landmarks", at_load=True)
        for index, label in ((cfg.presence_output, "presence"),
                             (cfg.handedness_output, "handedness")):
            self._scores(outputs, index, label, at_load=True)

        coords = np.asarray(outputs[cfg.landmark_output])
        expected = cfg.max_hands * NUM_HAND_LANDMARKS * cfg.landmark_dims
        if coords.size != expected:
            raise ModelContractError(
                "Model landmark output has shape %s (%d values); contract expects %d values "
                "(%d hands x %d joints x %d)"
                % (coords.shape, coords.size, expected, cfg.max_hands,
                   NUM_HAND_LANDMARKS, cfg.landmark_dims))

    @staticmethod
    def _output(outputs: Sequence[np.ndarray], index: int, label: str,
                at_load: bool = False) -> np.ndarray:
        if index >= len(outputs):
            raise ModelContractError(
                "Model returned %d outputs, %s output index %d is missing%s"
                % (len(outputs), label, index, " at load" if at_load else ""))
        return np.asarray(outputs[index], dtype=np.float32).ravel()

    def _scores(self, outputs: Sequence[np.ndarray], index: Optional[int], label: str,
                at_load: bool = False) -> Optional[np.ndarray]:
        if index is None:
            return None
        scores = self._output(outputs, index, label, at_load)
        if scores.size < self.config.max_hands:
            raise ModelContractError(
                "%s output has %d values, expected at least %d"
                % (label.capitalize(), scores.size, self.config.max_hands))
        return scores
