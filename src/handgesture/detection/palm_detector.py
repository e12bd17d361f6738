"""
Palm Detection
===============

Single-shot palm detector that runs ahead of the landmark model. It finds
palms in the whole letterboxed frame so the landmark model can be given a
palm-centred, upright crop, which is the input it was trained on.

Model boundary (checked once at load with a blank-input inference):
    input   (1, S, S, 3) for NHWC or (1, 3, S, S) for NCHW, float32
    output  boxes:  (1, A, F) per anchor: cx, cy, w, h offsets then
                    7 palm keypoint (x, y) offsets, F >= 18
            scores: (1, A, 1) raw logits
where A is the number of SSD anchors for the input size (2016 at 192).
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..core.errors import InferenceError, ModelContractError
from ..utils.config import PalmConfig
from ..utils.logger import log_timing
from .backends import InferenceBackend, OpenCVDnnBackend, run_backend
from .model_assets import ensure_model_available
from .transforms import LetterboxInfo, letterbox, to_tensor

logger = logging.getLogger(__name__)

NUM_PALM_KEYPOINTS = 7
_BOX_FEATURES = 4 + NUM_PALM_KEYPOINTS * 2

# SSD feature map strides; consecutive layers with the same stride share a grid
ANCHOR_STRIDES = (8, 16, 16, 16)
ANCHORS_PER_LAYER = 2


@dataclass(frozen=True, eq=False)
class PalmRegion:
    """One detected palm in frame pixels.

    Attributes:
        bbox: (x1, y1, x2, y2) clamped to the frame
        keypoints: (7, 2) palm keypoints, wrist first
        score: detection confidence in [0, 1]
    """
    bbox: Tuple[float, float, float, float]
    keypoints: np.ndarray
    score: float

    @property
    def width(self) -> float:
        return self.bbox[2] - self.bbox[0]

    @property
    def height(self) -> float:
        return self.bbox[3] - self.bbox[1]


def generate_anchors(input_size: int, strides: Sequence[int] = ANCHOR_STRIDES,
                     per_layer: int = ANCHORS_PER_LAYER) -> np.ndarray:
    """Anchor centres, normalized to [0, 1], in model output order.

    Returns:
        (A, 2) array of (x, y)
    """
    blocks = []
    layer = 0
    while layer < len(strides):
        stride = strides[layer]
        count = 0
        while layer < len(strides) and strides[layer] == stride:
            count += per_layer
            layer += 1
        grid = int(math.ceil(input_size / float(stride)))
        ys, xs = np.meshgrid(np.arange(grid), np.arange(grid), indexing="ij")
        centers = np.stack([(xs.ravel() + 0.5) / grid, (ys.ravel() + 0.5) / grid], axis=1)
        blocks.append(np.repeat(centers, count, axis=0))
    return np.concatenate(blocks).astype(np.float32)


def crop_from_palm(region: PalmRegion, crop_scale: float = 2.4,
                   min_size: float = 80.0) -> Tuple[Tuple[float, float], float, float]:
    """Square crop around a palm, generous enough to keep the fingers.

    Returns:
        (center, side, angle) with the centre in frame pixels, the side
        length in frame pixels and the rotation in radians that turns
        the palm's principal axis upright
    """
    points = np.asarray(region.keypoints, dtype=np.float64)
    if len(points):
        cx, cy = points.mean(axis=0)
        span = float(np.ptp(points, axis=0).max())
    else:
        x1, y1, x2, y2 = region.bbox
        cx, cy = (x1 + x2) / 2.0, (y1 + y2) / 2.0
        span = 0.0

    side = max(abs(region.width), abs(region.height), span, min_size) * crop_scale
    return (float(cx), float(cy)), side, palm_orientation(points)


def palm_orientation(points: np.ndarray) -> float:
    """Deviation of the keypoints' principal axis from vertical, in radians."""
    if len(points) < 2:
        return 0.0
    centered = points - points.mean(axis=0)
    cov_xx, cov_yy = np.mean(centered ** 2, axis=0)
    cov_xy = float(np.mean(centered[:, 0] * centered[:, 1]))

    half_trace = (cov_xx + cov_yy) / 2.0
    det = cov_xx * cov_yy - cov_xy * cov_xy
    major = max(half_trace + math.sqrt(max(half_trace ** 2 - det, 0.0)), 1e-6)
    if abs(cov_xy) > 1e-6:
        vx, vy = major - cov_yy, cov_xy
    elif cov_xx >= cov_yy:
        vx, vy = 1.0, 0.0
    else:
        vx, vy = 0.0, 1.0
    return math.atan2(vy, vx) - math.pi / 2.0


class PalmDetector:
    """
    Anchor-based palm detector.

    Example:
        >>> detector = PalmDetector.from_config(PalmConfig(model_path="palm.onnx"))
        >>> regions = detector.detect(rgb)     # highest score first
    """

    def __init__(self, backend: InferenceBackend, config: Optional[PalmConfig] = None):
        """Wrap a backend and verify its tensors match the anchor layout.

        Raises:
            ModelContractError: If the load check inference fails or the
                outputs do not match the anchor count
        """
        self.config = config or PalmConfig()
        self._backend = backend
        self._anchors = generate_anchors(self.config.input_size)
        self._validate_contract()
        logger.info("Palm detector ready (backend=%s, input=%dx%d, anchors=%d)",
                    backend.name, self.config.input_size, self.config.input_size,
                    len(self._anchors))

    @classmethod
    @log_timing
    def from_config(cls, config: PalmConfig) -> "PalmDetector":
        """Load the configured palm model with the OpenCV DNN backend.

        Raises:
            ModelLoadError: If the model cannot be fetched or loaded
        """
        if config.auto_download:
            ensure_model_available(config.model_path, config.model_url)
        return cls(OpenCVDnnBackend(config.model_path, kind="palm detector"), config)

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        size = self.config.input_size
        if self.config.layout == "NCHW":
            return (1, 3, size, size)
        return (1, size, size, 3)

    @property
    def num_anchors(self) -> int:
        return len(self._anchors)

    def detect(self, rgb: np.ndarray) -> List[PalmRegion]:
        """Detect palms in an RGB image.

        Returns:
            Regions after non-maximum suppression, highest score first

        Raises:
            InferenceError: If the backend fails
            ModelContractError: If the outputs are malformed
        """
        canvas, info = letterbox(rgb, self.config.input_size)
        tensor = to_tensor(canvas, self.config.value_range, self.config.layout)
        return self.decode(run_backend(self._backend, tensor), info)

    def decode(self, outputs: Sequence[np.ndarray], info: LetterboxInfo) -> List[PalmRegion]:
        """Turn raw box and score tensors into palm regions in frame pixels."""
        cfg = self.config
        boxes, logits = self._split_outputs(outputs)

        scores = 1.0 / (1.0 + np.exp(-np.clip(logits.astype(np.float64), -80.0, 80.0)))
        keep = np.flatnonzero(scores >= cfg.score_threshold)
        if keep.size == 0:
            return []

        size = float(cfg.input_size)
        raw = boxes[keep].astype(np.float64)
        anchors = self._anchors[keep].astype(np.float64)

        centers = raw[:, 0:2] / size + anchors
        half = raw[:, 2:4] / size / 2.0
        top_left = info.to_frame((centers - half) * size)
        bottom_right = info.to_frame((centers + half) * size)

        keypoints = raw[:, 4:_BOX_FEATURES].reshape(-1, NUM_PALM_KEYPOINTS, 2) / size
        keypoints = keypoints + anchors[:, np.newaxis, :]

        max_x = max(info.frame_width - 1, 0)
        max_y = max(info.frame_height - 1, 0)
        candidates = []
        for i in range(len(keep)):
            x1, y1 = top_left[i]
            x2, y2 = bottom_right[i]
            if x2 <= x1 or y2 <= y1:
                continue
            bbox = (float(np.clip(x1, 0, max_x)), float(np.clip(y1, 0, max_y)),
                    float(np.clip(x2, 0, max_x)), float(np.clip(y2, 0, max_y)))
            points = info.to_frame(keypoints[i] * size)
            candidates.append(PalmRegion(bbox, points, float(scores[keep[i]])))

        regions = self._suppress(candidates)
        logger.debug("Palm detector: %d above threshold, %d after NMS",
                     len(candidates), len(regions))
        return regions

    def close(self) -> None:
        self._backend.close()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _suppress(self, candidates: List[PalmRegion]) -> List[PalmRegion]:
        if not candidates:
            return []
        rects = [[c.bbox[0], c.bbox[1], c.width, c.height] for c in candidates]
        scores = [c.score for c in candidates]
        indices = cv2.dnn.NMSBoxes(rects, scores, self.config.score_threshold,
                                   self.config.nms_threshold, top_k=self.config.top_k)
        kept = [candidates[int(i)] for i in np.asarray(indices).reshape(-1)]
        return sorted(kept, key=lambda c: c.score, reverse=True)

    def _split_outputs(self, outputs: Sequence[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
        cfg = self.config
        needed = max(cfg.box_output, cfg.score_output) + 1
        if len(outputs) < needed:
            raise ModelContractError("Palm detector returned %d outputs, expected at least %d"
                                     % (len(outputs), needed))

        boxes = np.asarray(outputs[cfg.box_output], dtype=np.float32)
        scores = np.asarray(outputs[cfg.score_output], dtype=np.float32).ravel()
        features = boxes.shape[-1] if boxes.ndim else 0
        if boxes.ndim < 2 or features < _BOX_FEATURES:
            raise ModelContractError("Palm box output has shape %s, expected (1, %d, >=%d)"
                                     % (boxes.shape, self.num_anchors, _BOX_FEATURES))
        boxes = boxes.reshape(-1, features)
        if len(boxes) != self.num_anchors or scores.size != self.num_anchors:
            raise ModelContractError(
                "Palm detector returned %d boxes and %d scores, expected %d anchors for input %d"
                % (len(boxes), scores.size, self.num_anchors, cfg.input_size))
        return boxes, scores

    def _validate_contract(self) -> None:
        blank = np.zeros(self.input_shape, dtype=np.float32)
        try:
            outputs = run_backend(self._backend, blank)
        except InferenceError as e:
            raise ModelContractError(
                "Palm load check inference with input shape %s failed: %s" % (self.input_shape, e)) from e
        self._split_outputs(outputs)
