"""
Image-to-tensor transforms and their inverses.

Every transform that prepares a model input also knows how to map model
pixel coordinates back into frame pixels through ``to_frame``.
"""

import math
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np


@dataclass(frozen=True)
class LetterboxInfo:
    """Mapping between frame pixels and model input pixels."""
    scale: float
    pad_x: int
    pad_y: int
    frame_width: int
    frame_height: int

    def to_frame(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 2) or (N, 3) model-input pixels into frame pixels."""
        out = np.array(points, dtype=np.float64)
        out[:, 0] = (out[:, 0] - self.pad_x) / self.scale
        out[:, 1] = (out[:, 1] - self.pad_y) / self.scale
        if out.shape[1] > 2:
            out[:, 2] = out[:, 2] / self.scale
        return out


@dataclass(frozen=True, eq=False)
class CropTransform:
    """Rotated square crop of a frame.

    Attributes:
        matrix: 2x3 affine matrix taking frame pixels to crop pixels
        scale: crop pixels per frame pixel
    """
    matrix: np.ndarray
    scale: float

    def to_frame(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 2) or (N, 3) crop pixels into frame pixels."""
        out = np.array(points, dtype=np.float64)
        inverse = cv2.invertAffineTransform(self.matrix)
        xy1 = np.column_stack([out[:, :2], np.ones(len(out))])
        out[:, :2] = xy1 @ inverse.T
        if out.shape[1] > 2:
            out[:, 2] = out[:, 2] / self.scale
        return out

    def to_crop(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 2) frame pixels into crop pixels."""
        pts = np.asarray(points, dtype=np.float64)
        xy1 = np.column_stack([pts[:, :2], np.ones(len(pts))])
        return xy1 @ self.matrix.T


def letterbox(rgb: np.ndarray, size: int) -> Tuple[np.ndarray, LetterboxInfo]:
    """Fit an image into a black square canvas, keeping its aspect ratio.

    The longer side is scaled to ``size`` and the image is centered.
    Deterministic for identical input bytes.
    """
    height, width = rgb.shape[:2]
    scale = size / float(max(width, height))
    new_w = min(size, max(1, int(round(width * scale))))
    new_h = min(size, max(1, int(round(height * scale))))
    resized = cv2.resize(rgb, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    pad_x = (size - new_w) // 2
    pad_y = (size - new_h) // 2
    canvas = cv2.copyMakeBorder(
        resized,
        pad_y, size - new_h - pad_y,
        pad_x, size - new_w - pad_x,
        cv2.BORDER_CONSTANT, value=(0, 0, 0),
    )
    info = LetterboxInfo(scale=scale, pad_x=pad_x, pad_y=pad_y,
                         frame_width=width, frame_height=height)
    return canvas, info


def rotated_crop(rgb: np.ndarray, center: Tuple[float, float], side: float,
                 angle: float, size: int) -> Tuple[np.ndarray, CropTransform]:
    """Cut a ``side`` x ``side`` square around ``center``, rotated by
    ``angle`` radians, and resample it to ``size`` x ``size``.

    Positive angles rotate the image content counter-clockwise. Areas
    outside the frame are black.
    """
    scale = size / float(side)
    cx, cy = float(center[0]), float(center[1])
    matrix = cv2.getRotationMatrix2D((cx, cy), math.degrees(angle), scale)
    matrix[0, 2] += size / 2.0 - cx
    matrix[1, 2] += size / 2.0 - cy
    crop = cv2.warpAffine(rgb, matrix, (size, size), flags=cv2.INTER_LINEAR,
                          borderMode=cv2.BORDER_CONSTANT, borderValue=(0, 0, 0))
    return crop, CropTransform(matrix=matrix, scale=scale)


def to_tensor(image: np.ndarray, value_range: Tuple[float, float], layout: str) -> np.ndarray:
    """Scale uint8 pixels into ``value_range`` and add a batch axis."""
    low, high = value_range
    tensor = image.astype(np.float32) * ((high - low) / 255.0) + low
    if layout == "NCHW":
        tensor = tensor.transpose(2, 0, 1)
    return np.ascontiguousarray(tensor[np.newaxis, ...], dtype=np.float32)
