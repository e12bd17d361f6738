"""
Frame container handed to the pipeline by the camera collaborator.
"""

import time
from dataclasses import dataclass, field
from enum import Enum

import cv2
import numpy as np

from ..core.errors import FrameError


class PixelFormat(Enum):
    """Channel layout of a frame buffer."""
    RGB = "rgb"
    BGR = "bgr"
    RGBA = "rgba"
    BGRA = "bgra"
    GRAY = "gray"

    @property
    def channels(self) -> int:
        return {"rgb": 3, "bgr": 3, "rgba": 4, "bgra": 4, "gray": 1}[self.value]


_TO_RGB = {
    PixelFormat.BGR: cv2.COLOR_BGR2RGB,
    PixelFormat.RGBA: cv2.COLOR_RGBA2RGB,
    PixelFormat.BGRA: cv2.COLOR_BGRA2RGB,
    PixelFormat.GRAY: cv2.COLOR_GRAY2RGB,
}


@dataclass(frozen=True, eq=False)
class Frame:
    """Immutable image buffer with a monotonic capture timestamp (seconds).

    The buffer is marked read-only on construction; the pipeline only
    borrows it for one inference call.
    """
    image: np.ndarray
    pixel_format: PixelFormat = PixelFormat.BGR
    timestamp: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        if isinstance(self.image, np.ndarray) and self.image.flags.writeable:
            # Freeze a view so the caller's array stays writable
            frozen = self.image.view()
            frozen.flags.writeable = False
            object.__setattr__(self, "image", frozen)

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    def validate(self) -> None:
        """Raise FrameError if the buffer does not match its declared format."""
        image = self.image
        if not isinstance(image, np.ndarray):
            raise FrameError("frame image must be a numpy array, got %s" % type(image).__name__)
        if image.dtype != np.uint8:
            raise FrameError("frame image must be uint8, got %s" % image.dtype)
        if image.ndim not in (2, 3) or image.shape[0] == 0 or image.shape[1] == 0:
            raise FrameError("frame image has invalid shape %s" % (image.shape,))
        channels = 1 if image.ndim == 2 else image.shape[2]
        if channels != self.pixel_format.channels:
            raise FrameError("frame has %d channels but format %s needs %d"
                             % (channels, self.pixel_format.value, self.pixel_format.channels))

    def to_rgb(self) -> np.ndarray:
        """Return an RGB copy of the frame buffer."""
        self.validate()
        if self.pixel_format is PixelFormat.RGB:
            return self.image.copy()
        return cv2.cvtColor(self.image, _TO_RGB[self.pixel_format])
