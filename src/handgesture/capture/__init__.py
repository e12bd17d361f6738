"""Frame container and frame queue."""
from .frame import Frame, PixelFormat
from .frame_queue import FrameQueue

__all__ = ["Frame", "PixelFormat", "FrameQueue"]
