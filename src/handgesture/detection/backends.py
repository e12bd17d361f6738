"""
Inference runtimes behind a narrow capability interface.

Both the palm detector and the landmark model only ever call
``run(tensor)``, so swapping the runtime touches nothing downstream.
"""

import os
import logging
from abc import ABC, abstractmethod
from typing import List

import cv2
import numpy as np

from ..core.errors import InferenceError, ModelLoadError

logger = logging.getLogger(__name__)


class InferenceBackend(ABC):
    """Capability interface for a concrete inference runtime.

    Implementations are not required to be reentrant; the pipeline calls
    them from a single inference thread.
    """

    name = "backend"

    @abstractmethod
    def run(self, tensor: np.ndarray) -> List[np.ndarray]:
        """Run one forward pass and return the output tensors in order."""

    def close(self) -> None:
        """Release runtime resources."""


class OpenCVDnnBackend(InferenceBackend):
    """Runs ONNX/TensorFlow models with OpenCV's DNN module."""

    name = "opencv-dnn"

    def __init__(self, model_path: str, kind: str = "landmark model"):
        if not os.path.isfile(model_path):
            raise ModelLoadError("%s not found: %s" % (kind.capitalize(), model_path))
        try:
            self._net = cv2.dnn.readNet(model_path)
        except cv2.error as e:
            raise ModelLoadError("Failed to load %s %s: %s" % (kind, model_path, e)) from e
        if self._net.empty():
            raise ModelLoadError("%s %s loaded as an empty network" % (kind.capitalize(), model_path))
        self._net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
        self._net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)
        self._output_names = list(self._net.getUnconnectedOutLayersNames())
        self.model_path = model_path
        logger.debug("OpenCV DNN outputs for %s: %s", kind, self._output_names)

    def run(self, tensor: np.ndarray) -> List[np.ndarray]:
        self._net.setInput(tensor)
        outputs = self._net.forward(self._output_names)
        return [np.asarray(out) for out in outputs]

    def close(self) -> None:
        self._net = None


def run_backend(backend: InferenceBackend, tensor: np.ndarray) -> List[np.ndarray]:
    """Run a backend, reporting any runtime failure as InferenceError."""
    try:
        return list(backend.run(tensor))
    except Exception as e:
        raise InferenceError("%s backend failed: %s: %s"
                             % (backend.name, type(e).__name__, e)) from e
