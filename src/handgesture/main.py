"""
Hand Gesture Recognition - command-line runner
===============================================

Usage:
    handgesture --image hand.jpg                 # classify one still image
    handgesture --video 0                        # camera index 0
    handgesture --video clip.mp4 --log-level DEBUG
    handgesture --config config/pipeline.yaml --model models/hand.onnx --image hand.jpg
"""

import sys
import time
import signal
import logging
import argparse

import cv2

from .capture.frame import Frame, PixelFormat
from .core.errors import ConfigError, ModelLoadError
from .core.pipeline import PipelineDriver
from .detection.hand_pose_extractor import HandPoseExtractor
from .detection.landmark_model import LandmarkModel
from .recognition.gesture_classifier import GestureClassifier
from .utils.config import PipelineConfig, load_config
from .utils.logger import GestureEventLogger, setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Hand gesture recognition from images, video files or cameras"
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--image", type=str, default=None,
        help="Classify a single still image and print the result"
    )
    source.add_argument(
        "--video", type=str, default=None,
        help="Video file path or camera index to stream through the pipeline"
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to pipeline.yaml"
    )
    parser.add_argument(
        "--model", type=str, default=None,
        help="Override the landmark model path"
    )
    parser.add_argument(
        "--palm-model", type=str, default=None,
        help="Override the palm detector model path"
    )
    parser.add_argument(
        "--no-palm", action="store_true",
        help="Skip palm detection and letterbox the whole frame"
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        help="Override the log level (DEBUG, INFO, WARNING)"
    )
    parser.add_argument(
        "--log-file", type=str, default=None,
        help="Also write a rotating debug log to this file"
    )
    return parser.parse_args(argv)


def build_config(args) -> PipelineConfig:
    """Load the config file and apply command-line overrides."""
    config = load_config(args.config)
    overrides = {}
    if args.model:
        overrides["model"] = {"model_path": args.model}
    if args.palm_model or args.no_palm:
        overrides["palm"] = {}
        if args.palm_model:
            overrides["palm"]["model_path"] = args.palm_model
        if args.no_palm:
            overrides["palm"]["enabled"] = False
    if args.log_level or args.log_file:
        overrides["logging"] = {}
        if args.log_level:
            overrides["logging"]["level"] = args.log_level
        if args.log_file:
            overrides["logging"]["file"] = args.log_file
    return config.merged(overrides) if overrides else config


def run_image(config: PipelineConfig, path: str) -> int:
    """Classify every hand in one image, printing one line per hand."""
    image = cv2.imread(path)
    if image is None:
        logger.error("Could not read image: %s", path)
        return 1

    model = LandmarkModel.from_config(config.model, config.palm)
    extractor = HandPoseExtractor(config.extractor)
    classifier = GestureClassifier(config.gestures)

    poses = extractor.extract_all(model.infer(Frame(image, PixelFormat.BGR)))
    if not poses:
        print("no hand")
        return 0
    for pose in poses:
        result = classifier.classify(pose)
        print("%s\t%.2f\t%s" % (result.label.value, result.confidence, pose.handedness.value))
    return 0


def run_video(config: PipelineConfig, source: str) -> int:
    """Stream a video file or camera through the threaded pipeline."""
    capture = cv2.VideoCapture(int(source) if source.isdigit() else source)
    if not capture.isOpened():
        logger.error("Could not open video source: %s", source)
        return 1

    driver = PipelineDriver.from_config(config, event_logger=GestureEventLogger())
    running = True

    def handle_signal(signum, frame):
        nonlocal running
        logger.info("Signal %d received, shutting down...", signum)
        running = False

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        with driver:
            while running:
                ok, image = capture.read()
                if not ok:
                    logger.info("End of video source")
                    break
                driver.submit(Frame(image, PixelFormat.BGR, time.monotonic()))
    finally:
        capture.release()
        driver.close()

    logger.info("\n%s", driver.performance.get_report())
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ConfigError as e:
        print("Invalid configuration: %s" % e, file=sys.stderr)
        return 2

    log_cfg = config.logging
    setup_logging(
        level=log_cfg.level,
        log_file=log_cfg.file,
        max_size_mb=log_cfg.max_size_mb,
        backup_count=log_cfg.backup_count,
    )

    try:
        if args.image:
            return run_image(config, args.image)
        return run_video(config, args.video)
    except ModelLoadError as e:
        logger.error("Model load failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
