"""
Tests for the Pipeline Driver
==============================

End-to-end runs use a fake inference backend, so no model file or
camera is needed. Frames are 224x224, so model input pixels and frame
pixels coincide.
"""

import sys
import threading
import time
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from handgesture.capture.frame import Frame, PixelFormat
from handgesture.capture.frame_queue import FrameQueue
from handgesture.core.events import EventBus, Events
from handgesture.core.pipeline import PipelineDriver
from handgesture.core.types import GestureLabel, Handedness
from handgesture.detection.landmark_model import LandmarkModel
from handgesture.detection.tracking import HandTracker
from handgesture.utils.config import ModelConfig, PalmConfig, PipelineConfig, StabilizerConfig
from handgesture.utils.logger import GestureEventLogger

from fakes import FakeBackend, SlowBackend
from synthetic_hands import make_points, make_pose

IMAGE = np.zeros((224, 224, 3), dtype=np.uint8)


def frame_at(ts):
    return Frame(IMAGE, PixelFormat.RGB, timestamp=ts)


@pytest.fixture
def backend():
    return FakeBackend(landmarks=make_points("fist", scale=224.0))


@pytest.fixture
def driver(backend):
    config = PipelineConfig()
    return PipelineDriver(LandmarkModel(backend, config.model), config)


@pytest.fixture
def received(driver):
    events = []
    driver.event_bus.subscribe(Events.GESTURE_CHANGED, lambda event: events.append(event))
    return events


class TestProcessFrame:
    """Synchronous per-frame processing."""

    def test_fist_end_to_end(self, driver, received):
        assert driver.process_frame(frame_at(0.0)) == []
        assert driver.process_frame(frame_at(0.033)) == []
        events = driver.process_frame(frame_at(0.066))

        assert [e.label for e in events] == [GestureLabel.FIST]
        assert events[0].slot == 0
        assert events[0].timestamp == pytest.approx(0.066)
        assert received == events

        result = driver.last_results[0]
        assert result.label is GestureLabel.FIST
        assert result.confidence >= 0.5

    def test_no_event_while_gesture_held(self, driver, received):
        for i in range(10):
            driver.process_frame(frame_at(i * 0.033))
        assert len(received) == 1

    def test_hand_loss_emits_none(self, driver, backend, received):
        for i in range(3):
            driver.process_frame(frame_at(i * 0.033))

        backend.presence = [0.0]
        assert driver.process_frame(frame_at(0.2)) == []
        events = driver.process_frame(frame_at(0.7))

        assert [e.label for e in events] == [GestureLabel.NONE]
        assert events[0].previous is GestureLabel.FIST
        assert driver.process_frame(frame_at(1.5)) == []

    def test_inference_failure_is_not_fatal(self, driver, backend, received):
        backend.fail = True
        assert driver.process_frame(frame_at(0.0)) == []

        backend.fail = False
        for i in range(1, 4):
            driver.process_frame(frame_at(i * 0.033))
        assert [e.label for e in received] == [GestureLabel.FIST]

    def test_unexpected_backend_error_is_not_fatal(self, driver, backend):
        backend.fail = LookupError("output binding missing")
        assert driver.process_frame(frame_at(0.0)) == []
        assert driver.performance.get_metrics().total_frames == 1

    def test_flickering_handedness_keeps_one_slot(self):
        # One hand with a second, empty detection row so two slots are live
        points = np.vstack([make_points("fist", scale=224.0), np.zeros((21, 3))])
        backend = FakeBackend(landmarks=points, presence=(0.95, 0.0), handedness=(0.55, 0.0))
        config = PipelineConfig(model=ModelConfig(max_hands=2), palm=PalmConfig(enabled=False))
        driver = PipelineDriver(LandmarkModel(backend, config.model), config)
        received = []
        driver.event_bus.subscribe(
            Events.GESTURE_CHANGED, lambda event: received.append((event.label, event.slot)))

        for i in range(36):
            if i < 6:
                backend.handedness = [0.55 if i % 2 == 0 else 0.45, 0.0]
            else:
                backend.handedness = [0.9, 0.0]
            driver.process_frame(frame_at(i * 0.033))

        assert received == [(GestureLabel.FIST, 0)]

    def test_low_confidence_hand_ignored(self, backend):
        config = PipelineConfig.from_dict({"extractor": {"min_landmark_confidence": 0.99}})
        driver = PipelineDriver(LandmarkModel(backend, config.model), config)
        for i in range(5):
            assert driver.process_frame(frame_at(i * 0.033)) == []
        assert driver.last_results == {}

    def test_presence_events(self, driver, backend):
        seen = []
        driver.event_bus.subscribe(Events.HAND_DETECTED, lambda slot, pose: seen.append(("in", slot)))
        driver.event_bus.subscribe(Events.HAND_LOST, lambda slot: seen.append(("out", slot)))

        driver.process_frame(frame_at(0.0))
        driver.process_frame(frame_at(0.033))
        backend.presence = [0.0]
        driver.process_frame(frame_at(1.0))

        assert seen == [("in", 0), ("out", 0)]

    def test_failing_subscriber_does_not_break_pipeline(self, driver, received):
        def broken(event):
            raise RuntimeError("subscriber bug")

        driver.event_bus.subscribe(Events.GESTURE_CHANGED, broken, priority=10)
        for i in range(3):
            driver.process_frame(frame_at(i * 0.033))

        assert [e.label for e in received] == [GestureLabel.FIST]
        assert driver.event_bus.error_count == 1

    def test_event_logger(self, backend):
        event_logger = GestureEventLogger()
        driver = PipelineDriver(LandmarkModel(backend), event_logger=event_logger)
        for i in range(3):
            driver.process_frame(frame_at(i * 0.033))

        assert event_logger.total_events == 1
        assert event_logger.get_history()[0]["gesture"] == "fist"

    def test_stage_timing_recorded(self, driver):
        driver.process_frame(frame_at(0.0))
        metrics = driver.performance.get_metrics()
        assert metrics.total_frames == 1
        assert metrics.inference_time_ms >= 0.0


class TestSlotAssignment:
    """Mapping hands to stabilizer slots."""

    @pytest.fixture
    def driver(self):
        config = PipelineConfig(model=ModelConfig(max_hands=2), palm=PalmConfig(enabled=False))
        backend = FakeBackend(presence=(0.9, 0.9), handedness=(0.8, 0.2))
        return PipelineDriver(LandmarkModel(backend, config.model), config)

    def test_known_handedness_fixed_slots(self, driver):
        left = make_pose("fist", handedness=Handedness.LEFT)
        right = make_pose("fist", handedness=Handedness.RIGHT)
        slots = driver.assign_slots([left, right])
        assert slots[0] is right
        assert slots[1] is left

    def test_left_alone_keeps_its_slot(self, driver):
        left = make_pose("fist", handedness=Handedness.LEFT)
        assert driver.assign_slots([left]) == {1: left}

    def test_unknown_takes_lowest_free(self, driver):
        a = make_pose("fist", handedness=Handedness.UNKNOWN)
        b = make_pose("victory", handedness=Handedness.UNKNOWN)
        slots = driver.assign_slots([a, b])
        assert slots[0] is a
        assert slots[1] is b

    def test_collision_falls_back(self, driver):
        first = make_pose("fist", handedness=Handedness.RIGHT)
        second = make_pose("victory", handedness=Handedness.RIGHT)
        slots = driver.assign_slots([first, second])
        assert slots[0] is first
        assert slots[1] is second

    def test_extra_hands_ignored(self, driver):
        poses = [make_pose("fist", handedness=Handedness.UNKNOWN) for _ in range(3)]
        assert sorted(driver.assign_slots(poses)) == [0, 1]

    def test_single_slot(self):
        config = PipelineConfig(stabilizer=StabilizerConfig(max_slots=1))
        driver = PipelineDriver(LandmarkModel(FakeBackend(), config.model), config)
        left = make_pose("fist", handedness=Handedness.LEFT)
        assert driver.assign_slots([left]) == {0: left}

    def test_single_hand_model_uses_one_slot(self, backend):
        driver = PipelineDriver(LandmarkModel(backend))
        left = make_pose("fist", handedness=Handedness.LEFT)
        far_right = make_pose("fist", offset=(1500.0, 0.0), handedness=Handedness.RIGHT)
        assert driver.assign_slots([left]) == {0: left}
        assert driver.assign_slots([far_right]) == {0: far_right}

    def test_tracked_hand_keeps_slot_when_handedness_flips(self, driver):
        right = make_pose("fist", handedness=Handedness.RIGHT)
        assert driver.assign_slots([right]) == {0: right}

        flipped = make_pose("fist", offset=(10.0, 0.0), handedness=Handedness.LEFT)
        assert driver.assign_slots([flipped]) == {0: flipped}

    def test_two_hands_keep_slots_when_labels_swap(self, driver):
        right = make_pose("fist", handedness=Handedness.RIGHT)
        left = make_pose("fist", offset=(1500.0, 0.0), handedness=Handedness.LEFT)
        assert driver.assign_slots([right, left]) == {0: right, 1: left}

        now_left = make_pose("fist", handedness=Handedness.LEFT)
        now_right = make_pose("fist", offset=(1500.0, 0.0), handedness=Handedness.RIGHT)
        slots = driver.assign_slots([now_right, now_left])
        assert slots[0] is now_left
        assert slots[1] is now_right


class TestHandTracker:
    """Position-based slot tracking."""

    def test_released_slot_is_forgotten(self):
        tracker = HandTracker(num_slots=2)
        tracker.assign([make_pose("fist", handedness=Handedness.RIGHT)])
        tracker.release(0)
        assert tracker.tracked_slots == []

        left = make_pose("fist", handedness=Handedness.LEFT)
        assert tracker.assign([left]) == {1: left}

    def test_single_slot_taken_over_by_far_hand(self):
        tracker = HandTracker(num_slots=1)
        tracker.assign([make_pose("fist")])
        far = make_pose("victory", offset=(3000.0, 0.0), handedness=Handedness.LEFT)
        assert tracker.assign([far]) == {0: far}

    def test_moving_hand_stays_in_slot(self):
        tracker = HandTracker(num_slots=2)
        left = make_pose("fist", handedness=Handedness.LEFT)
        assert tracker.assign([left]) == {1: left}

        for step in range(1, 6):
            moved = make_pose("fist", offset=(50.0 * step, 0.0), handedness=Handedness.RIGHT)
            assert tracker.assign([moved]) == {1: moved}

    def test_extra_hands_ignored(self):
        tracker = HandTracker(num_slots=2)
        poses = [make_pose("fist", offset=(1500.0 * i, 0.0)) for i in range(3)]
        slots = tracker.assign(poses)
        assert sorted(slots) == [0, 1]
        assert slots[0] is poses[0]
        assert tracker.tracked_slots == [0, 1]

    def test_invalid_slot_count(self):
        with pytest.raises(ValueError):
            HandTracker(num_slots=0)


class TestFrame:
    """Frame buffer handling."""

    def test_buffer_is_read_only(self):
        image = np.zeros((4, 4, 3), dtype=np.uint8)
        frame = Frame(image)
        assert not frame.image.flags.writeable
        # Caller's array is untouched
        assert image.flags.writeable

    def test_bgr_to_rgb(self):
        image = np.zeros((2, 2, 3), dtype=np.uint8)
        image[..., 0] = 255
        rgb = Frame(image, PixelFormat.BGR).to_rgb()
        assert rgb[0, 0].tolist() == [0, 0, 255]

    def test_gray_to_rgb(self):
        rgb = Frame(np.full((2, 3), 7, dtype=np.uint8), PixelFormat.GRAY).to_rgb()
        assert rgb.shape == (2, 3, 3)

    def test_dimensions(self):
        frame = Frame(np.zeros((48, 64, 4), dtype=np.uint8), PixelFormat.BGRA)
        assert (frame.width, frame.height) == (64, 48)
        frame.validate()


class TestFrameQueue:
    """Newest-frame-wins backpressure."""

    def test_drops_oldest(self):
        queue = FrameQueue(maxsize=2)
        frames = [frame_at(float(i)) for i in range(4)]
        results = [queue.put(f) for f in frames]

        assert results == [True, True, False, False]
        assert queue.dropped == 2
        assert queue.get(0) is frames[2]
        assert queue.get(0) is frames[3]
        assert queue.get(0) is None

    def test_get_times_out(self):
        queue = FrameQueue()
        start = time.perf_counter()
        assert queue.get(timeout=0.05) is None
        assert time.perf_counter() - start >= 0.04

    def test_close_wakes_consumer(self):
        queue = FrameQueue()
        result = []
        consumer = threading.Thread(target=lambda: result.append(queue.get(timeout=5.0)))
        consumer.start()
        queue.close()
        consumer.join(1.0)
        assert not consumer.is_alive()
        assert result == [None]
        assert queue.put(frame_at(0.0)) is False

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            FrameQueue(maxsize=0)

    def test_driver_counts_drops(self, driver):
        assert driver.submit(frame_at(0.0)) is True
        assert driver.submit(frame_at(0.1)) is False
        assert driver.submit(frame_at(0.2)) is False

        assert driver.frame_queue.dropped == 2
        assert driver.performance.dropped_frames == 2
        assert len(driver.frame_queue) == 1
        assert driver.frame_queue.get(0).timestamp == 0.2


class TestThreadedPipeline:
    """Background inference thread."""

    def test_start_submit_stop(self, driver):
        got = threading.Event()
        lifecycle = []
        driver.event_bus.subscribe(Events.GESTURE_CHANGED, lambda event: got.set())
        driver.event_bus.subscribe(Events.PIPELINE_STOPPED, lambda: lifecycle.append("stopped"))

        with driver:
            assert driver.is_running
            deadline = time.monotonic() + 5.0
            ts = 0.0
            while not got.is_set() and time.monotonic() < deadline:
                driver.submit(frame_at(ts))
                ts += 0.033
                time.sleep(0.01)

        assert got.is_set()
        assert not driver.is_running
        assert lifecycle == ["stopped"]

    def test_restart(self, driver):
        driver.start()
        driver.stop()
        driver.start()
        assert driver.is_running
        assert driver.submit(frame_at(0.0)) is True
        driver.stop()
        assert not driver.is_running

    def test_restart_while_frame_in_flight(self):
        backend = SlowBackend(landmarks=make_points("fist", scale=224.0), delay=0.3)
        driver = PipelineDriver(LandmarkModel(backend))
        driver.start()
        driver.submit(frame_at(0.0))
        deadline = time.monotonic() + 5.0
        while backend.active == 0 and time.monotonic() < deadline:
            time.sleep(0.005)

        # The old worker is still inside the model call when this returns
        driver.stop(timeout=0.01)
        assert not driver.is_running
        driver.start()
        assert driver.is_running

        for i in range(1, 21):
            driver.submit(frame_at(i * 0.033))
            time.sleep(0.01)
        driver.stop()

        assert backend.max_active == 1
        assert not driver.is_running

    def test_submit_after_stop_is_not_a_drop(self, driver):
        driver.start()
        driver.stop()

        assert driver.submit(frame_at(0.0)) is False
        assert driver.performance.dropped_frames == 0
        assert driver.frame_queue.dropped == 0

    def test_close_releases_model(self, driver, backend):
        driver.start()
        driver.close()
        assert backend.closed


class TestEventBus:
    """Publish/subscribe delivery."""

    def test_priority_order(self):
        bus = EventBus()
        order = []
        bus.subscribe("evt", lambda: order.append("low"), priority=0)
        bus.subscribe("evt", lambda: order.append("high"), priority=5)
        bus.emit("evt")
        assert order == ["high", "low"]

    def test_unsubscribe(self):
        bus = EventBus()
        calls = []

        def handler(value):
            calls.append(value)

        bus.subscribe("evt", handler)
        assert bus.emit("evt", value=1) == 1
        bus.unsubscribe("evt", handler)
        assert bus.emit("evt", value=2) == 0
        assert calls == [1]

    def test_error_is_isolated(self, caplog):
        bus = EventBus()
        calls = []

        def broken():
            raise ValueError("boom")

        bus.subscribe("evt", broken, priority=1)
        bus.subscribe("evt", lambda: calls.append(1))

        assert bus.emit("evt") == 1
        assert calls == [1]
        assert "boom" in caplog.text

    def test_buses_are_independent(self):
        a, b = EventBus(), EventBus()
        a.subscribe("evt", lambda: None)
        assert a.listener_count == 1
        assert b.listener_count == 0

    def test_history_bounded(self):
        bus = EventBus(max_history=3)
        for _ in range(5):
            bus.emit("evt")
        assert len(bus.get_history(10)) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
