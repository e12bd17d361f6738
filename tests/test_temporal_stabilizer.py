"""
Tests for Temporal Stabilizer
==============================
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from handgesture.core.errors import ConfigError
from handgesture.core.types import ClassificationSample, GestureLabel
from handgesture.recognition.temporal_stabilizer import StabilizerPhase, TemporalStabilizer
from handgesture.utils.config import StabilizerConfig

A = GestureLabel.FIST
B = GestureLabel.VICTORY


def feed(stabilizer, labels, start=0.0, dt=0.033, slot=0, confidence=0.9):
    """Feed labels at a fixed frame interval, returning all emitted events."""
    events = []
    for i, label in enumerate(labels):
        event = stabilizer.update(ClassificationSample(label, confidence, start + i * dt), slot)
        if event is not None:
            events.append(event)
    return events


@pytest.fixture
def stabilizer():
    return TemporalStabilizer(StabilizerConfig(debounce_frames=3, idle_timeout_s=0.5))


class TestDebounce:
    """Frame-count debouncing."""

    def test_initial_state(self, stabilizer):
        state = stabilizer.state(0)
        assert state.phase is StabilizerPhase.IDLE
        assert state.confirmed is GestureLabel.NONE

    def test_interrupted_run_confirms_once(self, stabilizer):
        events = feed(stabilizer, [A, B, A, A, A])
        assert [e.label for e in events] == [A]
        assert events[0].timestamp == pytest.approx(4 * 0.033)

    def test_two_transitions(self, stabilizer):
        events = feed(stabilizer, [A, A, A, B, B, B])
        assert [e.label for e in events] == [A, B]
        assert events[1].previous is A

    def test_below_debounce_emits_nothing(self, stabilizer):
        assert feed(stabilizer, [A, A, B, B, A, A]) == []
        assert stabilizer.state(0).phase is StabilizerPhase.UNCONFIRMED

    def test_repeated_label_emits_once(self, stabilizer):
        events = feed(stabilizer, [A] * 20)
        assert len(events) == 1
        assert stabilizer.confirmed_label() is A
        assert stabilizer.state(0).phase is StabilizerPhase.CONFIRMED

    def test_none_is_debounced(self, stabilizer):
        events = feed(stabilizer, [A, A, A, GestureLabel.NONE, GestureLabel.NONE, A,
                                   GestureLabel.NONE, GestureLabel.NONE, GestureLabel.NONE])
        assert [e.label for e in events] == [A, GestureLabel.NONE]

    def test_confirmed_label_clears_candidate(self, stabilizer):
        feed(stabilizer, [A, A, A, B, B, A, B])
        # The A in the middle reset the B run
        state = stabilizer.state(0)
        assert state.candidate is B
        assert state.count == 1

    def test_irregular_timestamps(self, stabilizer):
        events = []
        for ts in (0.0, 0.001, 0.4):
            event = stabilizer.update(ClassificationSample(A, 0.9, ts))
            if event:
                events.append(event)
        assert [e.label for e in events] == [A]

    def test_low_confidence_counts_as_none(self):
        stabilizer = TemporalStabilizer(StabilizerConfig(min_sample_confidence=0.7))
        feed(stabilizer, [A, A, A])
        events = feed(stabilizer, [A, A, A], start=1.0, confidence=0.5)
        assert [e.label for e in events] == [GestureLabel.NONE]

    def test_debounce_of_one(self):
        stabilizer = TemporalStabilizer(StabilizerConfig(debounce_frames=1))
        events = feed(stabilizer, [A, B])
        assert [e.label for e in events] == [A, B]

    def test_history_is_bounded(self):
        stabilizer = TemporalStabilizer(StabilizerConfig(history_size=4))
        feed(stabilizer, [A, B, A, B, A, B])
        assert stabilizer.state(0).recent_labels == [A, B, A, B]


class TestIdleTimeout:
    """Hand disappearance handling."""

    def test_idle_emits_single_none(self, stabilizer):
        feed(stabilizer, [GestureLabel.THUMBS_UP] * 3)

        assert stabilizer.mark_absent(0.066 + 0.2) is None
        event = stabilizer.mark_absent(0.066 + 0.6)
        assert event is not None
        assert event.label is GestureLabel.NONE
        assert event.previous is GestureLabel.THUMBS_UP
        assert stabilizer.state(0).phase is StabilizerPhase.IDLE

        assert stabilizer.mark_absent(2.0) is None
        assert stabilizer.mark_absent(5.0) is None

    def test_idle_without_confirmed_gesture_is_silent(self, stabilizer):
        feed(stabilizer, [A, A])
        assert stabilizer.mark_absent(10.0) is None
        assert stabilizer.state(0).phase is StabilizerPhase.IDLE

    def test_never_seen_slot_is_silent(self, stabilizer):
        assert stabilizer.mark_absent(100.0) is None

    def test_short_absence_keeps_count(self, stabilizer):
        feed(stabilizer, [A, A])
        assert stabilizer.mark_absent(0.1) is None
        events = feed(stabilizer, [A], start=0.15)
        assert [e.label for e in events] == [A]

    def test_reconfirm_after_idle(self, stabilizer):
        feed(stabilizer, [A] * 3)
        stabilizer.mark_absent(1.0)
        events = feed(stabilizer, [A] * 3, start=2.0)
        assert [e.label for e in events] == [A]
        assert events[0].previous is GestureLabel.NONE


class TestSlots:
    """Independent state per hand slot."""

    def test_slots_are_independent(self, stabilizer):
        feed(stabilizer, [A, A, A], slot=0)
        events = feed(stabilizer, [B, B, B], slot=1)

        assert [(e.label, e.slot) for e in events] == [(B, 1)]
        assert stabilizer.confirmed_label(0) is A
        assert stabilizer.confirmed_label(1) is B

    def test_slot_count_from_config(self):
        stabilizer = TemporalStabilizer(StabilizerConfig(max_slots=3))
        assert stabilizer.num_slots == 3

    def test_reset(self, stabilizer):
        feed(stabilizer, [A, A, A])
        stabilizer.reset()
        assert stabilizer.state(0).phase is StabilizerPhase.IDLE
        assert stabilizer.confirmed_label(0) is GestureLabel.NONE


class TestStabilizerConfig:

    def test_debounce_must_be_positive(self):
        with pytest.raises(ConfigError):
            StabilizerConfig(debounce_frames=0)

    def test_history_holds_debounce_window(self):
        with pytest.raises(ConfigError):
            StabilizerConfig(debounce_frames=5, history_size=3)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
