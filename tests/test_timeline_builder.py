"""Tests for the loop timeline builder.

Pure unit tests: no database, no clock, no I/O.
"""

import pytest

from reelforge.exceptions import TimelineValidationError, ValidationError
from reelforge.render.timeline_builder import (
    CaptionCue,
    ClipSpec,
    Timeline,
    TimelineSegment,
    build_timeline,
    validate_timeline,
)
from reelforge.render.variation import IDENTITY, micro_variation


def clip(clip_id: str, duration: float) -> ClipSpec:
    return ClipSpec(id=clip_id, source_url=f"https://clips.test/{clip_id}.mp4", duration_seconds=duration)


def assert_contiguous(timeline: Timeline) -> None:
    cursor = 0.0
    for segment in timeline.segments:
        assert segment.start_time == pytest.approx(cursor, abs=1e-9)
        cursor = segment.end_time


# =============================================================================
# Scenarios
# =============================================================================


class TestScenarios:
    def test_three_clips_fill_ten_seconds(self):
        timeline = build_timeline([clip("A", 3), clip("B", 3), clip("C", 3)], 10)

        assert len(timeline.segments) == 4
        assert sum(s.duration for s in timeline.segments) == pytest.approx(10, abs=1e-6)
        ids = [s.clip_id for s in timeline.segments]
        assert all(a != b for a, b in zip(ids, ids[1:]))
        # Last segment trimmed below its natural length
        assert timeline.segments[-1].duration == pytest.approx(1.0)
        assert timeline.segments[-1].duration < 3

    def test_single_clip_repeats_with_distinct_variations(self):
        timeline = build_timeline([clip("A", 5)], 12)

        assert [s.clip_id for s in timeline.segments] == ["A", "A", "A"]
        assert [s.duration for s in timeline.segments] == pytest.approx([5, 5, 2])
        first, second, third = (s.transform for s in timeline.segments)
        assert first == IDENTITY
        assert second != first
        assert third != first
        assert second != third
        assert timeline.segments[1].is_repeat and timeline.segments[2].is_repeat

        again = build_timeline([clip("A", 5)], 12)
        assert [s.transform for s in again.segments] == [first, second, third]


# =============================================================================
# Properties
# =============================================================================


POOLS = [
    ([("A", 3), ("B", 3), ("C", 3)], 10),
    ([("A", 2.5), ("B", 4.1)], 17.3),
    ([("A", 1.1), ("B", 2.3), ("C", 0.7), ("D", 5.0)], 30.37),
    ([("A", 7)], 3.2),
    ([("A", 0.9), ("B", 0.9)], 60),
    ([("A", 4), ("B", 6), ("C", 5), ("D", 3), ("E", 8), ("F", 2)], 45),
]


class TestProperties:
    @pytest.mark.parametrize("pool,target", POOLS)
    def test_durations_sum_to_target(self, pool, target):
        timeline = build_timeline([clip(i, d) for i, d in pool], target)
        assert abs(sum(s.duration for s in timeline.segments) - target) <= 1e-6
        assert timeline.total_duration == target

    @pytest.mark.parametrize("pool,target", POOLS)
    def test_segments_are_contiguous_and_positive(self, pool, target):
        timeline = build_timeline([clip(i, d) for i, d in pool], target)
        assert_contiguous(timeline)
        assert all(s.duration > 0 for s in timeline.segments)

    @pytest.mark.parametrize("pool,target", [p for p in POOLS if len(p[0]) >= 2])
    def test_no_adjacent_repeats(self, pool, target):
        timeline = build_timeline([clip(i, d) for i, d in pool], target)
        ids = [s.clip_id for s in timeline.segments]
        assert all(a != b for a, b in zip(ids, ids[1:]))

    @pytest.mark.parametrize("pool,target", POOLS)
    def test_deterministic(self, pool, target):
        clips = [clip(i, d) for i, d in pool]
        assert build_timeline(clips, target).to_dict() == build_timeline(clips, target).to_dict()

    def test_first_use_is_identity_repeat_uses_usage_count_seed(self):
        timeline = build_timeline([clip("A", 2), clip("B", 2)], 10)
        seen: dict[str, int] = {}
        for segment in timeline.segments:
            count = seen.get(segment.clip_id, 0)
            assert segment.transform == micro_variation(count)
            assert segment.is_repeat == (count > 0)
            seen[segment.clip_id] = count + 1
        assert timeline.clip_usage_count == seen

    def test_segment_never_exceeds_natural_duration(self):
        clips = [clip("A", 2.5), clip("B", 4.1)]
        natural = {c.id: c.duration_seconds for c in clips}
        timeline = build_timeline(clips, 17.3)
        assert all(s.duration <= natural[s.clip_id] + 1e-9 for s in timeline.segments)


# =============================================================================
# Captions and fade
# =============================================================================


class TestCaptionsAndFade:
    def test_boundary_snaps_back_to_nearby_cue(self):
        cues = [CaptionCue("Drop", 2.7, 4.0)]
        timeline = build_timeline([clip("A", 3), clip("B", 3), clip("C", 3)], 9, cues)

        assert timeline.segments[0].duration == pytest.approx(2.7)
        assert timeline.segments[1].start_time == pytest.approx(2.7)
        assert sum(s.duration for s in timeline.segments) == pytest.approx(9, abs=1e-6)
        assert_contiguous(timeline)

    def test_cue_outside_threshold_is_ignored(self):
        cues = [CaptionCue("Early", 2.0, 3.0)]
        timeline = build_timeline([clip("A", 3), clip("B", 3), clip("C", 3)], 9, cues)
        assert timeline.segments[0].duration == pytest.approx(3.0)

    def test_threshold_is_configurable(self):
        cues = [CaptionCue("Early", 2.0, 3.0)]
        timeline = build_timeline(
            [clip("A", 3), clip("B", 3), clip("C", 3)], 9, cues, align_threshold=1.0
        )
        assert timeline.segments[0].duration == pytest.approx(2.0)

    def test_segments_in_fade_window_are_flagged(self):
        timeline = build_timeline([clip("A", 3), clip("B", 3), clip("C", 3)], 10)
        # Fade window starts at 7.5s
        assert [s.fade_out for s in timeline.segments] == [False, False, False, True]

    def test_short_timeline_fades_entirely(self):
        timeline = build_timeline([clip("A", 3)], 2)
        assert all(s.fade_out for s in timeline.segments)

    def test_cue_from_dict(self):
        cue = CaptionCue.from_dict({"text": "Hi", "start_time": "1.5", "end_time": 3})
        assert cue == CaptionCue("Hi", 1.5, 3.0)


# =============================================================================
# Input rejection and validation
# =============================================================================


class TestValidation:
    def test_empty_pool_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            build_timeline([], 10)
        assert exc_info.value.code == "INVALID_TIMELINE_INPUT"

    @pytest.mark.parametrize("target", [0, -5])
    def test_non_positive_target_rejected(self, target):
        with pytest.raises(ValidationError):
            build_timeline([clip("A", 3)], target)

    @pytest.mark.parametrize("target", [float("inf"), float("nan")])
    def test_non_finite_target_rejected(self, target):
        with pytest.raises(ValidationError) as exc_info:
            build_timeline([clip("A", 3)], target)
        assert exc_info.value.code == "INVALID_TIMELINE_INPUT"

    def test_non_positive_clip_duration_rejected(self):
        with pytest.raises(ValidationError):
            build_timeline([clip("A", 3), clip("B", 0)], 10)

    def test_duplicate_clip_ids_rejected(self):
        with pytest.raises(ValidationError):
            build_timeline([clip("A", 3), clip("A", 4)], 10)

    def test_valid_timeline_has_no_errors(self):
        timeline = build_timeline([clip("A", 3), clip("B", 3)], 10)
        assert validate_timeline(timeline, known_clip_ids=["A", "B"]) == []

    def test_every_violation_is_reported(self):
        timeline = Timeline(
            segments=[
                TimelineSegment("A", "https://clips.test/A.mp4", 0.0, 3.0),
                TimelineSegment("B", "", 3.5, 2.0),  # gap + missing url
                TimelineSegment("", "https://clips.test/x.mp4", 5.5, -1.0),  # no clip + bad duration
                TimelineSegment("Z", "https://clips.test/Z.mp4", 4.0, 1.0),  # overlap + unknown
            ],
            total_duration=10.0,
        )
        errors = validate_timeline(timeline, known_clip_ids=["A", "B"])

        joined = "\n".join(errors)
        assert "Gap detected between segment 0 and 1" in joined
        assert "Segment 1 has no clip URL" in joined
        assert "Segment 2 has no clip reference" in joined
        assert "Segment 2 has invalid duration" in joined
        assert "Overlap detected" in joined
        assert "unknown clip: Z" in joined
        assert "sum to" in joined

    def test_empty_timeline_is_invalid(self):
        assert validate_timeline(Timeline(segments=[], total_duration=5.0)) == [
            "Timeline has no segments"
        ]

    def test_validation_error_carries_details(self):
        error = TimelineValidationError(["one", "two"])
        assert error.errors == ["one", "two"]
        info = error.to_error_info()
        assert info.code == "INVALID_TIMELINE"
        assert info.details == ["one", "two"]
