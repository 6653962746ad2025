"""Loop timeline builder.

Turns a small pool of clips into a continuous timeline of a given length:

1. Clips are drawn round-robin, skipping the clip that was just used
   (a single-clip pool repeats by necessity).
2. Each segment plays min(natural duration, time still needed); the final
   segment is the only one trimmed to land exactly on the target.
3. Repeat draws carry a seeded micro-variation (see ``variation.py``).
4. Segment boundaries snap back to a nearby caption cue start.
5. Segments starting inside the trailing fade window are flagged.
6. The result is validated, reporting every violation at once.

This module is pure: no I/O, no clock, no global randomness.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from reelforge.exceptions import TimelineValidationError, ValidationError
from reelforge.render.variation import IDENTITY, Transform, micro_variation

DEFAULT_FADE_SECONDS = 2.5
DEFAULT_ALIGN_THRESHOLD = 0.5
GAP_TOLERANCE = 0.1
DURATION_TOLERANCE = 1e-6
EPSILON = 1e-9


@dataclass(frozen=True)
class ClipSpec:
    """A clip as seen by the builder."""

    id: str
    source_url: str
    duration_seconds: float
    energy_level: str = "medium"


@dataclass(frozen=True)
class CaptionCue:
    text: str
    start_time: float
    end_time: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CaptionCue":
        return cls(
            text=str(data.get("text", "")),
            start_time=float(data["start_time"]),
            end_time=float(data["end_time"]),
        )


@dataclass
class TimelineSegment:
    clip_id: str
    source_url: str
    start_time: float
    duration: float
    transform: Transform = IDENTITY
    is_repeat: bool = False
    energy_level: str = "medium"
    fade_out: bool = False

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "clip_id": self.clip_id,
            "source_url": self.source_url,
            "start_time": self.start_time,
            "duration": self.duration,
            "transform": self.transform.to_dict(),
            "is_repeat": self.is_repeat,
            "energy_level": self.energy_level,
            "fade_out": self.fade_out,
        }


@dataclass
class Timeline:
    segments: list[TimelineSegment]
    total_duration: float
    clip_usage_count: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "segments": [segment.to_dict() for segment in self.segments],
            "total_duration": self.total_duration,
            "clip_usage_count": dict(self.clip_usage_count),
        }


def build_timeline(
    clips: list[ClipSpec],
    target_duration_seconds: float,
    caption_cues: Optional[Iterable[CaptionCue]] = None,
    *,
    fade_seconds: float = DEFAULT_FADE_SECONDS,
    align_threshold: float = DEFAULT_ALIGN_THRESHOLD,
) -> Timeline:
    """Build a deterministic loop timeline.

    Raises:
        ValidationError: empty pool, bad target or malformed clips
        TimelineValidationError: the built timeline is inconsistent
    """
    _check_inputs(clips, target_duration_seconds)
    target = float(target_duration_seconds)
    cue_starts = sorted({cue.start_time for cue in caption_cues or ()})

    usage: dict[str, int] = {clip.id: 0 for clip in clips}
    segments: list[TimelineSegment] = []
    current_time = 0.0
    cursor = 0
    last_clip_id: Optional[str] = None

    while target - current_time > EPSILON:
        clip, cursor = _next_clip(clips, cursor, last_clip_id)
        remaining = target - current_time

        if clip.duration_seconds >= remaining:
            duration = remaining
        else:
            duration = clip.duration_seconds
            if cue_starts:
                duration = _align_to_cue(current_time, duration, cue_starts, align_threshold)

        times_used = usage[clip.id]
        segments.append(
            TimelineSegment(
                clip_id=clip.id,
                source_url=clip.source_url,
                start_time=current_time,
                duration=duration,
                transform=micro_variation(times_used),
                is_repeat=times_used > 0,
                energy_level=clip.energy_level,
            )
        )
        usage[clip.id] = times_used + 1
        current_time += duration
        last_clip_id = clip.id

    # Land exactly on the target; only the final segment absorbs float drift
    final = segments[-1]
    final.duration = target - final.start_time

    _mark_fade_out(segments, target, fade_seconds)

    timeline = Timeline(segments=segments, total_duration=target, clip_usage_count=usage)
    errors = validate_timeline(timeline, known_clip_ids=usage.keys())
    if errors:
        raise TimelineValidationError(errors)
    return timeline


def validate_timeline(
    timeline: Timeline,
    known_clip_ids: Optional[Iterable[str]] = None,
) -> list[str]:
    """Return every problem found in the timeline (empty list when valid)."""
    errors: list[str] = []
    known = set(known_clip_ids) if known_clip_ids is not None else None

    if not timeline.segments:
        errors.append("Timeline has no segments")

    for index, segment in enumerate(timeline.segments):
        if segment.duration <= 0:
            errors.append(f"Segment {index} has invalid duration: {segment.duration}")
        if not segment.clip_id:
            errors.append(f"Segment {index} has no clip reference")
        elif known is not None and segment.clip_id not in known:
            errors.append(f"Segment {index} references unknown clip: {segment.clip_id}")
        if not segment.source_url or not segment.source_url.strip():
            errors.append(f"Segment {index} has no clip URL")

    for index in range(1, len(timeline.segments)):
        previous = timeline.segments[index - 1]
        gap = timeline.segments[index].start_time - previous.end_time
        if abs(gap) > GAP_TOLERANCE:
            kind = "Gap" if gap > 0 else "Overlap"
            errors.append(f"{kind} detected between segment {index - 1} and {index}: {gap:.3f}s")

    if timeline.segments:
        total = sum(segment.duration for segment in timeline.segments)
        if abs(total - timeline.total_duration) > DURATION_TOLERANCE:
            errors.append(
                f"Segment durations sum to {total:.6f}s, expected {timeline.total_duration:.6f}s"
            )

    return errors


def _check_inputs(clips: list[ClipSpec], target_duration_seconds: float) -> None:
    if not clips:
        raise ValidationError("No clips provided to loop engine", code="INVALID_TIMELINE_INPUT")
    if (
        target_duration_seconds is None
        or not math.isfinite(target_duration_seconds)
        or target_duration_seconds <= 0
    ):
        raise ValidationError(
            f"Target duration must be a positive finite number: {target_duration_seconds}",
            code="INVALID_TIMELINE_INPUT",
        )

    seen: set[str] = set()
    for clip in clips:
        if not math.isfinite(clip.duration_seconds) or clip.duration_seconds <= 0:
            raise ValidationError(
                f"Clip {clip.id} has invalid duration: {clip.duration_seconds}",
                code="INVALID_TIMELINE_INPUT",
            )
        if clip.id in seen:
            raise ValidationError(f"Duplicate clip in pool: {clip.id}", code="INVALID_TIMELINE_INPUT")
        seen.add(clip.id)


def _next_clip(
    clips: list[ClipSpec], cursor: int, last_clip_id: Optional[str]
) -> tuple[ClipSpec, int]:
    """Round-robin draw that skips the clip used immediately before."""
    count = len(clips)
    if count == 1:
        return clips[0], 0

    for step in range(count):
        index = (cursor + step) % count
        if clips[index].id != last_clip_id:
            return clips[index], (index + 1) % count

    # Only reached when every clip shares the previous id
    return clips[cursor % count], (cursor + 1) % count


def _align_to_cue(
    start: float, duration: float, cue_starts: list[float], threshold: float
) -> float:
    """Pull a segment's end back onto the latest cue start within ``threshold``."""
    natural_end = start + duration
    for cue_start in reversed(cue_starts):
        if cue_start >= natural_end:
            continue
        if natural_end - cue_start > threshold:
            break
        if cue_start - start >= threshold:
            return cue_start - start
        break
    return duration


def _mark_fade_out(segments: list[TimelineSegment], target: float, fade_seconds: float) -> None:
    fade_start = max(0.0, target - fade_seconds)
    for segment in segments:
        segment.fade_out = segment.start_time >= fade_start - EPSILON
