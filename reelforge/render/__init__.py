from reelforge.render.timeline_builder import (
    CaptionCue,
    ClipSpec,
    Timeline,
    TimelineSegment,
    build_timeline,
    validate_timeline,
)
from reelforge.render.variation import IDENTITY, SeededVariation, Transform, micro_variation

__all__ = [
    "IDENTITY",
    "CaptionCue",
    "ClipSpec",
    "SeededVariation",
    "Timeline",
    "TimelineSegment",
    "Transform",
    "build_timeline",
    "micro_variation",
    "validate_timeline",
]
