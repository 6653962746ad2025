"""Deterministic micro-variation for repeated clips.

A repeated clip gets a small zoom, pan, speed and mirror change so that two
occurrences of the same footage do not look identical. The values come from
an explicitly seeded PRNG: the same seed always yields the same transform.
"""

import random
from dataclasses import asdict, dataclass
from typing import Any

SCALE_JITTER = 0.03  # +-3%
PAN_JITTER = 20.0  # +-20 units (output pixels)
SPEED_JITTER = 0.05  # +-5%
MIRROR_EVERY = 3  # mirror every third repeat


@dataclass(frozen=True)
class Transform:
    """Per-segment transform applied by the compositor."""

    scale: float = 1.0
    pan_x: float = 0.0
    pan_y: float = 0.0
    speed: float = 1.0
    mirror: bool = False

    @property
    def is_identity(self) -> bool:
        return self == IDENTITY

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


IDENTITY = Transform()


class SeededVariation:
    """Reproducible random source for micro-variations.

    Wraps ``random.Random`` so the seeding contract is explicit and the
    generator never touches the module-level random state.
    """

    def __init__(self, seed: int):
        self.seed = seed
        self._rng = random.Random(seed)

    def jitter(self, amplitude: float) -> float:
        """Draw uniformly from [-amplitude, amplitude]."""
        return self._rng.uniform(-amplitude, amplitude)


def micro_variation(usage_count: int) -> Transform:
    """Transform for a clip already used ``usage_count`` times.

    The first draw of a clip (``usage_count == 0``) is left untouched.
    """
    if usage_count <= 0:
        return IDENTITY

    source = SeededVariation(usage_count)
    return Transform(
        scale=round(1.0 + source.jitter(SCALE_JITTER), 4),
        pan_x=round(source.jitter(PAN_JITTER), 2),
        pan_y=round(source.jitter(PAN_JITTER), 2),
        speed=round(1.0 + source.jitter(SPEED_JITTER), 4),
        mirror=usage_count % MIRROR_EVERY == 0,
    )
