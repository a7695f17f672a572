"""Shared data types used across Reelcut."""

import math
from dataclasses import dataclass
from enum import Enum


class CuePosition(str, Enum):
    """Where an overlay cue is anchored on the canvas."""

    BOTTOM_CENTER = "bottom_center"
    TOP_CENTER = "top_center"
    CENTER = "center"
    BOTTOM_LEFT = "bottom_left"
    BOTTOM_RIGHT = "bottom_right"


class EditKind(str, Enum):
    CUT = "cut"
    TRIM = "trim"
    SPLIT = "split"
    SPEED_CHANGE = "speed_change"


@dataclass(frozen=True)
class Rgb:
    """An 8-bit RGB color."""

    r: int
    g: int
    b: int

    def __post_init__(self) -> None:
        for name in ("r", "g", "b"):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= 255:
                raise ValueError(f"color component {name}={value!r} must be an int in 0..255")

    @classmethod
    def from_hex(cls, value: str) -> "Rgb":
        """Parse ``#RRGGBB`` (leading ``#`` optional)."""
        value = value.lstrip("#")
        if len(value) != 6:
            raise ValueError(f"Invalid hex color: {value!r}")
        return cls(int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))


RED = Rgb(255, 0, 0)


@dataclass(frozen=True)
class TimedCue:
    """One timed overlay text entry."""

    text: str
    start: float
    end: float
    position: CuePosition = CuePosition.BOTTOM_CENTER
    font_size: float = 48
    color: Rgb = RED

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < 0:
            raise ValueError(f"Cue times must be >= 0 (got {self.start}, {self.end})")
        if self.end <= self.start:
            raise ValueError(f"Cue end ({self.end}) must be after start ({self.start})")
        if self.font_size <= 0:
            raise ValueError(f"Cue font_size must be positive (got {self.font_size})")


@dataclass(frozen=True)
class EditOperation:
    """One timeline transformation request.

    ``speed_ratio`` is only consulted for ``SPEED_CHANGE``; ``label`` is for
    display and never read by the planner.
    """

    kind: EditKind
    start: float
    end: float
    speed_ratio: float = 1.0
    label: str = ""

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"Edit start must be >= 0 (got {self.start})")
        if self.end < self.start:
            raise ValueError(f"Edit end ({self.end}) must not precede start ({self.start})")
        if not self.speed_ratio > 0 or math.isinf(self.speed_ratio):
            raise ValueError(f"speed_ratio must be a positive number (got {self.speed_ratio})")


@dataclass(frozen=True)
class OutputSegment:
    """A computed output time range in source seconds, played at ``speed_ratio``."""

    start: float
    end: float
    speed_ratio: float = 1.0

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def output_duration(self) -> float:
        """Length of the rendered segment once the speed change is applied."""
        return self.duration / self.speed_ratio


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    width: int
    height: int
    fps: float
    has_audio: bool
    codec_video: str
    codec_audio: str | None = None
