"""Encoder configuration and the JSON export manifest — the contract between CLI/API and engine."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from reelcut.models import CuePosition, EditKind, EditOperation, Rgb, TimedCue


@dataclass
class EncoderConfig:
    """ffmpeg location and the fixed output encoding parameters."""

    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    video_codec: str = "libx264"
    preset: str = "medium"
    crf: int = 23
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    temp_dir: Path | None = None
    kill_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "EncoderConfig":
        """Build a config, honouring REELCUT_FFMPEG / REELCUT_FFPROBE / REELCUT_TEMP_DIR."""
        temp_dir = os.environ.get("REELCUT_TEMP_DIR")
        return cls(
            ffmpeg=os.environ.get("REELCUT_FFMPEG", "ffmpeg"),
            ffprobe=os.environ.get("REELCUT_FFPROBE", "ffprobe"),
            temp_dir=Path(temp_dir) if temp_dir else None,
        )


@dataclass
class ExportManifest:
    """Top-level export manifest."""

    input: Path
    output: Path
    version: str = "1"
    mode: str = "edits"
    edits: list[EditOperation] = field(default_factory=list)
    cues: list[TimedCue] = field(default_factory=list)
    encoder: EncoderConfig = field(default_factory=EncoderConfig)


def _parse_color(value) -> Rgb:
    if isinstance(value, str):
        return Rgb.from_hex(value)
    r, g, b = value
    return Rgb(int(r), int(g), int(b))


def edit_from_dict(data: dict) -> EditOperation:
    try:
        kind = EditKind(data["kind"])
    except KeyError:
        raise ValueError("Edit must contain a 'kind' field") from None
    except ValueError:
        raise ValueError(f"Unknown edit kind: {data['kind']!r}") from None

    start = float(data.get("start", 0.0))
    # A split is a single point in time
    end = float(data.get("end", start))
    return EditOperation(
        kind=kind,
        start=start,
        end=end,
        speed_ratio=float(data.get("speed_ratio", 1.0)),
        label=data.get("label", ""),
    )


def cue_from_dict(data: dict) -> TimedCue:
    if "start" not in data or "end" not in data:
        raise ValueError("Cue must contain 'start' and 'end' fields")
    try:
        position = CuePosition(data.get("position", CuePosition.BOTTOM_CENTER.value))
    except ValueError:
        raise ValueError(f"Unknown cue position: {data['position']!r}") from None

    kwargs = {}
    if "font_size" in data:
        kwargs["font_size"] = float(data["font_size"])
    if "color" in data:
        kwargs["color"] = _parse_color(data["color"])
    return TimedCue(
        text=data.get("text", ""),
        start=float(data["start"]),
        end=float(data["end"]),
        position=position,
        **kwargs,
    )


def load_cues(path: str | Path) -> list[TimedCue]:
    """Load a JSON list of cue objects (or a ``{"cues": [...]}`` object)."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("cues", [])
    return [cue_from_dict(c) for c in data]


def load_manifest(path: str | Path) -> ExportManifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))

    if "input" not in data or "output" not in data:
        raise ValueError("Manifest must contain 'input' and 'output' fields")

    mode = data.get("mode", "edits")
    if mode not in ("edits", "overlay"):
        raise ValueError(f"Manifest mode must be 'edits' or 'overlay' (got {mode!r})")

    encoder = EncoderConfig(**data["encoder"]) if "encoder" in data else EncoderConfig()
    if encoder.temp_dir is not None:
        encoder.temp_dir = Path(encoder.temp_dir)

    return ExportManifest(
        version=data.get("version", "1"),
        input=Path(data["input"]),
        output=Path(data["output"]),
        mode=mode,
        edits=[edit_from_dict(e) for e in data.get("edits", [])],
        cues=[cue_from_dict(c) for c in data.get("cues", [])],
        encoder=encoder,
    )
