"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import math
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from reelcut.errors import PlanningError, ProcessError
from reelcut.manifest import EncoderConfig
from reelcut.models import ProbeResult

logger = logging.getLogger(__name__)


class FFmpegNotFoundError(ProcessError):
    pass


class NoVideoStreamError(PlanningError):
    """Raised when the input file has no video stream."""
    pass


@dataclass(frozen=True)
class Encoder:
    """Resolved paths of a ready-to-invoke ffmpeg/ffprobe pair."""

    ffmpeg: str
    ffprobe: str


def locate_encoder(config: EncoderConfig | None = None) -> Encoder:
    """Resolve ffmpeg/ffprobe from *config*; raise FFmpegNotFoundError if either is missing."""
    config = config or EncoderConfig()
    resolved = {}
    for name in ("ffmpeg", "ffprobe"):
        cmd = getattr(config, name)
        path = shutil.which(cmd)
        if path is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")
        resolved[name] = path
    logger.debug("Using ffmpeg=%s ffprobe=%s", resolved["ffmpeg"], resolved["ffprobe"])
    return Encoder(**resolved)


def probe(input_path: Path, encoder: Encoder | None = None) -> ProbeResult:
    """Extract media metadata via ffprobe."""
    ffprobe = encoder.ffprobe if encoder else "ffprobe"
    cmd = [
        ffprobe,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, encoding="utf-8", errors="replace")
    except OSError as e:
        raise FFmpegNotFoundError(f"Could not run {ffprobe}: {e}") from e
    if result.returncode != 0:
        raise ProcessError(
            f"ffprobe failed on {input_path} (rc={result.returncode}): {result.stderr.strip()}"
        )
    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise PlanningError(f"Could not determine duration of {input_path}: bad ffprobe output ({e})") from e
    if not isinstance(data, dict):
        raise PlanningError(f"Could not determine duration of {input_path}: bad ffprobe output")
    streams = data.get("streams", [])

    video_stream = next(
        (s for s in streams if s.get("codec_type") == "video"), None
    )
    audio_stream = next(
        (s for s in streams if s.get("codec_type") == "audio"), None
    )

    if video_stream is None:
        raise NoVideoStreamError(f"No video stream found in {input_path}")

    # Raw and elementary streams carry no container duration
    try:
        duration = float(data.get("format", {})["duration"])
    except (KeyError, TypeError, ValueError):
        raise PlanningError(f"Could not determine duration of {input_path}") from None
    if not math.isfinite(duration) or duration <= 0:
        raise PlanningError(f"Could not determine duration of {input_path}")

    return ProbeResult(
        duration=duration,
        width=_int_field(video_stream, "width"),
        height=_int_field(video_stream, "height"),
        fps=_parse_rate(video_stream.get("r_frame_rate", "0/1")),
        has_audio=audio_stream is not None,
        codec_video=video_stream.get("codec_name", "unknown"),
        codec_audio=audio_stream.get("codec_name") if audio_stream else None,
    )


def _int_field(stream: dict, key: str) -> int:
    try:
        return int(stream.get(key, 0))
    except (TypeError, ValueError):
        return 0


def _parse_rate(rate: str) -> float:
    """Parse an ffprobe rational like ``30000/1001``; 0.0 if unusable."""
    num, _, den = str(rate).partition("/")
    try:
        num_i, den_i = int(num), int(den or 1)
    except ValueError:
        return 0.0
    return num_i / den_i if den_i else 0.0


def escape_filter_path(path: Path | str) -> str:
    """Escape a file path for use inside a single-quoted filtergraph option value.

    Backslashes (Windows separators) and colons (drive letters) would otherwise
    be read as escapes and option separators by the filter's option parser.
    A backslash inside single quotes is literal, so each quote is written
    outside the quoted string as an escaped backslash plus an escaped quote. The graph
    parser unquotes one level and leaves an escaped quote for the option parser.
    """
    return (
        str(path)
        .replace("\\", "\\\\")
        .replace(":", "\\:")
        .replace("'", "'\\\\\\''")
    )


def parse_progress_line(line: str) -> float | None:
    """Return processed seconds from one ``-progress`` key=value line, else None.

    ffmpeg reports ``out_time_us`` and ``out_time_ms`` (both in microseconds)
    and ``out_time`` as ``HH:MM:SS.ffffff``; any of them may be ``N/A``.
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    value = value.strip()
    try:
        if key in ("out_time_us", "out_time_ms"):
            return max(int(value) / 1_000_000, 0.0)
        if key == "out_time":
            h, m, s = value.split(":")
            return max(int(h) * 3600 + int(m) * 60 + float(s), 0.0)
    except ValueError:
        return None
    return None


def progress_percent(processed: float, total: float) -> float:
    """Scale processed/total seconds into [0, 100]."""
    if total <= 0:
        return 0.0
    return min(max(processed / total * 100.0, 0.0), 100.0)
