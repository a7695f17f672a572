"""Caption editor — writes timed-text sidecar files from overlay cues."""

from pathlib import Path

from reelcut.models import TimedCue


def _split_ms(seconds: float) -> tuple[int, int, int, int]:
    total_ms = round(seconds * 1000)
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return h, m, s, ms


def _format_srt_time(seconds: float) -> str:
    h, m, s, ms = _split_ms(seconds)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def _format_vtt_time(seconds: float) -> str:
    h, m, s, ms = _split_ms(seconds)
    return f"{h:02d}:{m:02d}:{s:02d}.{ms:03d}"


def render_srt(cues: list[TimedCue]) -> str:
    lines: list[str] = []
    for i, cue in enumerate(sorted(cues, key=lambda c: c.start), 1):
        lines.append(str(i))
        lines.append(f"{_format_srt_time(cue.start)} --> {_format_srt_time(cue.end)}")
        lines.append(cue.text)
        lines.append("")
    return "\n".join(lines) + ("\n" if lines else "")


def render_vtt(cues: list[TimedCue]) -> str:
    lines: list[str] = ["WEBVTT", ""]
    for cue in sorted(cues, key=lambda c: c.start):
        lines.append(f"{_format_vtt_time(cue.start)} --> {_format_vtt_time(cue.end)}")
        lines.append(cue.text)
        lines.append("")
    return "\n".join(lines) + "\n"


def write_srt(cues: list[TimedCue], path: Path) -> Path:
    path.write_text(render_srt(cues), encoding="utf-8")
    return path


def write_vtt(cues: list[TimedCue], path: Path) -> Path:
    path.write_text(render_vtt(cues), encoding="utf-8")
    return path


def write_captions(cues: list[TimedCue], path: Path) -> Path:
    """Write a subtitle sidecar file, choosing the format from the suffix."""
    if path.suffix.lower() == ".vtt":
        return write_vtt(cues, path)
    return write_srt(cues, path)
