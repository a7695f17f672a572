"""Overlay script renderer — turns timed cues into an ASS burn-in script."""

import math
import uuid
from pathlib import Path

from reelcut.errors import RenderError
from reelcut.models import CuePosition, Rgb, TimedCue

PLAY_RES_X = 1920
PLAY_RES_Y = 1080
DEFAULT_FONT = "Yu Gothic UI"
# Preview canvas is half the size of the render canvas, so sizes are doubled.
FONT_SCALE = 2
STYLE_FONT_SIZE = 28 * FONT_SCALE
OUTLINE = 3
SHADOW = 3
MARGIN = 40

# Style name and numpad alignment for each position.
POSITION_STYLES: dict[CuePosition, tuple[str, int]] = {
    CuePosition.BOTTOM_CENTER: ("BottomCenter", 2),
    CuePosition.TOP_CENTER: ("TopCenter", 8),
    CuePosition.CENTER: ("Center", 5),
    CuePosition.BOTTOM_LEFT: ("BottomLeft", 1),
    CuePosition.BOTTOM_RIGHT: ("BottomRight", 3),
}

_missing = set(CuePosition) - set(POSITION_STYLES)
if _missing:
    raise RuntimeError(f"No overlay style defined for {sorted(p.name for p in _missing)}")

STYLE_FORMAT = (
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
    "BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, "
    "BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding"
)
EVENT_FORMAT = "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"


def format_ass_time(seconds: float) -> str:
    """Format seconds as ``H:MM:SS.CC``."""
    cs = round(seconds * 1000) // 10
    h, rem = divmod(cs, 360000)
    m, rem = divmod(rem, 6000)
    s, cs = divmod(rem, 100)
    return f"{h}:{m:02d}:{s:02d}.{cs:02d}"


def ass_color(color: Rgb) -> str:
    """ASS colors are written blue-green-red."""
    return f"&H{color.b:02X}{color.g:02X}{color.r:02X}"


def _style_line(name: str, alignment: int, font_name: str) -> str:
    fields = [
        name, font_name, STYLE_FONT_SIZE,
        "&H00FFFFFF", "&H000000FF", "&H00000000", "&H00000000",
        -1, 0, 0, 0,            # bold, italic, underline, strikeout
        100, 100, 0, 0,         # scale x/y, spacing, angle
        1, OUTLINE, SHADOW, alignment,
        MARGIN, MARGIN, MARGIN, 1,
    ]
    return "Style: " + ",".join(str(f) for f in fields)


def _dialogue_line(cue: TimedCue) -> str:
    if not isinstance(cue, TimedCue):
        raise RenderError(f"Expected a TimedCue, got {type(cue).__name__}")
    if not (math.isfinite(cue.start) and math.isfinite(cue.end)):
        raise RenderError(f"Cue has non-finite times: {cue.start}..{cue.end}")
    try:
        style_name, _ = POSITION_STYLES[cue.position]
    except KeyError:
        raise RenderError(f"Unknown cue position: {cue.position!r}") from None

    font_size = int(cue.font_size * FONT_SCALE)
    overrides = f"{{\\fs{font_size}\\c{ass_color(cue.color)}}}"
    # ASS events are single-line; hard breaks are written as \N
    text = cue.text.replace("\r\n", "\n").replace("\n", "\\N")
    return (
        f"Dialogue: 0,{format_ass_time(cue.start)},{format_ass_time(cue.end)},"
        f"{style_name},,0,0,0,,{overrides}{text}"
    )


def render_overlay(cues: list[TimedCue], font_name: str = DEFAULT_FONT) -> str:
    """Render *cues* as ASS script text.

    Cues are ordered by start time (stable). Every event carries explicit
    ``\\fs`` and ``\\c`` overrides so the rendered size and color never depend
    on the style table.
    """
    try:
        ordered = sorted(cues, key=lambda c: c.start)
    except (AttributeError, TypeError) as e:
        raise RenderError(f"Malformed cue list: {e}") from e

    lines = [
        "[Script Info]",
        "Title: Reelcut Overlay",
        "ScriptType: v4.00+",
        "WrapStyle: 0",
        f"PlayResX: {PLAY_RES_X}",
        f"PlayResY: {PLAY_RES_Y}",
        "ScaledBorderAndShadow: yes",
        "",
        "[V4+ Styles]",
        STYLE_FORMAT,
    ]
    for position in CuePosition:
        name, alignment = POSITION_STYLES[position]
        lines.append(_style_line(name, alignment, font_name))
    lines += ["", "[Events]", EVENT_FORMAT]
    lines += [_dialogue_line(cue) for cue in ordered]
    return "\n".join(lines) + "\n"


def write_overlay(
    cues: list[TimedCue], directory: Path, font_name: str = DEFAULT_FONT
) -> Path:
    """Render *cues* into a uniquely named ``.ass`` file inside *directory*."""
    script = render_overlay(cues, font_name=font_name)
    path = Path(directory) / f"overlay_{uuid.uuid4().hex}.ass"
    path.write_text(script, encoding="utf-8")
    return path
