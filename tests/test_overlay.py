"""Tests for the ASS overlay renderer."""

from pathlib import Path

import pytest

from reelcut.editors.overlay import (
    POSITION_STYLES,
    ass_color,
    format_ass_time,
    render_overlay,
    write_overlay,
)
from reelcut.errors import RenderError
from reelcut.models import CuePosition, Rgb, TimedCue


def _events(script: str) -> list[str]:
    return [line for line in script.splitlines() if line.startswith("Dialogue:")]


class TestFormatAssTime:
    @pytest.mark.parametrize(
        "seconds, expected",
        [
            (0.0, "0:00:00.00"),
            (1.5, "0:00:01.50"),
            (61.239, "0:01:01.23"),
            (3600.0, "1:00:00.00"),
            (36000.0 + 5.07, "10:00:05.07"),
            (1.15, "0:00:01.15"),
        ],
    )
    def test_format(self, seconds, expected):
        assert format_ass_time(seconds) == expected


class TestAssColor:
    def test_red_is_written_bgr(self):
        assert ass_color(Rgb(255, 0, 0)) == "&H0000FF"

    def test_mixed(self):
        assert ass_color(Rgb(0x12, 0x34, 0xAB)) == "&HAB3412"


class TestRenderOverlay:
    def test_header(self):
        script = render_overlay([])
        assert script.startswith("[Script Info]\n")
        assert "ScriptType: v4.00+" in script
        assert "WrapStyle: 0" in script
        assert "PlayResX: 1920" in script
        assert "PlayResY: 1080" in script
        assert "ScaledBorderAndShadow: yes" in script
        assert "[V4+ Styles]" in script
        assert "[Events]" in script

    def test_five_styles_one_per_position(self):
        script = render_overlay([])
        styles = [line for line in script.splitlines() if line.startswith("Style:")]
        assert len(styles) == len(CuePosition) == 5
        names = [s.split(",")[0].removeprefix("Style: ") for s in styles]
        assert names == ["BottomCenter", "TopCenter", "Center", "BottomLeft", "BottomRight"]

    def test_style_fields(self):
        script = render_overlay([])
        top = next(l for l in script.splitlines() if l.startswith("Style: TopCenter"))
        fields = top.removeprefix("Style: ").split(",")
        assert fields[2] == "56"
        # outline, shadow, alignment, margins
        assert fields[16:22] == ["3", "3", "8", "40", "40", "40"]

    def test_every_position_has_style(self):
        assert set(POSITION_STYLES) == set(CuePosition)

    def test_font_size_doubled_and_color_override(self):
        cue = TimedCue("Hi", 0.0, 1.0, font_size=48, color=Rgb(255, 0, 0))
        (event,) = _events(render_overlay([cue]))
        assert "{\\fs96\\c&H0000FF}Hi" in event

    def test_overrides_emitted_even_for_defaults(self):
        cue = TimedCue("Plain", 0.0, 1.0, font_size=28, color=Rgb(255, 255, 255))
        (event,) = _events(render_overlay([cue]))
        assert event.endswith("{\\fs56\\c&HFFFFFF}Plain")

    def test_event_line_layout(self):
        cue = TimedCue("Top", 2.5, 4.0, position=CuePosition.TOP_CENTER)
        (event,) = _events(render_overlay([cue]))
        assert event.startswith("Dialogue: 0,0:00:02.50,0:00:04.00,TopCenter,,0,0,0,,{")

    def test_cues_sorted_by_start_stable(self):
        cues = [
            TimedCue("third", 5.0, 6.0),
            TimedCue("first", 1.0, 2.0),
            TimedCue("second", 1.0, 3.0),
        ]
        events = _events(render_overlay(cues))
        assert [e.rsplit("}", 1)[1] for e in events] == ["first", "second", "third"]

    def test_empty_text_is_legal(self):
        (event,) = _events(render_overlay([TimedCue("", 0.0, 1.0)]))
        assert event.endswith("}")

    def test_newlines_become_hard_breaks(self):
        (event,) = _events(render_overlay([TimedCue("a\nb", 0.0, 1.0)]))
        assert event.endswith("}a\\Nb")

    def test_malformed_cue_raises_render_error(self):
        with pytest.raises(RenderError):
            render_overlay([{"text": "nope", "start": 0, "end": 1}])

    def test_non_finite_time_raises_render_error(self):
        cue = TimedCue("x", 0.0, float("inf"))
        with pytest.raises(RenderError, match="non-finite"):
            render_overlay([cue])


class TestWriteOverlay:
    def test_writes_unique_utf8_files(self, tmp_path: Path):
        cues = [TimedCue("字幕", 0.0, 1.0)]
        a = write_overlay(cues, tmp_path)
        b = write_overlay(cues, tmp_path)
        assert a != b
        assert a.suffix == ".ass"
        assert "字幕" in a.read_text(encoding="utf-8")
