"""Tests for transcode command building and process orchestration (mocked Popen)."""

import io
from pathlib import Path
from unittest.mock import patch

import pytest

from reelcut.cancel import CancelToken
from reelcut.errors import ExportCancelled, ExportIOError, ProcessError
from reelcut.ffutil import FFmpegNotFoundError
from reelcut.manifest import EncoderConfig
from reelcut.models import OutputSegment
from reelcut.transcode import (
    JobStatus,
    TranscodeJob,
    atempo_chain,
    build_command,
    execute,
    run_job,
)


class FakeProcess:
    """Stands in for subprocess.Popen: yields scripted stdout lines."""

    def __init__(self, lines, returncode=0, on_line=None):
        self._lines = lines
        self._returncode = returncode
        self._on_line = on_line
        self.returncode = None
        self.terminated = False
        self.pid = 4242
        self.cmd = None

    @property
    def stdout(self):
        for i, line in enumerate(self._lines):
            if self.terminated:
                return
            if self._on_line:
                self._on_line(i, self)
            yield line + "\n"

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.terminate()

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = self._returncode
        return self.returncode


def _popen_factory(process: FakeProcess, write_output: bool = True):
    def factory(cmd, **kwargs):
        process.cmd = cmd
        if write_output and process._returncode == 0:
            Path(cmd[-1]).write_bytes(b"encoded")
        return process
    return factory


def _cmd_value(cmd: list[str], flag: str) -> str:
    return cmd[cmd.index(flag) + 1]


PROGRESS_LINES = [
    "frame=10",
    "out_time_us=2500000",
    "progress=continue",
    "out_time_us=5000000",
    "out_time_us=7500000",
    "out_time_us=12000000",
    "progress=end",
]


# ---------------------------------------------------------------------------
# build_command
# ---------------------------------------------------------------------------

class TestBuildCommand:
    def test_segment_without_speed(self, encoder):
        job = TranscodeJob(
            input_path=Path("in.mp4"),
            output_path=Path("out.mp4"),
            total_duration=10.0,
            segment=OutputSegment(20.0, 30.0),
        )
        cmd = build_command(job, encoder, EncoderConfig())
        assert cmd[0] == "ffmpeg"
        assert _cmd_value(cmd, "-ss") == "20.000"
        assert _cmd_value(cmd, "-t") == "10.000"
        assert cmd.index("-ss") < cmd.index("-i")
        assert "-filter:v" not in cmd
        assert "-filter:a" not in cmd
        assert _cmd_value(cmd, "-c:v") == "libx264"
        assert _cmd_value(cmd, "-preset") == "medium"
        assert _cmd_value(cmd, "-crf") == "23"
        assert _cmd_value(cmd, "-c:a") == "aac"
        assert _cmd_value(cmd, "-b:a") == "192k"
        assert _cmd_value(cmd, "-progress") == "pipe:1"
        assert cmd[-1] == "out.mp4"

    def test_speed_filters(self, encoder):
        job = TranscodeJob(Path("in.mp4"), Path("out.mp4"), 5.0, segment=OutputSegment(0.0, 10.0, 2.0))
        cmd = build_command(job, encoder, EncoderConfig())
        assert _cmd_value(cmd, "-filter:v") == "setpts=0.5*PTS"
        assert _cmd_value(cmd, "-filter:a") == "atempo=2"

    def test_speed_within_tolerance_is_not_filtered(self, encoder):
        job = TranscodeJob(Path("in.mp4"), Path("out.mp4"), 10.0, segment=OutputSegment(0.0, 10.0, 1.005))
        cmd = build_command(job, encoder, EncoderConfig())
        assert "-filter:v" not in cmd

    def test_no_audio(self, encoder):
        job = TranscodeJob(
            Path("in.mp4"), Path("out.mp4"), 5.0,
            segment=OutputSegment(0.0, 10.0, 2.0), has_audio=False,
        )
        cmd = build_command(job, encoder, EncoderConfig())
        assert "-filter:a" not in cmd
        assert "-c:a" not in cmd
        assert "-an" in cmd

    def test_whole_file_overlay(self, encoder):
        job = TranscodeJob(Path("in.mp4"), Path("out.mp4"), 60.0, overlay_path=Path("/tmp/o.ass"))
        cmd = build_command(job, encoder, EncoderConfig())
        assert "-ss" not in cmd
        assert _cmd_value(cmd, "-filter:v") == "ass='/tmp/o.ass'"

    def test_segment_overlay_is_shifted_to_source_time(self, encoder):
        job = TranscodeJob(
            Path("in.mp4"), Path("out.mp4"), 5.0,
            segment=OutputSegment(20.0, 30.0, 2.0), overlay_path=Path("/tmp/o.ass"),
        )
        vf = _cmd_value(build_command(job, encoder, EncoderConfig()), "-filter:v")
        assert vf == "setpts=PTS+20.000/TB,ass='/tmp/o.ass',setpts=PTS-STARTPTS,setpts=0.5*PTS"

    def test_config_overrides_and_explicit_output(self, encoder):
        config = EncoderConfig(crf=18, preset="slow")
        job = TranscodeJob(Path("in.mp4"), Path("out.mp4"), 1.0)
        cmd = build_command(job, encoder, config, output_path=Path("stage.mp4"))
        assert _cmd_value(cmd, "-crf") == "18"
        assert _cmd_value(cmd, "-preset") == "slow"
        assert cmd[-1] == "stage.mp4"


class TestAtempoChain:
    @pytest.mark.parametrize(
        "ratio, expected",
        [
            (1.5, "atempo=1.5"),
            (4.0, "atempo=2,atempo=2"),
            (0.25, "atempo=0.5,atempo=0.5"),
            (3.0, "atempo=2,atempo=1.5"),
        ],
    )
    def test_chain(self, ratio, expected):
        assert atempo_chain(ratio) == expected


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------

class TestExecute:
    def test_progress_reported_and_clamped(self):
        proc = FakeProcess(PROGRESS_LINES)
        seen: list[float] = []
        with patch("reelcut.transcode.subprocess.Popen", side_effect=_popen_factory(proc, write_output=False)):
            result = execute(["ffmpeg", "out.mp4"], total_duration=10.0, on_progress=seen.append)
        assert result.ok
        assert seen == [25.0, 50.0, 75.0, 100.0]

    def test_nonzero_exit_reports_diagnostics(self):
        lines = ["in.mp4: Invalid data found when processing input", "out_time_us=0"]
        proc = FakeProcess(lines, returncode=1)
        with patch("reelcut.transcode.subprocess.Popen", side_effect=_popen_factory(proc, write_output=False)):
            result = execute(["ffmpeg", "out.mp4"], total_duration=10.0)
        assert result.status == JobStatus.FAILED
        assert isinstance(result.error, ProcessError)
        assert "code 1" in result.reason
        assert "Invalid data found" in result.reason
        assert "out_time_us" not in result.reason

    def test_undecodable_output_does_not_abort(self):
        raw = b"  title           : Caf\xe9 \xff\nout_time_us=5000000\nError opening output\n"
        proc = FakeProcess([], returncode=1)

        def factory(cmd, **kwargs):
            # Decode the way a real pipe would with the given Popen arguments
            stream = io.TextIOWrapper(
                io.BytesIO(raw), encoding=kwargs.get("encoding"), errors=kwargs.get("errors")
            )
            proc._lines = stream.read().splitlines()
            return proc

        seen: list[float] = []
        with patch("reelcut.transcode.subprocess.Popen", side_effect=factory):
            result = execute(["ffmpeg", "out.mp4"], total_duration=10.0, on_progress=seen.append)
        assert seen == [50.0]
        assert result.status == JobStatus.FAILED
        assert "Caf\ufffd \ufffd" in result.reason
        assert "Error opening output" in result.reason

    def test_error_in_read_loop_kills_process(self):
        def explode(i, proc):
            if i == 1:
                raise RuntimeError("callback failed")

        proc = FakeProcess(PROGRESS_LINES, on_line=explode)
        with patch("reelcut.transcode.subprocess.Popen", side_effect=_popen_factory(proc, write_output=False)):
            with pytest.raises(RuntimeError, match="callback failed"):
                execute(["ffmpeg", "out.mp4"], total_duration=10.0)
        assert proc.terminated
        assert proc.returncode is not None

    def test_missing_binary(self):
        with patch("reelcut.transcode.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
            result = execute(["ffmpeg", "out.mp4"])
        assert result.status == JobStatus.FAILED
        assert isinstance(result.error, FFmpegNotFoundError)

    def test_already_cancelled_never_launches(self):
        token = CancelToken()
        token.cancel()
        with patch("reelcut.transcode.subprocess.Popen") as mock_popen:
            result = execute(["ffmpeg", "out.mp4"], cancel=token)
        mock_popen.assert_not_called()
        assert result.status == JobStatus.CANCELLED
        assert isinstance(result.error, ExportCancelled)

    def test_cancel_terminates_running_process(self):
        token = CancelToken()

        def cancel_midway(i, proc):
            if i == 2:
                token.cancel()

        proc = FakeProcess(PROGRESS_LINES, on_line=cancel_midway)
        seen: list[float] = []
        with patch("reelcut.transcode.subprocess.Popen", side_effect=_popen_factory(proc, write_output=False)):
            result = execute(["ffmpeg", "out.mp4"], total_duration=10.0, on_progress=seen.append, cancel=token)
        assert proc.terminated
        assert result.status == JobStatus.CANCELLED
        assert seen == [25.0]


# ---------------------------------------------------------------------------
# run_job
# ---------------------------------------------------------------------------

class TestRunJob:
    def test_success_renames_into_place(self, tmp_path, encoder):
        out = tmp_path / "seg.mp4"
        job = TranscodeJob(Path("in.mp4"), out, 10.0, segment=OutputSegment(0.0, 10.0))
        proc = FakeProcess(PROGRESS_LINES)
        with patch("reelcut.transcode.subprocess.Popen", side_effect=_popen_factory(proc)):
            result = run_job(job, encoder)
        assert result.ok
        assert out.read_bytes() == b"encoded"
        assert proc.cmd[-1] != str(out)
        assert list(tmp_path.iterdir()) == [out]

    def test_failure_leaves_no_output(self, tmp_path, encoder):
        out = tmp_path / "seg.mp4"
        job = TranscodeJob(Path("in.mp4"), out, 10.0)
        proc = FakeProcess(["boom"], returncode=1)

        def factory(cmd, **kwargs):
            Path(cmd[-1]).write_bytes(b"half")
            return proc

        with patch("reelcut.transcode.subprocess.Popen", side_effect=factory):
            result = run_job(job, encoder)
        assert result.status == JobStatus.FAILED
        assert list(tmp_path.iterdir()) == []

    def test_cancel_leaves_no_output(self, tmp_path, encoder):
        token = CancelToken()
        out = tmp_path / "seg.mp4"
        job = TranscodeJob(Path("in.mp4"), out, 10.0)

        def cancel_first(i, proc):
            token.cancel()

        proc = FakeProcess(PROGRESS_LINES, on_line=cancel_first)

        def factory(cmd, **kwargs):
            Path(cmd[-1]).write_bytes(b"half")
            return proc

        with patch("reelcut.transcode.subprocess.Popen", side_effect=factory):
            result = run_job(job, encoder, cancel=token)
        assert result.status == JobStatus.CANCELLED
        assert list(tmp_path.iterdir()) == []

    def test_rename_failure_is_io_error(self, tmp_path, encoder):
        out = tmp_path / "seg.mp4"
        job = TranscodeJob(Path("in.mp4"), out, 10.0)
        proc = FakeProcess(PROGRESS_LINES)
        with patch("reelcut.transcode.subprocess.Popen", side_effect=_popen_factory(proc)), \
                patch("reelcut.transcode.os.replace", side_effect=PermissionError("denied")):
            result = run_job(job, encoder)
        assert result.status == JobStatus.FAILED
        assert isinstance(result.error, ExportIOError)
        assert list(tmp_path.iterdir()) == []
