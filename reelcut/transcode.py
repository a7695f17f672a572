"""Transcode jobs — one ffmpeg invocation each, with progress and cancellation."""

import logging
import os
import re
import subprocess
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from reelcut import ffutil
from reelcut.cancel import CancelToken
from reelcut.errors import ExportCancelled, ExportIOError, ProcessError, ReelcutError
from reelcut.manifest import EncoderConfig
from reelcut.models import OutputSegment

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]  # 0.0 - 100.0

SPEED_EPSILON = 0.01
ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0
TAIL_LINES = 40

# Lines of the -progress key=value block, as opposed to diagnostics.
_PROGRESS_KV = re.compile(r"^\w+=")


class JobStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobResult:
    status: JobStatus
    reason: str | None = None
    error: ReelcutError | None = None

    @property
    def ok(self) -> bool:
        return self.status == JobStatus.COMPLETED

    @classmethod
    def completed(cls) -> "JobResult":
        return cls(JobStatus.COMPLETED)

    @classmethod
    def failed(cls, error: ReelcutError) -> "JobResult":
        return cls(JobStatus.FAILED, reason=str(error), error=error)

    @classmethod
    def cancelled(cls) -> "JobResult":
        return cls(JobStatus.CANCELLED, reason="Cancelled", error=ExportCancelled("Export cancelled"))


@dataclass
class TranscodeJob:
    """One encoder invocation.

    ``segment`` is a source time range; None means the whole file.
    ``total_duration`` is the length of the *output* in seconds and is what
    progress is scaled against.
    """

    input_path: Path
    output_path: Path
    total_duration: float
    segment: OutputSegment | None = None
    overlay_path: Path | None = None
    has_audio: bool = True

    @property
    def speed_ratio(self) -> float:
        return self.segment.speed_ratio if self.segment else 1.0

    @property
    def changes_speed(self) -> bool:
        return abs(self.speed_ratio - 1.0) > SPEED_EPSILON


def atempo_chain(ratio: float) -> str:
    """Express *ratio* as chained atempo filters, each within [0.5, 2.0]."""
    factors: list[float] = []
    while ratio > ATEMPO_MAX:
        factors.append(ATEMPO_MAX)
        ratio /= ATEMPO_MAX
    while ratio < ATEMPO_MIN:
        factors.append(ATEMPO_MIN)
        ratio /= ATEMPO_MIN
    factors.append(ratio)
    return ",".join(f"atempo={f:g}" for f in factors)


def _video_filters(job: TranscodeJob) -> list[str]:
    filters: list[str] = []
    if job.overlay_path is not None:
        ass = f"ass='{ffutil.escape_filter_path(job.overlay_path)}'"
        if job.segment is not None:
            # Input seeking rebases timestamps to zero; the script is timed
            # against the source, so shift into source time and back.
            filters += [
                f"setpts=PTS+{job.segment.start:.3f}/TB",
                ass,
                "setpts=PTS-STARTPTS",
            ]
        else:
            filters.append(ass)
    if job.changes_speed:
        filters.append(f"setpts={1.0 / job.speed_ratio:g}*PTS")
    return filters


def build_command(
    job: TranscodeJob, encoder: ffutil.Encoder, config: EncoderConfig, output_path: Path | None = None
) -> list[str]:
    """Build the ffmpeg argv for *job*, writing to *output_path* (default: the job's output)."""
    cmd = [encoder.ffmpeg, "-hide_banner", "-y"]
    if job.segment is not None:
        cmd += ["-ss", f"{job.segment.start:.3f}", "-t", f"{job.segment.duration:.3f}"]
    cmd += ["-i", str(job.input_path)]

    video_filters = _video_filters(job)
    if video_filters:
        cmd += ["-filter:v", ",".join(video_filters)]
    if job.has_audio and job.changes_speed:
        cmd += ["-filter:a", atempo_chain(job.speed_ratio)]

    cmd += [
        "-c:v", config.video_codec,
        "-preset", config.preset,
        "-crf", str(config.crf),
    ]
    if job.has_audio:
        cmd += ["-c:a", config.audio_codec, "-b:a", config.audio_bitrate]
    else:
        cmd.append("-an")

    cmd += ["-nostats", "-progress", "pipe:1", str(output_path or job.output_path)]
    return cmd


def staging_path(output_path: Path) -> Path:
    """A sibling of *output_path* that is never mistaken for a finished file."""
    return output_path.with_name(f".{output_path.stem}.{uuid.uuid4().hex}.partial{output_path.suffix}")


def remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


def execute(
    cmd: list[str],
    total_duration: float = 0.0,
    on_progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
    kill_timeout: float = 5.0,
) -> JobResult:
    """Run ffmpeg, streaming ``-progress`` output into *on_progress*.

    stderr is merged into stdout so the tail of ffmpeg's diagnostics is
    available for the failure reason. ffmpeg echoes metadata and file names
    as raw bytes, so undecodable output is replaced rather than raised.
    Cancellation terminates the process.
    """
    cancel = cancel or CancelToken()
    if cancel.cancelled:
        return JobResult.cancelled()

    logger.debug("Command: %s", " ".join(cmd))
    try:
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
        )
    except OSError as e:
        return JobResult.failed(ffutil.FFmpegNotFoundError(f"Could not launch {cmd[0]}: {e}"))

    def _terminate() -> None:
        if process.poll() is None:
            logger.info("Cancelling ffmpeg (pid %s)", process.pid)
            process.terminate()

    tail: deque[str] = deque(maxlen=TAIL_LINES)
    last_percent = -1.0

    with cancel.on_cancel(_terminate):
        try:
            for line in process.stdout:
                line = line.strip()
                if not line:
                    continue
                processed = ffutil.parse_progress_line(line)
                if processed is None:
                    if not _PROGRESS_KV.match(line):
                        tail.append(line)
                    continue
                percent = ffutil.progress_percent(processed, total_duration)
                if percent != last_percent and on_progress:
                    on_progress(percent)
                last_percent = percent
        except BaseException:
            # Never leave an orphaned encoder behind
            process.kill()
            process.wait()
            raise

        try:
            returncode = process.wait(timeout=kill_timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            returncode = process.wait()

    if cancel.cancelled:
        return JobResult.cancelled()
    if returncode != 0:
        diagnostics = "\n".join(tail)
        return JobResult.failed(
            ProcessError(f"ffmpeg failed (code {returncode}). Output:\n{diagnostics}".rstrip())
        )
    return JobResult.completed()


def run_job(
    job: TranscodeJob,
    encoder: ffutil.Encoder,
    config: EncoderConfig | None = None,
    on_progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
) -> JobResult:
    """Encode *job* into a staging file and rename it into place on success."""
    config = config or EncoderConfig()
    staging = staging_path(job.output_path)
    cmd = build_command(job, encoder, config, output_path=staging)

    if job.segment is not None:
        logger.info(
            "Encoding %.3f-%.3fs (x%g) -> %s",
            job.segment.start, job.segment.end, job.speed_ratio, job.output_path.name,
        )
    else:
        logger.info("Encoding whole file -> %s", job.output_path.name)

    try:
        result = execute(
            cmd,
            total_duration=job.total_duration,
            on_progress=on_progress,
            cancel=cancel,
            kill_timeout=config.kill_timeout,
        )
        if result.ok:
            try:
                os.replace(staging, job.output_path)
            except OSError as e:
                return JobResult.failed(
                    ExportIOError(f"Could not move encoded file to {job.output_path}: {e}")
                )
        return result
    finally:
        remove_quietly(staging)
