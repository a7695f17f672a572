"""Orchestrator — plans, encodes, concatenates and cleans up one export."""

import logging
import queue
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from reelcut import ffutil
from reelcut.cancel import CancelToken
from reelcut.editors.concat import concatenate
from reelcut.editors.overlay import write_overlay
from reelcut.editors.planner import PlanMode, plan, plan_mode
from reelcut.errors import (
    ExportCancelled,
    ExportIOError,
    PlanningError,
    ReelcutError,
)
from reelcut.manifest import EncoderConfig
from reelcut.models import EditOperation, OutputSegment, ProbeResult, TimedCue
from reelcut.transcode import ProgressCallback, TranscodeJob, remove_quietly, run_job

logger = logging.getLogger(__name__)


class ExportState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    RENDERING_OVERLAY = "rendering_overlay"
    ENCODING = "encoding"
    CONCATENATING = "concatenating"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({ExportState.DONE, ExportState.FAILED, ExportState.CANCELLED})


@dataclass
class ExportResult:
    state: ExportState
    outputs: list[Path] = field(default_factory=list)
    segments: list[OutputSegment] = field(default_factory=list)
    reason: str | None = None
    error: ReelcutError | None = None

    @property
    def ok(self) -> bool:
        return self.state == ExportState.DONE


def compute_segments(duration: float, edits: list[EditOperation]) -> list[OutputSegment]:
    """Plan *edits* and refuse a plan that leaves nothing to export."""
    segments = plan(duration, edits)
    if not segments:
        raise PlanningError("Nothing left to export: the edits remove the entire video")
    return segments


def part_path(output_path: Path, index: int) -> Path:
    """Output path of split part *index* (1-based); part 1 is the output itself."""
    if index == 1:
        return output_path
    return output_path.with_name(f"{output_path.stem}_part{index}{output_path.suffix}")


class ExportPipeline:
    """Runs one export to completion on the calling thread.

    Either ``overlay_only`` (burn cues into the whole file, no timeline edits)
    or an edit export, optionally with cues burned into every segment.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        edits: list[EditOperation] | None = None,
        cues: list[TimedCue] | None = None,
        overlay_only: bool = False,
        config: EncoderConfig | None = None,
        cancel: CancelToken | None = None,
        on_progress: ProgressCallback | None = None,
        on_state: Callable[[ExportState], None] | None = None,
    ):
        self.input_path = Path(input_path)
        self.output_path = Path(output_path)
        self.edits = list(edits or [])
        self.cues = list(cues or [])
        self.overlay_only = overlay_only
        self.config = config or EncoderConfig()
        self.cancel = cancel or CancelToken()
        self._on_progress = on_progress
        self._on_state = on_state

        self.state = ExportState.IDLE
        self.segments: list[OutputSegment] = []
        self._temp_files: list[Path] = []
        self._written_outputs: list[Path] = []

    # -- helpers -----------------------------------------------------------

    def _set_state(self, state: ExportState) -> None:
        self.state = state
        logger.info("Export %s: %s", self.output_path.name, state.value)
        if self._on_state:
            self._on_state(state)

    def _progress(self, percent: float) -> None:
        if self._on_progress:
            self._on_progress(min(max(percent, 0.0), 100.0))

    @property
    def temp_dir(self) -> Path:
        if self.config.temp_dir is None:
            return Path(tempfile.gettempdir())
        self.config.temp_dir.mkdir(parents=True, exist_ok=True)
        return self.config.temp_dir

    def _temp_segment_path(self) -> Path:
        suffix = self.output_path.suffix or ".mp4"
        path = self.temp_dir / f"segment_{uuid.uuid4().hex}{suffix}"
        self._temp_files.append(path)
        return path

    def _render_overlay(self) -> Path:
        self._set_state(ExportState.RENDERING_OVERLAY)
        try:
            path = write_overlay(self.cues, self.temp_dir)
        except OSError as e:
            raise ExportIOError(f"Could not write overlay script: {e}") from e
        self._temp_files.append(path)
        return path

    def _run(self, job: TranscodeJob, encoder: ffutil.Encoder, on_progress: ProgressCallback) -> None:
        self.cancel.raise_if_cancelled()
        result = run_job(job, encoder, self.config, on_progress=on_progress, cancel=self.cancel)
        if not result.ok:
            raise result.error

    # -- phases ------------------------------------------------------------

    def _export_overlay(self, encoder: ffutil.Encoder, probe: ProbeResult) -> list[Path]:
        overlay_path = self._render_overlay()
        job = TranscodeJob(
            input_path=self.input_path,
            output_path=self.output_path,
            total_duration=probe.duration,
            overlay_path=overlay_path,
            has_audio=probe.has_audio,
        )
        self._set_state(ExportState.ENCODING)
        self._run(job, encoder, self._progress)
        return [self.output_path]

    def _export_edits(self, encoder: ffutil.Encoder, probe: ProbeResult) -> list[Path]:
        self.segments = compute_segments(probe.duration, self.edits)
        split = plan_mode(self.edits) == PlanMode.SPLIT
        overlay_path = self._render_overlay() if self.cues else None

        self._set_state(ExportState.ENCODING)
        total = len(self.segments)
        parts: list[Path] = []
        for i, segment in enumerate(self.segments):
            target = part_path(self.output_path, i + 1) if split else self._temp_segment_path()
            job = TranscodeJob(
                input_path=self.input_path,
                output_path=target,
                total_duration=segment.output_duration,
                segment=segment,
                overlay_path=overlay_path,
                has_audio=probe.has_audio,
            )
            logger.info("Segment %d/%d", i + 1, total)

            def on_job_progress(percent: float, done: int = i) -> None:
                self._progress((done + percent / 100.0) / total * 100.0)

            self._run(job, encoder, on_job_progress)
            parts.append(target)
            if split:
                self._written_outputs.append(target)

        if split:
            return parts

        self._set_state(ExportState.CONCATENATING)
        self.cancel.raise_if_cancelled()
        result = concatenate(
            parts,
            self.output_path,
            encoder,
            cancel=self.cancel,
            temp_dir=self.temp_dir,
            kill_timeout=self.config.kill_timeout,
        )
        if not result.ok:
            raise result.error
        return [self.output_path]

    def _cleanup(self, succeeded: bool) -> None:
        for path in self._temp_files:
            remove_quietly(path)
        self._temp_files.clear()
        if not succeeded:
            # A partial set of split parts must not look like a finished export
            for path in self._written_outputs:
                remove_quietly(path)

    def run(self) -> ExportResult:
        error: ReelcutError | None = None
        outputs: list[Path] = []
        succeeded = False
        try:
            self.cancel.raise_if_cancelled()
            self._set_state(ExportState.PLANNING)
            encoder = ffutil.locate_encoder(self.config)
            probe = ffutil.probe(self.input_path, encoder)
            if self.overlay_only:
                outputs = self._export_overlay(encoder, probe)
            else:
                outputs = self._export_edits(encoder, probe)
            succeeded = True
        except ReelcutError as e:
            error = e
        except OSError as e:
            error = ExportIOError(str(e))
        except Exception as e:
            logger.exception("Unexpected error exporting %s", self.input_path.name)
            error = ReelcutError(f"Unexpected error: {e}")
        finally:
            self._set_state(ExportState.CLEANING_UP)
            self._cleanup(succeeded=succeeded)

        if error is None:
            self._progress(100.0)
            self._set_state(ExportState.DONE)
            return ExportResult(ExportState.DONE, outputs=outputs, segments=self.segments)

        state = ExportState.CANCELLED if isinstance(error, ExportCancelled) else ExportState.FAILED
        if state == ExportState.FAILED:
            logger.error("Export of %s failed: %s", self.input_path.name, error)
        self._set_state(state)
        return ExportResult(state, segments=self.segments, reason=str(error), error=error)


def export_with_overlay(
    input_path: Path,
    output_path: Path,
    cues: list[TimedCue],
    cancel: CancelToken | None = None,
    on_progress: ProgressCallback | None = None,
    config: EncoderConfig | None = None,
) -> ExportResult:
    """Burn *cues* into the whole input file; progress is the single job's percentage."""
    return ExportPipeline(
        input_path, output_path,
        cues=cues, overlay_only=True, config=config, cancel=cancel, on_progress=on_progress,
    ).run()


def export_with_edits(
    input_path: Path,
    output_path: Path,
    edits: list[EditOperation],
    cancel: CancelToken | None = None,
    on_progress: ProgressCallback | None = None,
    cues: list[TimedCue] | None = None,
    config: EncoderConfig | None = None,
) -> ExportResult:
    """Apply *edits* (and optionally burn *cues*) segment by segment."""
    return ExportPipeline(
        input_path, output_path,
        edits=edits, cues=cues, config=config, cancel=cancel, on_progress=on_progress,
    ).run()


class ExportRun:
    """A pipeline running on its own thread.

    Progress values are delivered to ``on_progress`` and also queued on
    ``progress``; a ``None`` sentinel follows the final value.
    """

    def __init__(self, pipeline: ExportPipeline):
        self._pipeline = pipeline
        self.progress: queue.Queue = queue.Queue()
        self.result: ExportResult | None = None
        self._finished = threading.Event()
        self._thread = threading.Thread(target=self._target, daemon=True)

    @property
    def cancel_token(self) -> CancelToken:
        return self._pipeline.cancel

    @property
    def state(self) -> ExportState:
        return self._pipeline.state

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    def start(self) -> "ExportRun":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._pipeline.cancel.cancel()

    def wait(self, timeout: float | None = None) -> ExportResult | None:
        """Block until the run finishes; None if *timeout* elapses first."""
        self._finished.wait(timeout)
        return self.result

    def _target(self) -> None:
        try:
            self.result = self._pipeline.run()
        except Exception as e:
            logger.exception("Export crashed")
            self.result = ExportResult(ExportState.FAILED, reason=str(e))
        finally:
            self._finished.set()
            self.progress.put(None)  # sentinel


def start_export(
    input_path: Path,
    output_path: Path,
    *,
    edits: list[EditOperation] | None = None,
    cues: list[TimedCue] | None = None,
    overlay_only: bool = False,
    config: EncoderConfig | None = None,
    on_progress: ProgressCallback | None = None,
    on_state: Callable[[ExportState], None] | None = None,
) -> ExportRun:
    """Start an export in the background and return its handle."""
    run: ExportRun

    def _progress(percent: float) -> None:
        run.progress.put(percent)
        if on_progress:
            on_progress(percent)

    pipeline = ExportPipeline(
        input_path, output_path,
        edits=edits, cues=cues, overlay_only=overlay_only, config=config,
        on_progress=_progress, on_state=on_state,
    )
    run = ExportRun(pipeline)
    return run.start()
