"""Segment concatenator — joins already-encoded parts into one output file."""

import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path

from reelcut import ffutil
from reelcut.cancel import CancelToken
from reelcut.errors import ExportIOError
from reelcut.transcode import JobResult, execute, remove_quietly, staging_path

logger = logging.getLogger(__name__)


def _move(src: Path, dst: Path) -> None:
    try:
        os.replace(src, dst)
    except OSError:
        # Across filesystems os.replace fails; shutil.move copies then deletes
        shutil.move(str(src), str(dst))


def write_concat_list(parts: list[Path], path: Path) -> Path:
    """Write a concat-demuxer list, one ``file '...'`` line per part, in order."""
    lines = []
    for part in parts:
        escaped = str(Path(part).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def concatenate(
    parts: list[Path],
    output_path: Path,
    encoder: ffutil.Encoder,
    cancel: CancelToken | None = None,
    temp_dir: Path | None = None,
    kill_timeout: float = 5.0,
) -> JobResult:
    """Join *parts* into *output_path* without re-encoding.

    A single part is simply moved into place. Parts are never deleted here;
    the caller owns them.
    """
    if not parts:
        return JobResult.failed(ExportIOError("concatenate called with no parts"))

    if len(parts) == 1:
        try:
            _move(parts[0], output_path)
        except OSError as e:
            return JobResult.failed(ExportIOError(f"Could not move {parts[0]} to {output_path}: {e}"))
        return JobResult.completed()

    directory = Path(temp_dir or tempfile.gettempdir())
    list_path = directory / f"concat_{uuid.uuid4().hex}.txt"
    staging = staging_path(output_path)
    try:
        try:
            write_concat_list(parts, list_path)
        except OSError as e:
            return JobResult.failed(ExportIOError(f"Could not write concat list {list_path}: {e}"))

        logger.info("Concatenating %d parts -> %s", len(parts), output_path.name)
        cmd = [
            encoder.ffmpeg, "-hide_banner", "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(list_path),
            "-c", "copy",
            "-nostats", "-progress", "pipe:1",
            str(staging),
        ]
        result = execute(cmd, cancel=cancel, kill_timeout=kill_timeout)
        if result.ok:
            try:
                os.replace(staging, output_path)
            except OSError as e:
                return JobResult.failed(
                    ExportIOError(f"Could not move concatenated file to {output_path}: {e}")
                )
        return result
    finally:
        remove_quietly(list_path)
        remove_quietly(staging)
