"""Segment planner — turns edit operations into the ordered list of output segments."""

from enum import Enum

from reelcut.errors import PlanningError
from reelcut.models import EditKind, EditOperation, OutputSegment


class PlanMode(str, Enum):
    TRIM = "trim"
    SPLIT = "split"
    SWEEP = "sweep"


def plan_mode(edits: list[EditOperation]) -> PlanMode:
    """Which planning branch applies: a trim wins over splits, splits over cuts/speed."""
    kinds = {e.kind for e in edits}
    if EditKind.TRIM in kinds:
        return PlanMode.TRIM
    if EditKind.SPLIT in kinds:
        return PlanMode.SPLIT
    return PlanMode.SWEEP


def _merge_cuts(cuts: list[EditOperation], duration: float) -> list[tuple[float, float]]:
    """Clamp cut intervals to [0, duration] and coalesce overlapping ones."""
    merged: list[tuple[float, float]] = []
    for cut in cuts:
        start = min(cut.start, duration)
        end = min(cut.end, duration)
        if end <= start:
            continue
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _speed_at(time: float, speed_edits: list[EditOperation]) -> float:
    for edit in speed_edits:
        if edit.start <= time <= edit.end:
            return edit.speed_ratio
    return 1.0


def _plan_trim(duration: float, trim: EditOperation) -> list[OutputSegment]:
    start = min(max(trim.start, 0.0), duration)
    end = min(trim.end, duration)
    if end <= start:
        return []
    return [OutputSegment(start=start, end=end)]


def _plan_split(duration: float, splits: list[EditOperation]) -> list[OutputSegment]:
    points = sorted({s.start for s in splits if 0.0 < s.start < duration})
    bounds = [0.0, *points, duration]
    return [
        OutputSegment(start=a, end=b)
        for a, b in zip(bounds, bounds[1:])
    ]


def _plan_sweep(duration: float, edits: list[EditOperation]) -> list[OutputSegment]:
    cuts = _merge_cuts([e for e in edits if e.kind == EditKind.CUT], duration)
    speed_edits = [e for e in edits if e.kind == EditKind.SPEED_CHANGE]

    segments: list[OutputSegment] = []
    cursor = 0.0

    while cursor < duration:
        next_cut = next((c for c in cuts if c[0] >= cursor), None)
        if next_cut is None:
            # Trailing keep region
            segments.append(
                OutputSegment(start=cursor, end=duration, speed_ratio=_speed_at(cursor, speed_edits))
            )
            break

        cut_start, cut_end = next_cut
        if cut_start > cursor:
            segments.append(
                OutputSegment(start=cursor, end=cut_start, speed_ratio=_speed_at(cursor, speed_edits))
            )
        cursor = cut_end

    return segments


def plan(duration: float, edits: list[EditOperation]) -> list[OutputSegment]:
    """Compute the output segments for *edits* over a source of *duration* seconds.

    - Any trim short-circuits everything else: one segment, speed 1.0.
    - Otherwise any split yields standalone parts between the split points.
    - Otherwise the timeline is swept from 0, dropping cut intervals. Each kept
      segment takes the speed of the first speed change covering its *start*;
      a speed change covering only part of a segment does not split it.

    Returns an empty list when nothing survives (e.g. cuts spanning the whole
    duration). The edits are never mutated.
    """
    if not duration > 0:
        raise PlanningError(f"Source duration must be positive (got {duration})")

    ordered = sorted(edits, key=lambda e: e.start)
    mode = plan_mode(ordered)

    if mode == PlanMode.TRIM:
        trim = next(e for e in ordered if e.kind == EditKind.TRIM)
        return _plan_trim(duration, trim)
    if mode == PlanMode.SPLIT:
        return _plan_split(duration, [e for e in ordered if e.kind == EditKind.SPLIT])
    return _plan_sweep(duration, ordered)
