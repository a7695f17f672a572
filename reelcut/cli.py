"""Thin CLI entry point — builds an export manifest and calls the engine."""

import argparse
import logging
import sys
from pathlib import Path

from reelcut.editors.captions import write_captions
from reelcut.engine import ExportState, compute_segments, start_export
from reelcut.errors import PlanningError
from reelcut.manifest import EncoderConfig, ExportManifest, load_cues, load_manifest
from reelcut.models import EditKind, EditOperation


def _parse_range(value: str) -> tuple[float, float]:
    try:
        start, end = value.split("-", 1)
        return float(start), float(end)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected START-END seconds, got {value!r}") from None


def _cut(value: str) -> EditOperation:
    start, end = _parse_range(value)
    return EditOperation(EditKind.CUT, start, end)


def _trim(value: str) -> EditOperation:
    start, end = _parse_range(value)
    return EditOperation(EditKind.TRIM, start, end)


def _split(value: str) -> EditOperation:
    t = float(value)
    return EditOperation(EditKind.SPLIT, t, t)


def _speed(value: str) -> EditOperation:
    try:
        span, ratio = value.rsplit("x", 1)
        start, end = _parse_range(span)
        return EditOperation(EditKind.SPEED_CHANGE, start, end, speed_ratio=float(ratio))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected START-ENDxRATIO, got {value!r}") from None


def _add_edit_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--cut", type=_cut, action="append", default=[], metavar="A-B", help="Remove A..B seconds")
    parser.add_argument("--trim", type=_trim, action="append", default=[], metavar="A-B", help="Keep only A..B seconds")
    parser.add_argument("--split", type=_split, action="append", default=[], metavar="T", help="Split into parts at T seconds")
    parser.add_argument("--speed", type=_speed, action="append", default=[], metavar="A-BxR", help="Play A..B at R times speed")


def _collect_edits(args: argparse.Namespace) -> list[EditOperation]:
    return [*args.cut, *args.trim, *args.split, *args.speed]


def _cmd_plan(args: argparse.Namespace) -> int:
    try:
        segments = compute_segments(args.duration, _collect_edits(args))
    except PlanningError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    for i, seg in enumerate(segments, 1):
        print(f"  {i:3d}  {seg.start:10.3f} -> {seg.end:10.3f}  x{seg.speed_ratio:g}")
    return 0


def _cmd_captions(args: argparse.Namespace) -> int:
    cues = load_cues(args.cues)
    path = write_captions(cues, args.output)
    print(f"Captions: {path}")
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    if args.manifest:
        m = load_manifest(args.manifest)
    elif args.video:
        output = args.output or args.video.with_stem(args.video.stem + "_edited")
        m = ExportManifest(
            input=args.video,
            output=output,
            mode="overlay" if args.overlay_only else "edits",
            edits=_collect_edits(args),
            cues=load_cues(args.cues) if args.cues else [],
            encoder=EncoderConfig.from_env(),
        )
    else:
        print("Error: provide either a VIDEO argument or --manifest.", file=sys.stderr)
        return 1

    def on_progress(percent: float) -> None:
        print(f"\r  [{percent:5.1f}%]", end="", flush=True)

    run = start_export(
        m.input,
        m.output,
        edits=m.edits,
        cues=m.cues,
        overlay_only=m.mode == "overlay",
        config=m.encoder,
        on_progress=on_progress,
    )
    try:
        result = run.wait()
    except KeyboardInterrupt:
        print("\nCancelling...", file=sys.stderr)
        run.cancel()
        result = run.wait()

    print()
    if result.state == ExportState.CANCELLED:
        print("Cancelled.", file=sys.stderr)
        return 130
    if not result.ok:
        print(f"Error: {result.reason}", file=sys.stderr)
        return 1

    print("Done!")
    for path in result.outputs:
        print(f"  Output: {path}")
    if result.segments:
        print(f"  Segments: {len(result.segments)}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="reelcut",
        description="Reelcut — cut, trim, split, speed-change and burn text overlays into a video.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log ffmpeg commands")
    sub = parser.add_subparsers(dest="command")

    exp = sub.add_parser("export", help="Export an edited video")
    exp.add_argument("video", nargs="?", type=Path, help="Input video file")
    exp.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    exp.add_argument("--output", "-o", type=Path, help="Output file path")
    exp.add_argument("--cues", type=Path, help="JSON file of overlay cues to burn in")
    exp.add_argument("--overlay-only", action="store_true", help="Burn cues into the whole file, ignoring edits")
    _add_edit_args(exp)

    pl = sub.add_parser("plan", help="Print the segments an edit list produces")
    pl.add_argument("--duration", type=float, required=True, help="Source duration in seconds")
    _add_edit_args(pl)

    cap = sub.add_parser("captions", help="Write cues as an SRT or VTT file")
    cap.add_argument("cues", type=Path, help="JSON file of cues")
    cap.add_argument("--output", "-o", type=Path, required=True, help="Output .srt or .vtt path")

    serve = sub.add_parser("serve", help="Launch the HTTP job API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from reelcut.web import create_app
        app = create_app()
        print(f"Reelcut job API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False)
        return

    handlers = {"export": _cmd_export, "plan": _cmd_plan, "captions": _cmd_captions}
    sys.exit(handlers[args.command](args))
