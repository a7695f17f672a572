"""HTTP routes: upload a source, start an export, stream progress, cancel, download."""

import dataclasses
import json
import queue
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    send_file,
)

from reelcut.engine import TERMINAL_STATES, ExportState, start_export
from reelcut.manifest import cue_from_dict, edit_from_dict

bp = Blueprint("web", __name__)


def _jobs() -> dict[str, dict]:
    """The current app's job store: job_id -> job dict."""
    return current_app.extensions["reelcut_jobs"]


def _job_or_404(job_id: str):
    job = _jobs().get(job_id)
    if job is None:
        return None, (jsonify({"error": "Job not found"}), 404)
    return job, None


def _job_status(job: dict) -> str:
    run = job.get("run")
    if run is None:
        return "uploaded"
    return run.state.value


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    ext = Path(f.filename).suffix or ".mp4"
    input_path = job_dir / f"input{ext}"
    f.save(input_path)

    _jobs()[job_id] = {
        "dir": job_dir,
        "input_path": input_path,
        "filename": f.filename,
        "run": None,
    }

    return jsonify({"job_id": job_id, "filename": f.filename})


@bp.route("/api/jobs/<job_id>/export", methods=["POST"])
def start(job_id: str):
    job, err = _job_or_404(job_id)
    if err:
        return err

    run = job.get("run")
    if run is not None and not run.done:
        return jsonify({"error": f"Job is already {run.state.value}"}), 409

    config = request.get_json(silent=True) or {}
    mode = config.get("mode", "edits")
    if mode not in ("edits", "overlay"):
        return jsonify({"error": f"Unknown mode: {mode}"}), 400
    try:
        edits = [edit_from_dict(e) for e in config.get("edits", [])]
        cues = [cue_from_dict(c) for c in config.get("cues", [])]
    except (ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400

    input_path = job["input_path"]
    output_path = job["dir"] / f"output{input_path.suffix}"
    encoder = dataclasses.replace(current_app.config["ENCODER"], temp_dir=job["dir"] / "tmp")

    job["run"] = start_export(
        input_path,
        output_path,
        edits=edits,
        cues=cues,
        overlay_only=mode == "overlay",
        config=encoder,
    )
    return jsonify({"status": "started"})


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel(job_id: str):
    job, err = _job_or_404(job_id)
    if err:
        return err

    run = job.get("run")
    if run is None or run.done:
        return jsonify({"error": "No export in progress"}), 409
    run.cancel()
    return jsonify({"status": "cancelling"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    job, err = _job_or_404(job_id)
    if err:
        return err

    run = job.get("run")
    if run is None:
        return jsonify({"error": "No export in progress"}), 409

    def generate():
        while True:
            try:
                msg = run.progress.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                result = run.result
                if result is None or not result.ok:
                    data = json.dumps({
                        "state": result.state.value if result else ExportState.FAILED.value,
                        "error": result.reason if result else "Export did not finish",
                    })
                else:
                    data = json.dumps({
                        "state": "complete",
                        "progress": 100.0,
                        "outputs": [p.name for p in result.outputs],
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps({'state': run.state.value, 'progress': round(msg, 2)})}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    job, err = _job_or_404(job_id)
    if err:
        return err

    run = job.get("run")
    if run is None or run.result is None or not run.result.ok:
        return jsonify({"error": "Job not complete"}), 409

    index = request.args.get("part", default=1, type=int)
    outputs = run.result.outputs
    if not 1 <= index <= len(outputs):
        return jsonify({"error": f"No part {index}"}), 404
    return send_file(outputs[index - 1], as_attachment=False)


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    job, err = _job_or_404(job_id)
    if err:
        return err

    run = job.get("run")
    resp = {"status": _job_status(job), "filename": job.get("filename")}
    if run is not None and run.state in TERMINAL_STATES and run.result is not None:
        result = run.result
        if result.ok:
            resp["result"] = {
                "outputs": [str(p) for p in result.outputs],
                "segments": [
                    {"start": s.start, "end": s.end, "speed_ratio": s.speed_ratio}
                    for s in result.segments
                ],
            }
        else:
            resp["error"] = result.reason
    return jsonify(resp)
