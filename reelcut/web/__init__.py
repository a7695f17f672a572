"""Flask application factory for the Reelcut job API.

Each app owns its job store (``app.extensions["reelcut_jobs"]``) and a base
``EncoderConfig`` read from the environment once at startup; exports get a
copy with a per-job temp dir.
"""

import os
import tempfile
from pathlib import Path

from flask import Flask, jsonify

from reelcut.manifest import EncoderConfig

DEFAULT_MAX_UPLOAD_MB = 10 * 1024


def create_app(work_dir: Path | None = None, encoder: EncoderConfig | None = None) -> Flask:
    app = Flask(__name__)

    if work_dir is None and os.environ.get("REELCUT_WORK_DIR"):
        work_dir = Path(os.environ["REELCUT_WORK_DIR"])
    if work_dir is None:
        work_dir = Path(tempfile.mkdtemp(prefix="reelcut_"))
    work_dir = Path(work_dir)
    work_dir.mkdir(parents=True, exist_ok=True)

    max_upload_mb = int(os.environ.get("REELCUT_MAX_UPLOAD_MB", DEFAULT_MAX_UPLOAD_MB))
    app.config["WORK_DIR"] = work_dir
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["ENCODER"] = encoder or EncoderConfig.from_env()
    app.extensions["reelcut_jobs"] = {}

    from reelcut.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def upload_too_large(error):
        return jsonify({"error": f"Upload exceeds {max_upload_mb} MB"}), 413

    return app
