from flask import Blueprint, abort, current_app, send_file, send_from_directory

from app.board.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/uploads/<path:name>")
def uploaded_file(name: str):
    """Public access to uploaded post and profile images."""
    storage = storage_from_config(current_app.config)
    if isinstance(storage, LocalStorage):
        return send_from_directory(storage.root, name)
    try:
        if not storage.exists(name):
            abort(404)
        return send_file(storage.open(name), download_name=name)
    except StorageError:
        current_app.logger.exception("Upload read failed: %s", name)
        abort(404)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s probes. No DB access, minimal overhead.
    """
    return "ok", 200
