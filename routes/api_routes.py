# routes/api_routes.py

from flask import Blueprint, current_app, jsonify
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from Scanners.ensemble import load_ensemble
from Scanners.errors import EnsembleError
from Scanners.yara_scanner import rules_available

api_bp = Blueprint("api", __name__, url_prefix="/api")


def error_response(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


@api_bp.app_errorhandler(RequestEntityTooLarge)
def upload_too_large(e):
    limit = current_app.config.get("MAX_UPLOAD_MB")
    return error_response(f"Upload exceeds the {limit} MB limit", 413)


@api_bp.app_errorhandler(HTTPException)
def http_error(e):
    return error_response(e.description or e.name, e.code or 500)


@api_bp.route("/health", methods=["GET"])
def health():
    """Which engines are ready; the desktop shell polls this on start-up."""
    models_error = None
    try:
        ensemble = load_ensemble(current_app.config["MODELS_DIR"])
        model_names = [m.name for m in ensemble.members]
    except EnsembleError as e:
        model_names = []
        models_error = str(e)

    return jsonify({
        "ok": True,
        "models": model_names,
        "models_error": models_error,
        "tie_break": current_app.config["TIE_BREAK"],
        "yara_enabled": rules_available(current_app.config["YARA_DIR"]),
        "virustotal_configured": bool(current_app.config.get("VT_API_KEY")),
        "callgraph_default": bool(current_app.config["CALLGRAPH"]),
    })
