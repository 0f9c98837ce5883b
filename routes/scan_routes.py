# routes/scan_routes.py

import os

from flask import current_app, jsonify, request
from werkzeug.utils import secure_filename

from config import TIE_BREAK_POLICIES
from DB_helpers.logs import get_scan_events, log_event
from DB_helpers.scans import (
    MAX_NOTE_LENGTH,
    create_scan,
    get_scan,
    list_scans,
    load_scan_results,
    save_analyst_note,
    save_file_result,
)
from Scanners.easy_results import format_verdict
from Scanners.file_type import is_corrupted
from Scanners.static_analysis import analyze_file
from .api_routes import api_bp, error_response


def _flag(value) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _remove_upload(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _log_engine_events(scan_id, file_id, name, analysis):
    rule_names = [m["rule"] for m in (analysis.get("yara") or {}).get("matches") or []]
    if rule_names:
        log_event(
            scan_id=scan_id,
            file_id=file_id,
            event_type="YARA_MATCH",
            detail=f"{name}: {', '.join(rule_names)}",
            severity="WARNING",
        )

    ml = analysis.get("ml") or {}
    if ml.get("vote_label") == "malicious":
        detail = f"{name}: ensemble score {ml['ml_score']:.3f}"
        if ml.get("tie"):
            detail += f" (tie broken by {ml.get('tie_break')})"
        log_event(
            scan_id=scan_id,
            file_id=file_id,
            event_type="ML_MALICIOUS",
            detail=detail,
            severity="WARNING",
        )


@api_bp.route("/scan", methods=["POST"])
def scan_upload():
    """
    Multipart upload of one or more files under the "files" field.

    Optional form fields:
      callgraph=1        also recover the call graph (slow)
      tie_break=<policy> override the ensemble tie-break policy
    """
    uploads = [f for f in request.files.getlist("files") if f and f.filename]
    if not uploads:
        return error_response("No files uploaded (use the 'files' field)", 400)

    tie_break = request.form.get("tie_break") or current_app.config["TIE_BREAK"]
    if tie_break not in TIE_BREAK_POLICIES:
        return error_response(
            f"tie_break must be one of {', '.join(TIE_BREAK_POLICIES)}", 400)

    callgraph = request.form.get("callgraph")
    callgraph = _flag(callgraph) if callgraph is not None else current_app.config["CALLGRAPH"]

    upload_folder = current_app.config["UPLOAD_FOLDER"]
    scan_id = create_scan(scan_type="file", source=request.remote_addr)
    log_event(
        scan_id=scan_id,
        event_type="SCAN_STARTED",
        detail=f"Scan started for {len(uploads)} file(s).",
    )

    results = []
    for upload in uploads:
        name = secure_filename(upload.filename) or "upload.bin"
        save_path = os.path.join(upload_folder, f"{scan_id}_{name}")
        upload.save(save_path)

        # samples are never kept on disk; the stored analysis_json is the record
        try:
            if is_corrupted(save_path):
                error = "File appears corrupted or unreadable"
                log_event(scan_id=scan_id, event_type="SCAN_ERROR",
                          detail=f"Corrupted file rejected: {name}", severity="ERROR")
                results.append({"file_id": None, "file_name": name, "error": error})
                continue

            analysis = analyze_file(
                save_path,
                vt_api_key=current_app.config.get("VT_API_KEY"),
                models_dir=current_app.config["MODELS_DIR"],
                yara_dir=current_app.config["YARA_DIR"],
                tie_break=tie_break,
                callgraph=callgraph,
                callgraph_max_nodes=current_app.config["CALLGRAPH_MAX_NODES"],
            )
        except OSError as e:
            log_event(scan_id=scan_id, event_type="SCAN_ERROR",
                      detail=f"{name}: {e}", severity="ERROR")
            results.append({"file_id": None, "file_name": name, "error": str(e)})
            continue
        finally:
            _remove_upload(save_path)

        analysis["file_name"] = name
        file_id = save_file_result(scan_id=scan_id, file_name=name, analysis_result=analysis)

        verdict = (analysis.get("final_verdict") or {}).get("verdict") or "unknown"
        log_event(
            scan_id=scan_id,
            file_id=file_id,
            event_type="FILE_SCANNED",
            detail=f"Scanned {name} - verdict: {verdict}",
        )
        _log_engine_events(scan_id, file_id, name, analysis)

        results.append({
            "file_id": file_id,
            "file_name": name,
            "display": format_verdict(verdict),
            "analysis": analysis,
        })

    return jsonify({"ok": True, "scan_id": scan_id, "results": results}), 201


@api_bp.route("/scans", methods=["GET"])
def scan_history():
    limit = request.args.get("limit", default=20, type=int)
    limit = max(1, min(limit, 200))
    return jsonify({"ok": True, "scans": list_scans(limit=limit)})


@api_bp.route("/scans/<int:scan_id>", methods=["GET"])
def scan_detail(scan_id):
    scan = get_scan(scan_id)
    if scan is None:
        return error_response(f"Scan {scan_id} not found", 404)

    results = load_scan_results(scan_id)
    for item in results:
        verdict = (item["analysis"].get("final_verdict") or {}).get("verdict")
        item["display"] = format_verdict(verdict)

    return jsonify({
        "ok": True,
        "scan": scan,
        "results": results,
        "events": get_scan_events(scan_id),
    })


@api_bp.route("/files/<int:file_id>/note", methods=["POST"])
def save_note(file_id):
    """
    Accepts JSON { "note_text": "..." }; returns the stored note and its
    timestamp so the UI can update without reloading.
    """
    data = request.get_json(silent=True) or {}
    note_text = (data.get("note_text") or "").strip()

    updated_at = save_analyst_note(file_id, note_text)
    if updated_at is None:
        return error_response(f"File {file_id} not found", 404)

    return jsonify({
        "ok": True,
        "file_id": file_id,
        "note_text": note_text[:MAX_NOTE_LENGTH],
        "updated_at": updated_at,
    })
