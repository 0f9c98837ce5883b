import json
import os

from db import get_db

MAX_NOTE_LENGTH = 1000


def create_scan(scan_type: str = "file", source: str | None = None) -> int:
    """Create a new scan entry and return its scan_id."""
    db = get_db()
    cursor = db.execute(
        "INSERT INTO scan (scan_type, source) VALUES (?, ?)",
        (scan_type, source),
    )
    db.commit()
    return cursor.lastrowid


def _file_type_label(file_type_block: dict, file_name: str):
    label = file_type_block.get("final_type") or file_type_block.get("declared_extension")
    if not label and file_name:
        _, ext = os.path.splitext(file_name)
        label = ext.lstrip(".").lower() or None
    return label


def _yara_rule_names(yara_block) -> list:
    matches = (yara_block or {}).get("matches") or []
    return [m["rule"] for m in matches if isinstance(m, dict) and "rule" in m]


def save_file_result(scan_id: int, file_name: str, analysis_result: dict) -> int:
    """
    Save one analyze_file() result into the file table.

    The complete result is kept in analysis_json; the summary columns exist
    for history listings and filtering.
    """
    file_type_block = analysis_result.get("file_type") or {}
    entropy_block = analysis_result.get("entropy") or {}
    vt_report = analysis_result.get("virustotal") or {}
    ml_block = analysis_result.get("ml") or {}
    final_block = analysis_result.get("final_verdict") or {}
    malware_block = analysis_result.get("malware_type") or {}

    rule_names = _yara_rule_names(analysis_result.get("yara"))

    db = get_db()
    cursor = db.execute(
        """
        INSERT INTO file (
            scan_id, file_name, file_type_detected, entropy_value, yara_hits,
            file_hash, vt_malicious_count, vt_total_engines, ml_verdict,
            ml_score, ml_vote, final_verdict, risk_score, malware_type, is_pe,
            analysis_json
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            scan_id,
            file_name,
            _file_type_label(file_type_block, file_name),
            entropy_block.get("overall_entropy"),
            json.dumps(rule_names) if rule_names else None,
            analysis_result.get("sha256") or vt_report.get("sha256"),
            vt_report.get("malicious"),
            vt_report.get("total_engines"),
            ml_block.get("ml_verdict"),
            ml_block.get("ml_score"),
            ml_block.get("vote_label"),
            final_block.get("verdict"),
            final_block.get("final_score"),
            malware_block.get("label"),
            1 if file_type_block.get("is_pe") else 0,
            json.dumps(analysis_result),
        ),
    )
    db.execute("UPDATE scan SET file_count = file_count + 1 WHERE scan_id = ?", (scan_id,))
    db.commit()
    return cursor.lastrowid


def get_scan(scan_id: int):
    row = get_db().execute(
        "SELECT scan_id, scan_type, source, file_count, created_at FROM scan WHERE scan_id = ?",
        (scan_id,),
    ).fetchone()
    return dict(row) if row else None


def load_scan_results(scan_id: int) -> list:
    """Rebuild the per-file results of one scan from analysis_json."""
    rows = get_db().execute(
        """
        SELECT file_id, file_name, analyst_note, analyst_note_at, analysis_json
        FROM file
        WHERE scan_id = ?
        ORDER BY file_id ASC
        """,
        (scan_id,),
    ).fetchall()

    results = []
    for row in rows:
        try:
            analysis = json.loads(row["analysis_json"]) if row["analysis_json"] else {}
        except ValueError:
            analysis = {}

        results.append({
            "file_id": row["file_id"],
            "file_name": row["file_name"],
            "analysis": analysis,
            "analyst_note": row["analyst_note"],
            "analyst_note_at": row["analyst_note_at"],
        })
    return results


def list_scans(limit: int = 20) -> list:
    """Most recent scans with a verdict breakdown."""
    rows = get_db().execute(
        """
        SELECT s.scan_id, s.scan_type, s.source, s.file_count, s.created_at,
               SUM(CASE WHEN f.final_verdict = 'malicious' THEN 1 ELSE 0 END) AS malicious,
               SUM(CASE WHEN f.final_verdict = 'suspicious' THEN 1 ELSE 0 END) AS suspicious,
               SUM(CASE WHEN f.final_verdict = 'benign' THEN 1 ELSE 0 END) AS benign
        FROM scan s
        LEFT JOIN file f ON f.scan_id = s.scan_id
        GROUP BY s.scan_id
        ORDER BY s.scan_id DESC
        LIMIT ?
        """,
        (limit,),
    ).fetchall()
    return [
        {**dict(row), **{k: row[k] or 0 for k in ("malicious", "suspicious", "benign")}}
        for row in rows
    ]


def save_analyst_note(file_id: int, note_text: str):
    """
    Store an analyst note (truncated to MAX_NOTE_LENGTH).

    Returns the update timestamp, or None when the file does not exist.
    """
    db = get_db()
    cur = db.execute(
        """
        UPDATE file
        SET analyst_note = ?, analyst_note_at = CURRENT_TIMESTAMP
        WHERE file_id = ?
        """,
        (note_text[:MAX_NOTE_LENGTH], file_id),
    )
    db.commit()

    if cur.rowcount == 0:
        return None

    row = db.execute("SELECT analyst_note_at FROM file WHERE file_id = ?", (file_id,)).fetchone()
    return row["analyst_note_at"]
