import logging

from db import get_db

logger = logging.getLogger(__name__)

SEVERITY_LEVELS = {
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def log_event(scan_id=None, file_id=None, event_type="INFO", detail=None, severity="INFO"):
    """
    Record an audit event in the system_log table and mirror it to the
    application log.

    event_type: e.g. "SCAN_STARTED", "FILE_SCANNED", "YARA_MATCH"
    severity:   "INFO", "WARNING", "ERROR"
    """
    logger.log(SEVERITY_LEVELS.get(severity, logging.INFO),
               "%s scan=%s file=%s %s", event_type, scan_id, file_id, detail or "")

    db = get_db()
    db.execute(
        """
        INSERT INTO system_log (scan_id, file_id, event_type, event_detail, severity)
        VALUES (?, ?, ?, ?, ?)
        """,
        (scan_id, file_id, event_type, detail, severity),
    )
    db.commit()


def get_scan_events(scan_id):
    rows = get_db().execute(
        """
        SELECT log_id, file_id, event_type, event_detail, severity, created_at
        FROM system_log
        WHERE scan_id = ?
        ORDER BY log_id ASC
        """,
        (scan_id,),
    ).fetchall()
    return [dict(row) for row in rows]
