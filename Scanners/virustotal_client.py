import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

VT_FILE_URL = "https://www.virustotal.com/api/v3/files/{}"
VT_GUI_URL = "https://www.virustotal.com/gui/file/{}"

CHUNK_SIZE = 8192

# HTTP status -> error text for the lookups VirusTotal refuses
STATUS_ERRORS = {
    401: "Unauthorized (check API key)",
    403: "Forbidden (API key lacks access)",
    429: "Rate limit exceeded",
}


def file_sha256(path) -> str:
    """Hex SHA-256 of a file, read in chunks."""
    hasher = hashlib.sha256()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def _stat(stats: dict, key: str) -> int:
    return int(stats.get(key, 0) or 0)


def _threat_label(attrs: dict) -> Optional[str]:
    threat_cat = attrs.get("popular_threat_classification") or {}
    label = None
    if isinstance(threat_cat, dict):
        label = threat_cat.get("suggested_threat_label")
        if not label:
            # e.g. {"popular_threat_category": [{"value": "trojan", "count": 12}]}
            categories = threat_cat.get("popular_threat_category") or []
            if categories and isinstance(categories[0], dict):
                label = categories[0].get("value")
    return label or attrs.get("type_tag")


def vt_lookup_file(sha256: str, api_key: str, timeout: int = 10) -> Dict[str, Any]:
    """
    Look up a file hash on VirusTotal (v3 API).

    Returns a simplified dict with detection stats and verdict.
    """
    resp = requests.get(
        VT_FILE_URL.format(sha256),
        headers={"x-apikey": api_key},
        timeout=timeout,
    )

    # 404 = VT has never seen this hash
    if resp.status_code == 404:
        return {"found": False, "error": None}

    if resp.status_code != 200:
        error = STATUS_ERRORS.get(resp.status_code, f"HTTP {resp.status_code}")
        return {"found": False, "error": error}

    attrs = resp.json().get("data", {}).get("attributes", {})
    stats = attrs.get("last_analysis_stats", {}) or {}

    malicious = _stat(stats, "malicious")
    suspicious = _stat(stats, "suspicious")
    harmless = _stat(stats, "harmless")
    undetected = _stat(stats, "undetected")
    timeouts = _stat(stats, "timeout")

    if malicious or suspicious:
        verdict = "malicious"
    elif harmless:
        verdict = "clean"
    else:
        verdict = "unknown"

    return {
        "found": True,
        "error": None,
        "harmless": harmless,
        "malicious": malicious,
        "suspicious": suspicious,
        "undetected": undetected,
        "timeout": timeouts,
        "total_engines": malicious + suspicious + harmless + undetected + timeouts,
        "verdict": verdict,
        "permalink": VT_GUI_URL.format(sha256),
        "threat_label": _threat_label(attrs),
        "tags": attrs.get("tags") or [],
    }


def get_virustotal_report(path: str, api_key: Optional[str],
                          sha256: Optional[str] = None) -> Dict[str, Any]:
    """
    - No API key: VT is disabled.
    - Otherwise hash the file (unless sha256 is given) and query VT.
    Always returns a stable dict; network errors land in "error".
    """
    if not api_key:
        return {"enabled": False, "found": False, "error": "API key not configured"}

    try:
        sha256 = sha256 or file_sha256(path)
        report = vt_lookup_file(sha256, api_key)
    except (requests.RequestException, ValueError, OSError) as e:
        logger.warning("[VT] Lookup failed for %s: %s", path, e)
        return {"enabled": True, "found": False, "error": str(e)}

    report["enabled"] = True
    report["sha256"] = sha256
    return report
