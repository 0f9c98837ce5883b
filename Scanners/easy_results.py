VERDICT_DISPLAY = {
    "benign": {
        "label": "Safe",
        "css": "verdict-safe",
        "message": "No threats detected. This file is safe to use.",
    },
    "suspicious": {
        "label": "Suspicious",
        "css": "verdict-warning",
        "message": "Something unusual was found. Use caution before opening.",
    },
    "malicious": {
        "label": "Malicious",
        "css": "verdict-danger",
        "message": "This file is harmful. Do not open it.",
    },
}

UNKNOWN_DISPLAY = {
    "label": "Unknown",
    "css": "verdict-unknown",
    "message": "We could not fully analyze this file.",
}


def format_verdict(verdict) -> dict:
    """Plain-language block the desktop UI shows next to a scanned file."""
    return dict(VERDICT_DISPLAY.get((verdict or "").lower(), UNKNOWN_DISPLAY))


def summarize(analysis: dict) -> dict:
    """Short, display-ready view of an analyze_file() result."""
    final = analysis.get("final_verdict") or {}
    ml = analysis.get("ml") or {}
    malware_type = analysis.get("malware_type") or {}

    return {
        "file_name": analysis.get("file_name"),
        "sha256": analysis.get("sha256"),
        "verdict": final.get("verdict"),
        "score": final.get("final_score"),
        "confidence": final.get("confidence"),
        "malware_type": malware_type.get("label"),
        "ml_vote": ml.get("vote_label"),
        "display": format_verdict(final.get("verdict")),
    }
