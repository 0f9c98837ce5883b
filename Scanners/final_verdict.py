from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

Report = Optional[Dict[str, Any]]
Component = Tuple[int, List[str]]

# Weights for each engine when computing the global risk score.
WEIGHTS: Dict[str, float] = {
    "file_type": 0.05,
    "entropy": 0.10,
    "yara": 0.30,
    "virustotal": 0.30,
    "ml": 0.25,
}

# 0-29 benign, 30-59 suspicious, >= 60 malicious
VERDICT_THRESHOLDS = {
    "benign_max": 29,
    "suspicious_max": 59,
}

STRONG_SIGNAL = 70

YARA_SEVERITY = {
    "low": 20,
    "medium": 40,
    "high": 70,
    "critical": 90,
}

DOC_LIKE_EXTS = {"txt", "pdf", "doc", "docx", "rtf", "xls", "xlsx", "ppt", "pptx"}
IMAGE_LIKE_EXTS = {"png", "jpg", "jpeg", "gif", "bmp"}


def _clamp_score(value: float, minimum: int = 0, maximum: int = 100) -> int:
    """Clamp a floating-point score into an integer 0-100."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        v = 0.0
    return int(round(max(minimum, min(maximum, v))))


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _vt_detections(vt_info: Report) -> Optional[Tuple[int, float]]:
    """(detections, ratio) for a usable VT report, else None."""
    if not vt_info or vt_info.get("enabled") is False or not vt_info.get("found") \
            or vt_info.get("error"):
        return None
    detections = _safe_int(vt_info.get("malicious")) + _safe_int(vt_info.get("suspicious"))
    total = _safe_int(vt_info.get("total_engines"))
    return detections, (detections / float(total) if total > 0 else 0.0)


# ---------------------------------------------------------------------------
# Per-component scoring helpers
# ---------------------------------------------------------------------------

def score_file_type(file_type_info: Report) -> Component:
    if not file_type_info:
        return 0, ["FILETYPE_NOT_AVAILABLE"]

    flags: List[str] = []
    score = 0
    declared_ext = (file_type_info.get("declared_extension") or "").lower()

    if file_type_info.get("mismatch"):
        score += 30
        flags.append("EXTENSION_MISMATCH")

    # Executable masquerading as a document / image
    if file_type_info.get("final_type") == "exe" and declared_ext in (DOC_LIKE_EXTS | IMAGE_LIKE_EXTS):
        score += 40
        flags.append("HIDDEN_EXECUTABLE")

    return _clamp_score(score), flags


def score_entropy(entropy_info: Report) -> Component:
    if not entropy_info:
        return 0, ["ENTROPY_NOT_AVAILABLE"]

    pe_interp = entropy_info.get("pe_interpretation") or {}
    flags = [f for f in pe_interp.get("flags") or [] if f != "NOT_A_PE_FILE"]
    score = _clamp_score(pe_interp.get("risk_score", 0))

    overall = entropy_info.get("overall_entropy")
    if isinstance(overall, (int, float)):
        if overall > 7.8 and score < 70:
            score = max(score, 60)
            flags.append("OVERALL_ENTROPY_VERY_HIGH")
        elif overall > 7.2 and score < 50:
            score = max(score, 40)
            flags.append("OVERALL_ENTROPY_HIGH")

    return _clamp_score(score), sorted(set(flags))


def score_yara(yara_info: Report) -> Component:
    if not yara_info:
        return 0, ["YARA_NOT_AVAILABLE"]
    if yara_info.get("enabled") is False:
        return 0, ["YARA_DISABLED"]
    if yara_info.get("error"):
        return 0, ["YARA_ERROR"]

    matches = yara_info.get("matches") or []
    if not matches:
        return 0, []

    severities = [str((m.get("meta") or {}).get("severity", "medium")).lower()
                  for m in matches]
    score = max(YARA_SEVERITY.get(s, YARA_SEVERITY["medium"]) for s in severities)

    flags = ["YARA_MATCH"]
    if "critical" in severities:
        flags.append("YARA_CRITICAL")
    return _clamp_score(score), flags


def score_virustotal(vt_info: Report) -> Component:
    if not vt_info:
        return 0, ["VT_NOT_AVAILABLE"]
    if vt_info.get("enabled") is False:
        return 0, ["VT_DISABLED"]
    if vt_info.get("error"):
        return 0, ["VT_ERROR"]
    if not vt_info.get("found"):
        return 0, []

    detections, ratio = _vt_detections(vt_info)

    if detections == 0:
        score = 0
    elif detections <= 3:
        score = 60
    else:
        score = 90

    if ratio >= 0.25:
        score = max(score, 90)
    elif ratio >= 0.10:
        score = max(score, 70)

    return _clamp_score(score), ["VT_DETECTED" if detections > 0 else "VT_CLEAN"]


def score_ml(ml_info: Report) -> Component:
    """
    Turn the ensemble result of score_pe_file() into a 0-100 risk score.

    A disabled or failed ensemble counts as "not available" so its weight
    is redistributed to the other engines.
    """
    if not ml_info or ml_info.get("enabled") is False or ml_info.get("ml_score") is None:
        return 0, ["ML_NOT_AVAILABLE"]

    flags: List[str] = []
    score = _clamp_score(float(ml_info["ml_score"]) * 100.0)

    if ml_info.get("vote_label") == "malicious":
        flags.append("ML_MALICIOUS")
    if ml_info.get("tie"):
        flags.append("ML_SPLIT_DECISION")
    elif len(ml_info.get("members") or []) > 1 and ml_info.get("agreement") == 1.0:
        flags.append("ML_UNANIMOUS")

    return score, flags


# ---------------------------------------------------------------------------
# Final fusion logic
# ---------------------------------------------------------------------------

def _verdict_for(score: int) -> str:
    if score <= VERDICT_THRESHOLDS["benign_max"]:
        return "benign"
    if score <= VERDICT_THRESHOLDS["suspicious_max"]:
        return "suspicious"
    return "malicious"


def compute_final_verdict(
    file_type_info: Report,
    entropy_info: Report,
    yara_info: Report,
    vt_info: Report,
    ml_info: Report,
) -> Dict[str, Any]:
    """
    Combine all engines (file type, entropy, YARA, VirusTotal, ML ensemble)
    into a single numeric score and verdict label.
    """
    components = {
        "file_type": score_file_type(file_type_info),
        "entropy": score_entropy(entropy_info),
        "yara": score_yara(yara_info),
        "virustotal": score_virustotal(vt_info),
        "ml": score_ml(ml_info),
    }
    scores = {name: score for name, (score, _) in components.items()}
    all_flags: List[str] = [f for _, flags in components.values() for f in flags]

    # Engines that could not run (no ML for non-PE files) lose their weight
    # and the remaining weights are renormalised.
    weights = WEIGHTS.copy()
    if "ML_NOT_AVAILABLE" in components["ml"][1]:
        weights["ml"] = 0.0
    total_w = sum(weights.values()) or 1.0

    final_score = _clamp_score(
        sum(weights[name] * scores[name] for name in weights) / total_w)
    verdict = _verdict_for(final_score)

    # ------------------------------------------------------------------
    # Override rules (logic on top of the numeric score)
    # ------------------------------------------------------------------
    vt = _vt_detections(vt_info)

    # 1) Strong VirusTotal detection → force malicious.
    if vt is not None and (vt[0] >= 3 or vt[1] >= 0.10):
        verdict = "malicious"
        all_flags.append("OVERRIDE_VT_MALICIOUS")

    # 2) Critical YARA rule → force malicious.
    if "YARA_CRITICAL" in all_flags:
        verdict = "malicious"
        all_flags.append("OVERRIDE_YARA_CRITICAL")

    # 3) All signals clean → force benign.
    all_clean = (
        vt is not None and vt[0] == 0
        and scores["yara"] == 0
        and scores["ml"] < 30
        and scores["entropy"] < 50
    )
    if all_clean:
        final_score = min(final_score, VERDICT_THRESHOLDS["benign_max"])
        verdict = "benign"
        all_flags.append("OVERRIDE_ALL_CLEAN")

    # 4) Only entropy is high, others are quiet → keep at most 'suspicious'.
    if (
        scores["entropy"] >= 60
        and scores["yara"] == 0
        and scores["virustotal"] == 0
        and scores["ml"] < 50
        and verdict == "malicious"
    ):
        verdict = "suspicious"
        all_flags.append("OVERRIDE_ENTROPY_ONLY")

    # a split ensemble vote is not a strong signal, whatever its score
    strong = ["virustotal", "yara", "entropy"]
    if "ML_SPLIT_DECISION" not in all_flags:
        strong.append("ml")
    strong_signals = sum(1 for name in strong if scores[name] >= STRONG_SIGNAL)

    if strong_signals >= 2:
        confidence = "high"
    elif strong_signals == 1:
        confidence = "medium"
    else:
        confidence = "low"

    return {
        "final_score": final_score,
        "verdict": verdict,
        "confidence": confidence,
        "component_scores": scores,
        "flags": sorted(set(all_flags)),
    }
