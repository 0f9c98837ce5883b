import logging
import os

from .callgraph import DEFAULT_MAX_NODES, build_call_graph
from .ensemble import TIE_BREAK_POLICIES
from .entropy import file_entropy
from .entropy_rules import interpret_pe_entropy
from .errors import NotAPEFileError
from .file_type import detect_file_type
from .final_verdict import compute_final_verdict
from .malware_type import infer_malware_type
from .pe_ml_runtime import score_pe_file
from .pe_parser import analyze_pe_entropy, parse_pe
from .virustotal_client import file_sha256, get_virustotal_report
from .yara_scanner import scan_file_with_yara

logger = logging.getLogger(__name__)


def _run_ml(file_path, models_dir, tie_break, parsed=None):
    try:
        return score_pe_file(file_path, models_dir=models_dir, tie_break=tie_break,
                             parsed=parsed)
    except Exception as e:
        # If something goes wrong, don't break the whole scan
        logger.exception("[ML] Scoring failed for %s", file_path)
        return {"enabled": True, "error": str(e), "ml_score": None, "ml_verdict": None}


def analyze_file(
    file_path: str,
    vt_api_key: str | None = None,
    models_dir=None,
    yara_dir=None,
    tie_break: str = "mean",
    callgraph: bool = False,
    callgraph_max_nodes: int = DEFAULT_MAX_NODES,
) -> dict:
    """
    Run every engine on one file and fuse the results into a verdict.

    PE-only stages (section entropy, the model ensemble, call graph) are
    skipped for anything that is not a PE image; their keys stay None.

    Raises ValueError for an unknown tie-break policy; every other engine
    failure ends up in that engine's "error" field.
    """
    if tie_break not in TIE_BREAK_POLICIES:
        raise ValueError(
            f"Unknown tie-break policy {tie_break!r}; "
            f"expected one of {', '.join(TIE_BREAK_POLICIES)}")

    logger.info("Analyzing %s", file_path)

    file_type_info = detect_file_type(file_path)
    sha256 = file_sha256(file_path)
    overall = file_entropy(file_path)

    pe_report = None
    pe_interpretation = None
    ml_result = None
    callgraph_result = {"enabled": False}

    if file_type_info["is_pe"]:
        try:
            parsed = parse_pe(file_path)
        except NotAPEFileError as e:
            logger.warning("PE signature present but parsing failed for %s: %s", file_path, e)
            parsed = None

        if parsed is not None:
            pe_report = analyze_pe_entropy(file_path, parsed=parsed)
            pe_interpretation = interpret_pe_entropy(pe_report)
            ml_result = _run_ml(file_path, models_dir, tie_break, parsed=parsed)

            if callgraph:
                callgraph_result = build_call_graph(file_path, max_nodes=callgraph_max_nodes)

    yara_report = scan_file_with_yara(file_path, rules_dir=yara_dir)
    vt_report = get_virustotal_report(file_path, vt_api_key, sha256=sha256)
    malware_type = infer_malware_type(vt_report, yara_report)

    entropy_info = {
        "overall_entropy": overall,
        "pe_report": pe_report,
        "pe_interpretation": pe_interpretation,
    }

    final_verdict = compute_final_verdict(
        file_type_info=file_type_info,
        entropy_info=entropy_info,
        yara_info=yara_report,
        vt_info=vt_report,
        ml_info=ml_result,
    )

    logger.info("%s -> %s (score %s)", file_path,
                final_verdict["verdict"], final_verdict["final_score"])

    return {
        "file_name": os.path.basename(file_path),
        "sha256": sha256,
        "size": os.path.getsize(file_path),
        "file_type": file_type_info,
        "entropy": entropy_info,
        "yara": yara_report,
        "virustotal": vt_report,
        "ml": ml_result,
        "callgraph": callgraph_result,
        "malware_type": malware_type,
        "final_verdict": final_verdict,
    }
