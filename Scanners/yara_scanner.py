import logging
from pathlib import Path

import yara

logger = logging.getLogger(__name__)

# Compiled rules per rules directory (None = directory unusable)
_RULES = {}


def default_rules_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "yara_rules"


def _load_yara_rules(rules_dir=None):
    """
    Find and compile all YARA rule files of a directory, once.

    Each file becomes its own namespace (the file name without extension).
    """
    rules_dir = Path(rules_dir) if rules_dir else default_rules_dir()
    key = str(rules_dir.resolve())

    if key in _RULES:
        return _RULES[key]

    rules = None
    yar_files = []
    if rules_dir.is_dir():
        yar_files = sorted(rules_dir.glob("*.yar")) + sorted(rules_dir.glob("*.yara"))

    if not rules_dir.is_dir():
        logger.warning("[YARA] Rules directory not found: %s", rules_dir)
    elif not yar_files:
        logger.warning("[YARA] No .yar files found in %s, YARA will be disabled.", rules_dir)
    else:
        filepaths = {f.stem: str(f) for f in yar_files}
        try:
            rules = yara.compile(filepaths=filepaths)
            logger.info("[YARA] Loaded %d rule file(s) from %s", len(filepaths), rules_dir)
        except yara.Error as e:
            logger.error("[YARA] Failed to compile rules: %s", e)

    _RULES[key] = rules
    return rules


def rules_available(rules_dir=None) -> bool:
    return _load_yara_rules(rules_dir) is not None


def reset_rules_cache():
    _RULES.clear()


def scan_file_with_yara(file_path: str, rules_dir=None) -> dict:
    """
    Scan a single file with all loaded YARA rules.

    Returns a dictionary like:
    {
        "enabled": bool,
        "error": Optional[str],
        "matches": [
            {"rule": str, "namespace": str, "tags": [str, ...], "meta": {...}},
            ...
        ]
    }
    """
    rules = _load_yara_rules(rules_dir)

    if rules is None:
        return {"enabled": False, "error": None, "matches": []}

    try:
        matches = rules.match(filepath=file_path)
    except yara.Error as e:
        logger.error("[YARA] Error while scanning %s: %s", file_path, e)
        return {"enabled": True, "error": str(e), "matches": []}

    return {
        "enabled": True,
        "error": None,
        "matches": [
            {
                "rule": m.rule,
                "namespace": m.namespace,
                "tags": list(m.tags),
                "meta": dict(m.meta),
            }
            for m in matches
        ],
    }
