import logging
import os
import sys

from Scanners.ensemble import TIE_BREAK_POLICIES

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Defaults, each one can be overridden by the environment variable of the same
# name prefixed with MAIWARE_ (VT_API_KEY is read as-is).
DEFAULTS = {
    "DB_PATH": os.path.join(BASE_DIR, "maiware.db"),
    "UPLOAD_FOLDER": os.path.join(BASE_DIR, "uploads"),
    "MODELS_DIR": os.path.join(BASE_DIR, "models"),
    "YARA_DIR": os.path.join(BASE_DIR, "yara_rules"),
    "TIE_BREAK": "mean",
    "CALLGRAPH": False,
    "CALLGRAPH_MAX_NODES": 500,
    "MAX_UPLOAD_MB": 64,
    "LOG_LEVEL": "INFO",
}


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(environ=None) -> dict:
    """
    Build the settings dict from DEFAULTS + environment.

    Integers and booleans are converted to the type of their default.
    """
    environ = os.environ if environ is None else environ
    config = dict(DEFAULTS)

    for key, default in DEFAULTS.items():
        raw = environ.get(f"MAIWARE_{key}")
        if raw is None or raw == "":
            continue
        if isinstance(default, bool):
            config[key] = _as_bool(raw)
        elif isinstance(default, int):
            try:
                config[key] = int(raw)
            except ValueError:
                raise ValueError(f"MAIWARE_{key} must be an integer, got {raw!r}") from None
        else:
            config[key] = raw

    if config["TIE_BREAK"] not in TIE_BREAK_POLICIES:
        raise ValueError(
            f"MAIWARE_TIE_BREAK must be one of {', '.join(TIE_BREAK_POLICIES)}")

    config["VT_API_KEY"] = environ.get("VT_API_KEY") or None
    return config


def configure_logging(level="INFO"):
    """Send every maiware logger to stderr; stdout is reserved for JSON output."""
    formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level if isinstance(level, int) else str(level).upper())
