import logging
from pathlib import Path

from .ensemble import load_ensemble
from .errors import EnsembleError
from .features import extract_features

logger = logging.getLogger(__name__)


def get_project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def default_models_dir() -> Path:
    return get_project_root() / "models"


def score_pe_file(file_path, models_dir=None, tie_break: str = "mean", parsed=None) -> dict:
    """
    Extract features from a PE file and let the model ensemble vote on it.

    Returns the ensemble result (probability, 3-level verdict, per-model
    ballots) or {"enabled": False} when no models are installed. An
    already-parsed parse_pe() dict can be passed to skip parsing again.
    """
    models_dir = Path(models_dir) if models_dir else default_models_dir()

    try:
        ensemble = load_ensemble(models_dir)
    except EnsembleError as e:
        logger.error("[ML] %s", e)
        return {"enabled": True, "error": str(e), "ml_score": None, "ml_verdict": None}

    if not len(ensemble):
        return {
            "enabled": False,
            "error": f"No models found in {models_dir}",
            "ml_score": None,
            "ml_verdict": None,
        }

    X = extract_features(file_path, parsed=parsed)
    return ensemble.vote(X, tie_break=tie_break)
