"""
Multi-model ensemble voting.

Every member is a fitted scikit-learn style estimator (LightGBM,
RandomForest, ...) stored with joblib. Each one votes malicious/benign
against its own threshold; votes are weighted and the heavier side wins.
When both sides weigh exactly the same, the configured tie-break policy
decides.
"""
from __future__ import annotations

import json
import logging
import pickle
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
from joblib import load

from .errors import EnsembleError
from .features import FEATURE_DIM, FEATURE_VERSION

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
MODEL_PATTERNS = ("*.pkl", "*.joblib")

# Threshold bands for the 3-level ML verdict
BENIGN_THRESHOLD = 0.3
MALICIOUS_THRESHOLD = 0.7

TIE_BREAK_POLICIES = ("mean", "malicious", "benign", "confident")

_ENSEMBLES: Dict[str, "Ensemble"] = {}


def interpret_ml_probability(prob: float) -> str:
    """
    Converts probability into a clean 3-level verdict:
      <0.3     → benign
      0.3-0.7  → suspicious
      ≥0.7     → malicious
    """
    if prob < BENIGN_THRESHOLD:
        return "benign"
    elif prob < MALICIOUS_THRESHOLD:
        return "suspicious"
    else:
        return "malicious"


@dataclass
class Member:
    name: str
    estimator: Any
    weight: float = 1.0
    threshold: float = 0.5

    def __post_init__(self):
        if self.weight <= 0:
            raise EnsembleError(f"Model {self.name}: weight must be > 0")
        if not 0.0 <= self.threshold <= 1.0:
            raise EnsembleError(f"Model {self.name}: threshold must be in [0, 1]")

    def probability(self, X: np.ndarray) -> float:
        expected = getattr(self.estimator, "n_features_in_", None)
        if expected is not None and expected != X.shape[1]:
            raise EnsembleError(
                f"Model {self.name} expects {expected} features, got {X.shape[1]}")
        return float(self.estimator.predict_proba(X)[0, 1])


class Ensemble:
    def __init__(self, members: List[Member], source: Optional[str] = None):
        self.members = list(members)
        self.source = source

    def __len__(self):
        return len(self.members)

    def vote(self, X: np.ndarray, tie_break: str = "mean") -> Dict[str, Any]:
        """Score one feature row with every member and combine the votes."""
        if tie_break not in TIE_BREAK_POLICIES:
            raise ValueError(
                f"Unknown tie-break policy {tie_break!r}; "
                f"expected one of {', '.join(TIE_BREAK_POLICIES)}")

        X = np.asarray(X, dtype=np.float32)
        if X.ndim == 1:
            X = X.reshape(1, -1)

        ballots = []
        errors = []
        for member in self.members:
            try:
                prob = member.probability(X)
            except Exception as e:
                # one broken model must not take the whole ensemble down
                logger.warning("[ML] Model %s failed: %s", member.name, e)
                errors.append(f"{member.name}: {e}")
                continue

            ballots.append({
                "name": member.name,
                "probability": prob,
                "vote": "malicious" if prob >= member.threshold else "benign",
                "weight": member.weight,
                "threshold": member.threshold,
            })

        if not ballots:
            return {
                "enabled": True,
                "error": "All ensemble members failed",
                "errors": errors,
                "ml_score": None,
                "ml_verdict": None,
                "members": [],
            }

        total_weight = sum(b["weight"] for b in ballots)
        malicious_weight = sum(b["weight"] for b in ballots if b["vote"] == "malicious")
        benign_weight = total_weight - malicious_weight
        score = sum(b["probability"] * b["weight"] for b in ballots) / total_weight

        tie = np.isclose(malicious_weight, benign_weight)
        if tie:
            vote_label = _break_tie(ballots, score, tie_break)
        elif malicious_weight > benign_weight:
            vote_label = "malicious"
        else:
            vote_label = "benign"

        agreeing = malicious_weight if vote_label == "malicious" else benign_weight

        return {
            "enabled": True,
            "error": None,
            "errors": errors,
            "ml_score": score,
            "ml_verdict": interpret_ml_probability(score),
            "vote_label": vote_label,
            "agreement": agreeing / total_weight,
            "tie": bool(tie),
            "tie_break": tie_break,
            "members": ballots,
            "benign_threshold": BENIGN_THRESHOLD,
            "malicious_threshold": MALICIOUS_THRESHOLD,
        }


def _break_tie(ballots, score: float, policy: str) -> str:
    if policy == "malicious":
        return "malicious"
    if policy == "benign":
        return "benign"
    if policy == "mean":
        return "malicious" if score >= 0.5 else "benign"

    # "confident": the member furthest from its own threshold decides
    margins = [abs(b["probability"] - b["threshold"]) for b in ballots]
    best = max(margins)
    leaders = {b["vote"] for b, m in zip(ballots, margins) if np.isclose(m, best)}
    if len(leaders) == 1:
        return leaders.pop()
    return "malicious"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _load_estimator(path: Path):
    try:
        return load(path)
    except (OSError, EOFError, ValueError, ImportError, AttributeError,
            pickle.UnpicklingError) as e:
        raise EnsembleError(f"Cannot load model {path.name}: {e!r}") from e


def _load_manifest(models_dir: Path) -> List[Member]:
    manifest_path = models_dir / MANIFEST_NAME
    try:
        with manifest_path.open("r", encoding="utf-8") as f:
            manifest = json.load(f)
    except (OSError, ValueError) as e:
        raise EnsembleError(f"Unreadable {manifest_path}: {e}") from e

    if not isinstance(manifest, dict):
        raise EnsembleError(f"{manifest_path} must hold a JSON object")

    version = manifest.get("feature_version", FEATURE_VERSION)
    if version != FEATURE_VERSION:
        raise EnsembleError(
            f"Models in {models_dir} were trained on feature version {version}, "
            f"this build extracts version {FEATURE_VERSION}")

    dim = manifest.get("feature_dim", FEATURE_DIM)
    if dim != FEATURE_DIM:
        raise EnsembleError(
            f"Models in {models_dir} expect {dim} features, got {FEATURE_DIM}")

    members = []
    for i, entry in enumerate(manifest.get("models") or []):
        try:
            path = models_dir / entry["file"]
            members.append(Member(
                name=entry.get("name") or path.stem,
                estimator=_load_estimator(path),
                weight=float(entry.get("weight", 1.0)),
                threshold=float(entry.get("threshold", 0.5)),
            ))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise EnsembleError(f"{manifest_path}: bad model entry #{i}: {e!r}") from e
    return members


def _load_directory(models_dir: Path) -> List[Member]:
    paths = sorted(p for pattern in MODEL_PATTERNS for p in models_dir.glob(pattern))
    return [Member(name=p.stem, estimator=_load_estimator(p)) for p in paths]


def load_ensemble(models_dir) -> Ensemble:
    """
    Loads every model of a directory once and reuses it.

    manifest.json (if present) lists members with weights and thresholds,
    otherwise each *.pkl / *.joblib file is a member with weight 1.
    """
    models_dir = Path(models_dir).resolve()
    key = str(models_dir)

    if key in _ENSEMBLES:
        return _ENSEMBLES[key]

    if not models_dir.is_dir():
        logger.warning("[ML] Models directory not found: %s", models_dir)
        members = []
    elif (models_dir / MANIFEST_NAME).exists():
        members = _load_manifest(models_dir)
    else:
        members = _load_directory(models_dir)

    logger.info("[ML] Loaded %d model(s) from %s", len(members), models_dir)
    ensemble = Ensemble(members, source=key)
    _ENSEMBLES[key] = ensemble
    return ensemble


def reset_ensemble_cache():
    _ENSEMBLES.clear()
