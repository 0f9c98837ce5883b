import json

import numpy as np
from lightgbm import LGBMClassifier
from sklearn.ensemble import RandomForestClassifier

from Scanners import train_ensemble
from Scanners.ensemble import MANIFEST_NAME, load_ensemble
from Scanners.features import FEATURE_DIM, FEATURE_VERSION


def _small_members():
    return [
        ("lightgbm", LGBMClassifier(n_estimators=10, min_child_samples=2, verbose=-1), 2.0, 0.5),
        ("random_forest", RandomForestClassifier(n_estimators=10, random_state=0), 1.0, 0.5),
    ]


def _data(n=60):
    rng = np.random.default_rng(0)
    X = rng.random((n, FEATURE_DIM), dtype=np.float32)
    y = np.array([0, 1] * (n // 2))
    # make the problem learnable through one column
    X[:, 0] = y
    return X, y


def test_train_writes_models_and_manifest(monkeypatch, tmp_path):
    monkeypatch.setattr(train_ensemble, "build_members", _small_members)
    X, y = _data()

    manifest = train_ensemble.train(X, y, tmp_path / "models", test_size=0.25)

    on_disk = json.loads((tmp_path / "models" / MANIFEST_NAME).read_text())
    assert on_disk["feature_version"] == FEATURE_VERSION
    assert on_disk["feature_dim"] == FEATURE_DIM
    assert [m["name"] for m in manifest["models"]] == ["lightgbm", "random_forest"]
    assert on_disk["models"][0]["weight"] == 2.0

    ensemble = load_ensemble(tmp_path / "models")
    assert [m.name for m in ensemble.members] == ["lightgbm", "random_forest"]

    result = ensemble.vote(X[1], tie_break="mean")
    assert result["vote_label"] == "malicious"


def test_default_members_cover_three_model_families():
    members = train_ensemble.build_members()
    assert [name for name, *_ in members] == ["lightgbm", "random_forest", "extra_trees"]
    assert all(weight > 0 and 0 <= threshold <= 1 for _, _, weight, threshold in members)
