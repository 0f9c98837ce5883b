"""
Train the scanning ensemble.

Builds (or loads) a feature table from a samples folder laid out as

    samples/benign/...      clean PE files
    samples/malicious/...   malware

then trains three members on the same features:

- LightGBM (gradient boosting, the strongest single model)
- Random Forest
- Extra Trees

Each member is evaluated on a held-out split, dumped with joblib and listed
in models/manifest.json together with its vote weight and decision threshold.

Usage:
    python -m Scanners.train_ensemble --samples samples/ --out models/
    python -m Scanners.train_ensemble --dataset features.parquet --out models/
"""
import argparse
import json
from pathlib import Path

from joblib import dump
from lightgbm import LGBMClassifier
from sklearn.ensemble import ExtraTreesClassifier, RandomForestClassifier
from sklearn.metrics import (
    accuracy_score,
    classification_report,
    confusion_matrix,
    f1_score,
    precision_score,
    recall_score,
    roc_auc_score,
)
from sklearn.model_selection import train_test_split

from .dataset import build_feature_frame, load_feature_frame, prepare_xy, save_feature_frame
from .ensemble import MANIFEST_NAME, interpret_ml_probability
from .features import FEATURE_DIM, FEATURE_VERSION

RANDOM_STATE = 42

# Slightly favour benign class (0) to reduce false positives
CLASS_WEIGHT = {0: 2.0, 1: 1.0}


def build_members():
    """(name, estimator, vote weight, decision threshold) for every member."""
    return [
        ("lightgbm", LGBMClassifier(
            objective="binary",
            n_estimators=600,
            learning_rate=0.05,
            num_leaves=64,
            min_child_samples=20,
            subsample=0.9,
            colsample_bytree=0.9,
            reg_alpha=0.1,
            reg_lambda=0.1,
            class_weight=CLASS_WEIGHT,
            n_jobs=-1,
            random_state=RANDOM_STATE,
            verbose=-1,
        ), 2.0, 0.5),
        ("random_forest", RandomForestClassifier(
            n_estimators=400,
            n_jobs=-1,
            class_weight=CLASS_WEIGHT,
            random_state=RANDOM_STATE,
        ), 1.0, 0.5),
        ("extra_trees", ExtraTreesClassifier(
            n_estimators=400,
            n_jobs=-1,
            class_weight=CLASS_WEIGHT,
            random_state=RANDOM_STATE,
        ), 1.0, 0.5),
    ]


def evaluate(name, model, X_val, y_val, threshold):
    y_proba = model.predict_proba(X_val)[:, 1]
    y_pred = (y_proba >= threshold).astype(int)

    metrics = {
        "accuracy": accuracy_score(y_val, y_pred),
        "precision": precision_score(y_val, y_pred, zero_division=0),
        "recall": recall_score(y_val, y_pred, zero_division=0),
        "f1": f1_score(y_val, y_pred, zero_division=0),
        "roc_auc": roc_auc_score(y_val, y_proba) if len(set(y_val)) > 1 else None,
    }

    print(f"\n--- {name} (threshold {threshold}) ---")
    for key, value in metrics.items():
        print(f"{key:<10}: {value:.4f}" if value is not None else f"{key:<10}: n/a")

    print("\nConfusion Matrix (rows=true, cols=pred):")
    print(confusion_matrix(y_val, y_pred, labels=[0, 1]))
    print(classification_report(
        y_val, y_pred, labels=[0, 1], target_names=["benign", "malware"], zero_division=0))

    bands = {"benign": 0, "suspicious": 0, "malicious": 0}
    for p in y_proba:
        bands[interpret_ml_probability(float(p))] += 1
    print("Probability bands:", bands)

    return metrics


def train(X, y, out_dir, test_size=0.2):
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    X_train, X_val, y_train, y_val = train_test_split(
        X, y, test_size=test_size, stratify=y, random_state=RANDOM_STATE)
    print("Train shape:", X_train.shape, "Val shape:", X_val.shape)

    manifest = {
        "feature_version": FEATURE_VERSION,
        "feature_dim": FEATURE_DIM,
        "models": [],
    }

    for name, model, weight, threshold in build_members():
        print(f"\nTraining {name}...")
        model.fit(X_train, y_train)
        metrics = evaluate(name, model, X_val, y_val, threshold)

        file_name = f"{name}.pkl"
        dump(model, out_dir / file_name)
        manifest["models"].append({
            "name": name,
            "file": file_name,
            "weight": weight,
            "threshold": threshold,
            "metrics": metrics,
        })

    with (out_dir / MANIFEST_NAME).open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)

    print(f"\nSaved {len(manifest['models'])} model(s) and manifest to {out_dir}")
    return manifest


def main(argv=None):
    parser = argparse.ArgumentParser(description="Train the mAIware model ensemble")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--samples", help="folder with benign/ and malicious/ sub-folders")
    source.add_argument("--dataset", help="feature table (.parquet) built earlier")
    parser.add_argument("--save-dataset", help="write the extracted feature table here")
    parser.add_argument("--out", default=str(Path(__file__).resolve().parents[1] / "models"))
    parser.add_argument("--test-size", type=float, default=0.2)
    args = parser.parse_args(argv)

    if args.samples:
        print("Extracting features from", args.samples)
        df = build_feature_frame(args.samples)
        if args.save_dataset:
            save_feature_frame(df, args.save_dataset)
            print("Saved feature table to", args.save_dataset)
    else:
        df = load_feature_frame(args.dataset)

    X, y = prepare_xy(df)
    print("X shape:", X.shape, "Malware ratio (y==1):", y.mean() if len(y) else 0.0)
    if len(set(y.tolist())) < 2:
        parser.error("need both benign and malicious samples to train")

    train(X, y, args.out, test_size=args.test_size)


if __name__ == "__main__":
    main()
