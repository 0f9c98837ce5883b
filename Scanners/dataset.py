import logging
from pathlib import Path

import numpy as np
import pandas as pd

from .features import FEATURE_DIM, extract_features

logger = logging.getLogger(__name__)

LABEL_COLUMN = "Label"
SHA_COLUMN = "sha256"

# sub-folder name -> label
CLASS_DIRS = {"benign": 0, "malicious": 1}


def iter_samples(samples_dir):
    """Yield (path, label) for every file under benign/ and malicious/."""
    samples_dir = Path(samples_dir)
    for folder, label in CLASS_DIRS.items():
        class_dir = samples_dir / folder
        if not class_dir.is_dir():
            logger.warning("Missing sample folder: %s", class_dir)
            continue
        for path in sorted(class_dir.rglob("*")):
            if path.is_file():
                yield path, label


def build_feature_frame(samples_dir) -> pd.DataFrame:
    """
    Extract features for every sample into a DataFrame:
    one column per feature (f0..fN), plus Label and sha256.
    """
    rows = []
    labels = []
    names = []
    for path, label in iter_samples(samples_dir):
        try:
            rows.append(extract_features(path)[0])
        except OSError as e:
            logger.warning("Skipping %s: %s", path, e)
            continue
        labels.append(label)
        names.append(path.name)

    columns = [f"f{i}" for i in range(FEATURE_DIM)]
    matrix = np.vstack(rows) if rows else np.empty((0, FEATURE_DIM), dtype=np.float32)
    df = pd.DataFrame(matrix, columns=columns)
    df[LABEL_COLUMN] = labels
    df[SHA_COLUMN] = names
    return df


def save_feature_frame(df: pd.DataFrame, path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path)


def load_feature_frame(path, n_rows: int | None = None) -> pd.DataFrame:
    df = pd.read_parquet(path)
    if n_rows is not None:
        df = df.head(n_rows)
    return df


def prepare_xy(df: pd.DataFrame):
    """
    Turn a feature DataFrame into:
      X: features (float32 numpy array)
      y: labels (0=benign, 1=malware)

    Rows labelled -1/1 (EMBER convention) are mapped to 0/1; anything not
    recognised as a label is dropped.
    """
    labels = df[LABEL_COLUMN].to_numpy()
    unique_vals = set(labels.tolist())

    if unique_vals.issubset({0, 1}):
        mask = np.ones(len(labels), dtype=bool)
        y = labels.astype(int)
    else:
        mask = np.isin(labels, [-1, 1])
        y = (labels[mask] == 1).astype(int)

    feature_cols = [c for c in df.columns if c not in (LABEL_COLUMN, SHA_COLUMN)]
    X = df.loc[mask, feature_cols].to_numpy(dtype=np.float32)
    return X, y
