"""
PE feature extraction.

Turns raw bytes (plus the parse_pe() dict when the input is a PE image) into
a fixed-length float32 vector. The layout follows the EMBER feature families:
raw-byte blocks first, then structural PE blocks hashed into fixed widths so
unseen DLL / section names never change the vector length.

Changing any block width or its order breaks every trained model, so bump
FEATURE_VERSION whenever the layout moves.
"""
import logging
import re
from pathlib import Path

import numpy as np
from sklearn.feature_extraction import FeatureHasher

from .entropy import byte_counts
from .errors import NotAPEFileError
from .pe_parser import parse_pe

logger = logging.getLogger(__name__)

FEATURE_VERSION = 1

ENTROPY_WINDOW = 2048
ENTROPY_STEP = 1024
NUM_DATA_DIRECTORIES = 15

# Ordered (block name, width) pairs; the vector is their concatenation.
BLOCK_DIMS = (
    ("byte_histogram", 256),
    ("byte_entropy_histogram", 256),
    ("strings", 104),
    ("general", 10),
    ("header", 61),
    ("section", 255),
    ("imports", 1280),
    ("exports", 128),
    ("data_directories", 2 * NUM_DATA_DIRECTORIES),
)

FEATURE_DIM = sum(dim for _, dim in BLOCK_DIMS)

_ALL_STRINGS = re.compile(rb"[\x20-\x7f]{5,}")
_PATHS = re.compile(rb"c:\\", re.IGNORECASE)
_URLS = re.compile(rb"https?://", re.IGNORECASE)
_REGISTRY = re.compile(rb"HKEY_")
_MZ = re.compile(rb"MZ")


def _hash_strings(values, n_features):
    hasher = FeatureHasher(n_features, input_type="string")
    return hasher.transform([list(values)]).toarray()[0]


def _hash_pairs(pairs, n_features):
    hasher = FeatureHasher(n_features, input_type="pair")
    return hasher.transform([list(pairs)]).toarray()[0]


# ---------------------------------------------------------------------------
# Raw byte blocks (always present)
# ---------------------------------------------------------------------------

def byte_histogram(raw: bytes) -> np.ndarray:
    counts = byte_counts(raw).astype(np.float32)
    total = counts.sum()
    return counts / total if total else counts


def _entropy_bin(block: np.ndarray):
    # 16 coarse bins (high nibble); entropy doubled back to the 0-8 scale
    c = np.bincount(block >> 4, minlength=16)
    p = c.astype(np.float32) / max(len(block), 1)
    nz = p[c > 0]
    h = float(np.sum(-nz * np.log2(nz))) * 2
    return min(int(h * 2), 15), c


def byte_entropy_histogram(raw: bytes) -> np.ndarray:
    """Joint histogram of (window entropy bin, byte nibble), 16x16 flattened."""
    output = np.zeros((16, 16), dtype=np.float32)
    a = np.frombuffer(raw, dtype=np.uint8)

    if a.shape[0] < ENTROPY_WINDOW:
        hbin, c = _entropy_bin(a)
        output[hbin, :] += c
    else:
        windows = np.lib.stride_tricks.sliding_window_view(a, ENTROPY_WINDOW)
        for block in windows[::ENTROPY_STEP]:
            hbin, c = _entropy_bin(block)
            output[hbin, :] += c

    flat = output.flatten()
    total = flat.sum()
    return flat / total if total else flat


def string_features(raw: bytes) -> np.ndarray:
    strings = _ALL_STRINGS.findall(raw)

    if strings:
        avlength = float(np.mean([len(s) for s in strings]))
        shifted = np.frombuffer(b"".join(strings), dtype=np.uint8) - 0x20
        c = np.bincount(shifted, minlength=96).astype(np.float32)
        printables = c.sum()
        dist = c / printables
        nz = dist[dist > 0]
        entropy = float(np.sum(-nz * np.log2(nz)))
    else:
        avlength = 0.0
        dist = np.zeros(96, dtype=np.float32)
        printables = 0.0
        entropy = 0.0

    return np.concatenate([
        [len(strings), avlength],
        dist,
        [
            printables,
            entropy,
            len(_PATHS.findall(raw)),
            len(_URLS.findall(raw)),
            len(_REGISTRY.findall(raw)),
            len(_MZ.findall(raw)),
        ],
    ])


# ---------------------------------------------------------------------------
# PE blocks (zeros when the input is not a PE image)
# ---------------------------------------------------------------------------

def general_features(raw: bytes, parsed) -> np.ndarray:
    if parsed is None:
        return np.array([len(raw)] + [0] * 9, dtype=np.float32)

    g = parsed["general"]
    return np.array([
        g["size"], g["vsize"], int(g["has_debug"]), g["exports"], g["imports"],
        int(g["has_relocations"]), int(g["has_resources"]),
        int(g["has_signature"]), int(g["has_tls"]), g["symbols"],
    ], dtype=np.float32)


def header_features(parsed) -> np.ndarray:
    if parsed is None:
        return np.zeros(61, dtype=np.float32)

    h = parsed["header"]
    return np.concatenate([
        [h["timestamp"]],
        _hash_strings([h["machine"]], 10),
        _hash_strings(h["characteristics"], 10),
        _hash_strings([h["subsystem"]], 10),
        _hash_strings(h["dll_characteristics"], 10),
        _hash_strings([h["magic"]], 10),
        [
            h["major_image_version"], h["minor_image_version"],
            h["major_linker_version"], h["minor_linker_version"],
            h["major_operating_system_version"], h["minor_operating_system_version"],
            h["major_subsystem_version"], h["minor_subsystem_version"],
            h["sizeof_code"], h["sizeof_headers"],
        ],
    ])


def section_features(parsed) -> np.ndarray:
    if parsed is None:
        return np.zeros(255, dtype=np.float32)

    sections = parsed["sections"]
    counters = [
        len(sections),
        sum(1 for s in sections if s["raw_size"] == 0),
        sum(1 for s in sections if s["name"] == "<noname>"),
        sum(1 for s in sections
            if {"MEM_READ", "MEM_EXECUTE"} <= set(s["characteristics"])),
        sum(1 for s in sections if "MEM_WRITE" in s["characteristics"]),
    ]
    entry = [parsed["entry_section"]] if parsed["entry_section"] else []

    return np.concatenate([
        counters,
        _hash_pairs([(s["name"], s["raw_size"]) for s in sections], 50),
        _hash_pairs([(s["name"], s["entropy"] or 0.0) for s in sections], 50),
        _hash_pairs([(s["name"], s["virtual_size"]) for s in sections], 50),
        _hash_strings(entry, 50),
        _hash_strings(parsed["entry_characteristics"], 50),
    ])


def import_features(parsed) -> np.ndarray:
    if parsed is None:
        return np.zeros(1280, dtype=np.float32)

    imports = parsed["imports"]
    libraries = sorted({lib.lower() for lib in imports})
    functions = [f"{lib.lower()}:{fn}" for lib, fns in imports.items() for fn in fns]
    return np.concatenate([
        _hash_strings(libraries, 256),
        _hash_strings(functions, 1024),
    ])


def export_features(parsed) -> np.ndarray:
    if parsed is None:
        return np.zeros(128, dtype=np.float32)
    return _hash_strings(parsed["exports"], 128)


def data_directory_features(parsed) -> np.ndarray:
    out = np.zeros(2 * NUM_DATA_DIRECTORIES, dtype=np.float32)
    if parsed is None:
        return out

    for i, d in enumerate(parsed["data_directories"][:NUM_DATA_DIRECTORIES]):
        out[2 * i] = d["size"]
        out[2 * i + 1] = d["virtual_address"]
    return out


def features_from_parsed(raw: bytes, parsed=None) -> np.ndarray:
    """Assemble the flat FEATURE_DIM vector from raw bytes and parse_pe() output."""
    blocks = [
        byte_histogram(raw),
        byte_entropy_histogram(raw),
        string_features(raw),
        general_features(raw, parsed),
        header_features(parsed),
        section_features(parsed),
        import_features(parsed),
        export_features(parsed),
        data_directory_features(parsed),
    ]
    vector = np.concatenate(blocks).astype(np.float32)

    if vector.shape[0] != FEATURE_DIM:
        raise AssertionError(
            f"feature vector has {vector.shape[0]} values, expected {FEATURE_DIM}")
    return vector


def extract_features(source, parsed=None) -> np.ndarray:
    """
    Reads a file (or takes raw bytes) and returns a (1, FEATURE_DIM) matrix,
    ready for predict_proba().

    parsed: parse_pe() output for the same bytes, when the caller has it.
    """
    if isinstance(source, (bytes, bytearray)):
        raw = bytes(source)
    else:
        raw = Path(source).read_bytes()

    if parsed is None:
        try:
            parsed = parse_pe(raw)
        except NotAPEFileError as e:
            logger.info("Extracting raw-byte features only: %s", e)

    return features_from_parsed(raw, parsed).reshape(1, -1)
