import struct

import numpy as np
import pytest
from joblib import dump
from sklearn.dummy import DummyClassifier

from app import create_app
from Scanners.ensemble import reset_ensemble_cache
from Scanners.features import FEATURE_DIM
from Scanners.yara_scanner import reset_rules_cache

FILE_ALIGNMENT = 0x200
SECTION_ALIGNMENT = 0x1000


def build_pe(code=b"\xc3", section_name=b".text", characteristics=0x60000020):
    """
    Smallest well-formed PE32 image pefile accepts: DOS header, PE
    signature, COFF header, optional header and one section.
    """
    dos = bytearray(0x40)
    dos[0:2] = b"MZ"
    struct.pack_into("<I", dos, 0x3C, 0x40)

    coff = struct.pack(
        "<HHIIIHH",
        0x14C,       # Machine: i386
        1,           # NumberOfSections
        0x5F5E1000,  # TimeDateStamp
        0, 0,        # symbol table
        0xE0,        # SizeOfOptionalHeader
        0x0102,      # EXECUTABLE_IMAGE | 32BIT_MACHINE
    )

    optional = struct.pack(
        "<HBB" + "I" * 9 + "H" * 6 + "I" * 4 + "HH" + "I" * 6,
        0x10B, 14, 0,                      # Magic PE32, linker 14.0
        FILE_ALIGNMENT, 0, 0,              # SizeOfCode, init, uninit data
        SECTION_ALIGNMENT,                 # AddressOfEntryPoint
        SECTION_ALIGNMENT, 2 * SECTION_ALIGNMENT,  # BaseOfCode, BaseOfData
        0x400000, SECTION_ALIGNMENT, FILE_ALIGNMENT,
        6, 0, 0, 0, 6, 0,                  # OS, image, subsystem versions
        0,                                 # Win32VersionValue
        2 * SECTION_ALIGNMENT,             # SizeOfImage
        FILE_ALIGNMENT,                    # SizeOfHeaders
        0,                                 # CheckSum
        3, 0x8140,                         # console subsystem, DllCharacteristics
        0x100000, 0x1000, 0x100000, 0x1000,
        0, 16,                             # LoaderFlags, NumberOfRvaAndSizes
    ) + b"\x00" * (16 * 8)

    section = struct.pack(
        "<8sIIIIIIHHI",
        section_name,
        FILE_ALIGNMENT,     # VirtualSize
        SECTION_ALIGNMENT,  # VirtualAddress
        FILE_ALIGNMENT,     # SizeOfRawData
        FILE_ALIGNMENT,     # PointerToRawData
        0, 0, 0, 0,
        characteristics,
    )

    headers = bytes(dos) + b"PE\x00\x00" + coff + optional + section
    headers += b"\x00" * (FILE_ALIGNMENT - len(headers))
    body = code + b"\x00" * (FILE_ALIGNMENT - len(code))
    return headers + body


@pytest.fixture
def pe_bytes():
    return build_pe()


@pytest.fixture
def pe_file(tmp_path, pe_bytes):
    path = tmp_path / "sample.exe"
    path.write_bytes(pe_bytes)
    return path


@pytest.fixture(autouse=True)
def _clear_caches():
    reset_ensemble_cache()
    reset_rules_cache()
    yield
    reset_ensemble_cache()
    reset_rules_cache()


@pytest.fixture
def models_dir(tmp_path):
    """Two prior-only models: one always 2/3 malicious, one always 1/4."""
    directory = tmp_path / "models"
    directory.mkdir()
    X = np.zeros((4, FEATURE_DIM), dtype=np.float32)

    high = DummyClassifier(strategy="prior").fit(X[:3], [0, 1, 1])
    low = DummyClassifier(strategy="prior").fit(X, [0, 0, 0, 1])
    dump(high, directory / "high.pkl")
    dump(low, directory / "low.joblib")
    return directory


class FixedModel:
    """Minimal predict_proba stand-in returning a constant probability."""

    def __init__(self, probability, n_features=None):
        self.probability = probability
        if n_features is not None:
            self.n_features_in_ = n_features

    def predict_proba(self, X):
        return np.array([[1.0 - self.probability, self.probability]] * len(X))


@pytest.fixture
def app(tmp_path):
    empty_models = tmp_path / "no_models"
    empty_models.mkdir()
    empty_rules = tmp_path / "no_rules"
    empty_rules.mkdir()

    app = create_app({
        "TESTING": True,
        "DB_PATH": str(tmp_path / "test.db"),
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "MODELS_DIR": str(empty_models),
        "YARA_DIR": str(empty_rules),
        "VT_API_KEY": None,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()
