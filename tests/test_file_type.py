import struct

import pytest

from Scanners import file_type
from Scanners.file_type import detect_file_type, has_pe_signature, is_corrupted


@pytest.fixture(autouse=True)
def no_libmagic(monkeypatch):
    monkeypatch.setattr(file_type, "detect_using_libmagic", lambda path: None)


def _mz_only():
    header = bytearray(128)
    header[0:2] = b"MZ"
    struct.pack_into("<I", header, 0x3C, 0x40)
    return bytes(header)


def test_pe_file_is_detected(pe_file):
    info = detect_file_type(str(pe_file))
    assert info["magic_type"] == "exe"
    assert info["final_mime"] == "application/x-dosexec"
    assert info["is_pe"] is True
    assert info["mismatch"] is False


def test_dll_extension_is_same_family(tmp_path, pe_bytes):
    path = tmp_path / "library.dll"
    path.write_bytes(pe_bytes)
    assert detect_file_type(str(path))["mismatch"] is False


def test_executable_disguised_as_pdf_is_a_mismatch(tmp_path, pe_bytes):
    path = tmp_path / "invoice.pdf"
    path.write_bytes(pe_bytes)
    info = detect_file_type(str(path))
    assert info["declared_extension"] == "pdf"
    assert info["mismatch"] is True
    assert info["is_pe"] is True


def test_mz_without_pe_signature_is_not_pe(tmp_path):
    path = tmp_path / "fake.exe"
    path.write_bytes(_mz_only())
    assert detect_file_type(str(path))["is_pe"] is False
    assert has_pe_signature(str(path)) is False


def test_pdf_magic(tmp_path):
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF-1.7\n%...")
    info = detect_file_type(str(path))
    assert info["final_type"] == "pdf"
    assert info["is_pe"] is False


def test_empty_file_is_unknown(tmp_path):
    path = tmp_path / "empty.bin"
    path.write_bytes(b"")
    info = detect_file_type(str(path))
    assert info["final_type"] is None
    assert info["mismatch"] is False
    assert info["is_pe"] is False


def test_libmagic_fallback(monkeypatch, tmp_path):
    monkeypatch.setattr(file_type, "detect_using_libmagic", lambda path: "text/plain")
    path = tmp_path / "notes.txt"
    path.write_bytes(b"plain text")
    info = detect_file_type(str(path))
    assert info["magic_type"] is None
    assert info["final_mime"] == "text/plain"
    assert info["final_type"] == "txt"


def test_is_corrupted(tmp_path):
    path = tmp_path / "ok.bin"
    path.write_bytes(b"x")
    assert is_corrupted(str(path)) is False
    assert is_corrupted(str(tmp_path / "missing")) is True
