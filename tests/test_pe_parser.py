import pytest

from conftest import build_pe
from Scanners.errors import NotAPEFileError
from Scanners.pe_parser import analyze_pe_entropy, parse_pe


def test_parse_minimal_pe(pe_bytes):
    parsed = parse_pe(pe_bytes)

    assert parsed["header"]["machine"] == "IMAGE_FILE_MACHINE_I386"
    assert parsed["header"]["magic"] == "PE32"
    assert parsed["header"]["subsystem"] == "IMAGE_SUBSYSTEM_WINDOWS_CUI"
    assert "EXECUTABLE_IMAGE" in parsed["header"]["characteristics"]
    assert "NX_COMPAT" in parsed["header"]["dll_characteristics"]
    assert parsed["header"]["entry_point"] == 0x1000

    assert [s["name"] for s in parsed["sections"]] == [".text"]
    text = parsed["sections"][0]
    assert text["raw_size"] == 0x200
    assert {"CNT_CODE", "MEM_EXECUTE", "MEM_READ"} <= set(text["characteristics"])
    assert "MEM_WRITE" not in text["characteristics"]

    assert parsed["entry_section"] == ".text"
    assert parsed["imports"] == {}
    assert parsed["exports"] == []
    assert parsed["general"]["imports"] == 0
    assert parsed["general"]["has_signature"] is False
    assert len(parsed["data_directories"]) == 16


def test_parse_from_path(pe_file):
    assert parse_pe(pe_file)["general"]["size"] == pe_file.stat().st_size


def test_non_pe_raises():
    with pytest.raises(NotAPEFileError):
        parse_pe(b"just some text, definitely not a PE image" * 4)


def test_entropy_report_for_pe(pe_file):
    report = analyze_pe_entropy(str(pe_file))
    assert report["is_pe"] is True
    assert report["errors"] == []
    assert report["file_name"] == "sample.exe"
    assert report["overall_entropy"] is not None
    assert report["sections"][0]["name"] == ".text"


def test_entropy_report_for_non_pe_never_raises(tmp_path):
    path = tmp_path / "readme.txt"
    path.write_bytes(b"hello world")
    report = analyze_pe_entropy(str(path))
    assert report["is_pe"] is False
    assert report["errors"]


def test_writable_executable_section_flags(tmp_path):
    # CNT_CODE | MEM_EXECUTE | MEM_READ | MEM_WRITE
    parsed = parse_pe(build_pe(section_name=b"UPX0", characteristics=0xE0000020))
    section = parsed["sections"][0]
    assert section["name"] == "UPX0"
    assert {"MEM_WRITE", "MEM_EXECUTE"} <= set(section["characteristics"])
