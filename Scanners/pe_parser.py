import logging
import os

import pefile

from .entropy import shannon_entropy
from .errors import NotAPEFileError

logger = logging.getLogger(__name__)

FILE_CHARACTERISTICS = pefile.retrieve_flags(
    pefile.IMAGE_CHARACTERISTICS, "IMAGE_FILE_")
DLL_CHARACTERISTICS = pefile.retrieve_flags(
    pefile.DLL_CHARACTERISTICS, "IMAGE_DLLCHARACTERISTICS_")
SECTION_CHARACTERISTICS = pefile.retrieve_flags(
    pefile.SECTION_CHARACTERISTICS, "IMAGE_SCN_")

# Security directory index in the optional header's data directory table
SECURITY_DIRECTORY = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_SECURITY"]


def _flag_names(value, flags, prefix):
    return [name[len(prefix):] for name, bit in flags
            if bit and value & bit == bit]


def _decode(raw) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.rstrip(b"\x00").decode("utf-8", errors="ignore")
    return str(raw)


def open_pe(source):
    """Open a path or a bytes object with pefile, raising NotAPEFileError."""
    try:
        if isinstance(source, (bytes, bytearray)):
            return pefile.PE(data=bytes(source))
        return pefile.PE(os.fspath(source))
    except pefile.PEFormatError as e:
        raise NotAPEFileError(f"Not a PE file: {e}") from e


def _sections(pe):
    sections = []
    for section in pe.sections:
        name = _decode(section.Name) or "<noname>"
        try:
            entropy = shannon_entropy(section.get_data())
        except pefile.PEFormatError as e:
            logger.debug("Could not read section %s: %s", name, e)
            entropy = None

        sections.append({
            "name": name,
            "raw_size": int(section.SizeOfRawData),
            "virtual_size": int(section.Misc_VirtualSize),
            "virtual_address": int(section.VirtualAddress),
            "entropy": entropy,
            "characteristics": _flag_names(
                section.Characteristics, SECTION_CHARACTERISTICS, "IMAGE_SCN_"),
        })
    return sections


def _imports(pe) -> dict:
    imports = {}
    for entry in getattr(pe, "DIRECTORY_ENTRY_IMPORT", []) or []:
        dll = _decode(entry.dll).lower()
        functions = imports.setdefault(dll, [])
        for imp in entry.imports:
            if imp.name:
                functions.append(_decode(imp.name))
            else:
                functions.append(f"ordinal{imp.ordinal}")
    return imports


def _exports(pe) -> list:
    export_dir = getattr(pe, "DIRECTORY_ENTRY_EXPORT", None)
    if export_dir is None:
        return []
    return [_decode(sym.name) for sym in export_dir.symbols if sym.name]


def _entry_section(pe, sections):
    entry = pe.OPTIONAL_HEADER.AddressOfEntryPoint
    section = pe.get_section_by_rva(entry)
    if section is None:
        return None
    name = _decode(section.Name) or "<noname>"
    for sec in sections:
        if sec["name"] == name and sec["virtual_address"] == section.VirtualAddress:
            return sec
    return None


def parse_pe(source) -> dict:
    """
    Parse a PE image (path or bytes) into a plain dict.

    Everything the feature extractor and the heuristics need is copied out
    so the pefile object can be closed straight away.
    """
    pe = open_pe(source)
    try:
        fh = pe.FILE_HEADER
        oh = pe.OPTIONAL_HEADER
        sections = _sections(pe)
        entry_section = _entry_section(pe, sections)
        security = oh.DATA_DIRECTORY[SECURITY_DIRECTORY] \
            if len(oh.DATA_DIRECTORY) > SECURITY_DIRECTORY else None

        parsed = {
            "general": {
                "size": len(pe.__data__),
                "vsize": int(oh.SizeOfImage),
                "has_debug": hasattr(pe, "DIRECTORY_ENTRY_DEBUG"),
                "has_relocations": hasattr(pe, "DIRECTORY_ENTRY_BASERELOC"),
                "has_resources": hasattr(pe, "DIRECTORY_ENTRY_RESOURCE"),
                "has_signature": bool(security is not None and security.Size > 0),
                "has_tls": hasattr(pe, "DIRECTORY_ENTRY_TLS"),
                "symbols": int(fh.NumberOfSymbols),
            },
            "header": {
                "timestamp": int(fh.TimeDateStamp),
                "machine": pefile.MACHINE_TYPE.get(fh.Machine, str(fh.Machine)),
                "characteristics": _flag_names(
                    fh.Characteristics, FILE_CHARACTERISTICS, "IMAGE_FILE_"),
                "subsystem": pefile.SUBSYSTEM_TYPE.get(oh.Subsystem, str(oh.Subsystem)),
                "dll_characteristics": _flag_names(
                    oh.DllCharacteristics, DLL_CHARACTERISTICS,
                    "IMAGE_DLLCHARACTERISTICS_"),
                "magic": "PE32+" if oh.Magic == pefile.OPTIONAL_HEADER_MAGIC_PE_PLUS else "PE32",
                "major_image_version": int(oh.MajorImageVersion),
                "minor_image_version": int(oh.MinorImageVersion),
                "major_linker_version": int(oh.MajorLinkerVersion),
                "minor_linker_version": int(oh.MinorLinkerVersion),
                "major_operating_system_version": int(oh.MajorOperatingSystemVersion),
                "minor_operating_system_version": int(oh.MinorOperatingSystemVersion),
                "major_subsystem_version": int(oh.MajorSubsystemVersion),
                "minor_subsystem_version": int(oh.MinorSubsystemVersion),
                "sizeof_code": int(oh.SizeOfCode),
                "sizeof_headers": int(oh.SizeOfHeaders),
                "entry_point": int(oh.AddressOfEntryPoint),
            },
            "sections": sections,
            "entry_section": entry_section["name"] if entry_section else None,
            "entry_characteristics": entry_section["characteristics"] if entry_section else [],
            "imports": _imports(pe),
            "exports": _exports(pe),
            "data_directories": [
                {
                    "name": d.name.replace("IMAGE_DIRECTORY_ENTRY_", ""),
                    "size": int(d.Size),
                    "virtual_address": int(d.VirtualAddress),
                }
                for d in oh.DATA_DIRECTORY
            ],
        }
    finally:
        # explicitly close to avoid Windows file locks
        pe.close()

    parsed["general"]["imports"] = sum(len(f) for f in parsed["imports"].values())
    parsed["general"]["exports"] = len(parsed["exports"])
    return parsed


def analyze_pe_entropy(file_path: str, parsed: dict | None = None) -> dict:
    """
    Entropy report for a PE file (EXE/DLL), consumed by entropy_rules.

    {
        "is_pe": True/False,
        "overall_entropy": float or None,
        "sections": [{"name", "raw_size", "virtual_address", "entropy",
                      "characteristics"}, ...],
        "errors": [ "any error messages" ]
    }

    Never raises; problems end up in "errors".
    """
    result = {
        "is_pe": False,
        "overall_entropy": None,
        "sections": [],
        "errors": [],
        "file_path": file_path,
        "file_name": os.path.basename(file_path),
    }

    if parsed is None:
        try:
            parsed = parse_pe(file_path)
        except NotAPEFileError as e:
            result["errors"].append(str(e))
            return result
        except OSError as e:
            result["errors"].append(f"Error opening PE file: {e}")
            return result

    result["is_pe"] = True

    try:
        with open(file_path, "rb") as f:
            result["overall_entropy"] = shannon_entropy(f.read())
    except OSError as e:
        result["errors"].append(f"Failed to read file for overall entropy: {e}")

    result["sections"] = [
        {
            "name": sec["name"],
            "raw_size": sec["raw_size"],
            "virtual_address": sec["virtual_address"],
            "entropy": sec["entropy"],
            "characteristics": sec["characteristics"],
        }
        for sec in parsed["sections"]
    ]
    return result
