import logging
import mimetypes
import os
import struct

import magic

logger = logging.getLogger(__name__)

# MAGIC NUMBER
MAGIC_SIGNATURES = [
    (b"%PDF-", "pdf", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "png", "image/png"),
    (b"PK\x03\x04", "zip", "application/zip"),  # zip, docx, xlsx, jar
    (b"\x7fELF", "elf", "application/x-executable"),
    (b"MZ", "exe", "application/x-dosexec"),     # Windows EXE / DLL
    (b"\xFF\xD8\xFF", "jpg", "image/jpeg"),
    (b"GIF87a", "gif", "image/gif"),
    (b"GIF89a", "gif", "image/gif"),
]

# Extensions that are all the same "exe" family for mismatch purposes
PE_EXTENSIONS = {"exe", "dll", "sys", "scr", "cpl", "ocx", "drv", "efi"}

HEADER_SIZE = 64
E_LFANEW_OFFSET = 0x3C
PE_SIGNATURE = b"PE\x00\x00"


def read_file_header(file_path, n=HEADER_SIZE):
    with open(file_path, "rb") as f:
        return f.read(n)


def detect_from_magic_numbers(header):
    for magic_bytes, short, mime in MAGIC_SIGNATURES:
        if header.startswith(magic_bytes):
            return short, mime
    return None, None


def has_pe_signature(file_path) -> bool:
    """
    True when the DOS header's e_lfanew points at a 'PE\\0\\0' signature.

    A bare 'MZ' prefix is not enough: plenty of non-executables start with it.
    """
    try:
        with open(file_path, "rb") as f:
            dos_header = f.read(HEADER_SIZE)
            if len(dos_header) < HEADER_SIZE or not dos_header.startswith(b"MZ"):
                return False

            (e_lfanew,) = struct.unpack_from("<I", dos_header, E_LFANEW_OFFSET)
            f.seek(e_lfanew)
            return f.read(4) == PE_SIGNATURE
    except (OSError, struct.error, ValueError):
        return False


def detect_using_libmagic(file_path):
    try:
        return magic.from_file(file_path, mime=True)  # e.g. "application/pdf"
    except (OSError, magic.MagicException) as e:
        logger.debug("libmagic failed for %s: %s", file_path, e)
        return None


def get_extension(file_path):
    _, ext = os.path.splitext(file_path)
    return ext.lower().lstrip(".") if ext else None


def guess_ext_from_mime(mime):
    if not mime:
        return None
    ext = mimetypes.guess_extension(mime)
    return ext.lstrip(".") if ext else None


def _same_family(declared_ext, final_type):
    if declared_ext == final_type:
        return True
    return final_type == "exe" and declared_ext in PE_EXTENSIONS


def detect_file_type(file_path):
    """Hybrid detector: custom magic numbers first, libmagic as fallback."""
    declared_ext = get_extension(file_path)
    header = read_file_header(file_path)

    magic_type, magic_mime = detect_from_magic_numbers(header)
    libmagic_mime = detect_using_libmagic(file_path)

    if magic_mime:
        final_mime = magic_mime
        final_type = magic_type
    elif libmagic_mime:
        final_mime = libmagic_mime
        final_type = guess_ext_from_mime(libmagic_mime)
    else:
        final_mime = None
        final_type = None

    mismatch = (
        declared_ext is not None
        and final_type is not None
        and not _same_family(declared_ext, final_type.lower())
    )

    return {
        "declared_extension": declared_ext,
        "magic_type": magic_type,
        "magic_mime": magic_mime,
        "libmagic_mime": libmagic_mime,
        "final_mime": final_mime,
        "final_type": final_type,
        "mismatch": mismatch,
        "is_pe": magic_type == "exe" and has_pe_signature(file_path),
    }


def is_corrupted(file_path):
    """A file we cannot read at all is treated as corrupted."""
    try:
        with open(file_path, "rb") as f:
            f.read()
        return False
    except OSError:
        return True
