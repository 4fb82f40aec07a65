from __future__ import annotations

import struct

from pescope.engine import analyze_bytes
from pescope.imports import locate_exports
from pescope.model import DataDirectory, SectionHeader
from pescope.sections import RvaResolver


def _build_dll(*, export_rva: int = 0x2000, export_size: int = 0x100) -> bytes:
    # One .rdata section at RVA 0x2000, raw_ptr 0x200
    e_lfanew = 0x80
    dos = bytearray(b"MZ" + b"\x00" * 58)
    dos += struct.pack("<I", e_lfanew)
    dos += b"\x00" * (e_lfanew - len(dos))

    coff = struct.pack("<HHIIIHH", 0x14C, 1, 0x22222222, 0, 0, 0xE0, 0x2102)

    opt = bytearray(0xE0)
    struct.pack_into("<H", opt, 0x00, 0x10B)                  # PE32
    struct.pack_into("<I", opt, 0x5C, 16)                     # NumberOfRvaAndSizes
    struct.pack_into("<I", opt, 0x60 + 0 * 8, export_rva)     # Export RVA
    struct.pack_into("<I", opt, 0x60 + 0 * 8 + 4, export_size)

    sh = bytearray(40)
    sh[0:8] = b".rdata\x00\x00"
    struct.pack_into("<I", sh, 8, 0x400)
    struct.pack_into("<I", sh, 12, 0x2000)
    struct.pack_into("<I", sh, 16, 0x400)
    struct.pack_into("<I", sh, 20, 0x200)
    struct.pack_into("<I", sh, 36, 0x40000040)

    blob = bytes(dos) + b"PE\x00\x00" + coff + bytes(opt) + bytes(sh)
    blob += b"\x00" * (0x200 - len(blob))

    rdata = bytearray(0x400)
    struct.pack_into("<I", rdata, 12, 0x2060)  # Name RVA
    rdata[0x60 : 0x60 + 12] = b"TESTDLL.dll\x00"
    return blob + bytes(rdata)


def test_export_directory_located_in_rdata():
    res = analyze_bytes(_build_dll())

    assert res.error is None
    assert res.coff_header.is_dll is True
    ex = res.exports
    assert ex.present is True
    assert ex.virtual_address == 0x2000
    assert ex.size == 0x100
    assert ex.file_offset == 0x200


def test_export_directory_outside_sections_has_no_offset():
    res = analyze_bytes(_build_dll(export_rva=0x80000))
    assert res.exports.present is True
    assert res.exports.file_offset is None


def test_no_export_directory():
    res = analyze_bytes(_build_dll(export_rva=0, export_size=0))
    assert res.exports.present is False
    assert res.exports.file_offset is None


def test_locate_exports_ignores_other_directories():
    dirs = [DataDirectory(index=1, name="Import", virtual_address=0x2000, size=0x40)]
    sec = SectionHeader(name=".rdata", virtual_size=0x400, virtual_address=0x2000, size_of_raw_data=0x400, pointer_to_raw_data=0x200)
    assert locate_exports(dirs, RvaResolver([sec], 0x600)).present is False
