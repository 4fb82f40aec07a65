from __future__ import annotations

import struct

from pescope.config import Limits
from pescope.engine import analyze_bytes
from pescope.imports import decode_thunk


def _build_image(rdata: bytes, *, is_64bit: bool = False, import_rva: int = 0x2000, import_size: int = 0x100) -> bytes:
    # Layout plan:
    # - e_lfanew = 0x80
    # - one section .rdata at RVA 0x2000, raw_ptr 0x200, raw_size len(rdata)
    # - import directory at import_rva
    e_lfanew = 0x80
    dos = bytearray(b"MZ" + b"\x00" * 58)
    dos += struct.pack("<I", e_lfanew)
    if len(dos) < e_lfanew:
        dos += b"\x00" * (e_lfanew - len(dos))

    nt = bytearray(b"PE\x00\x00")

    machine = 0x8664 if is_64bit else 0x14C
    size_opt = 0xF0 if is_64bit else 0xE0
    coff = struct.pack("<HHIIIHH", machine, 1, 0x11111111, 0, 0, size_opt, 0x0002)

    opt = bytearray(b"\x00" * size_opt)
    if is_64bit:
        struct.pack_into("<H", opt, 0x00, 0x20B)
        struct.pack_into("<Q", opt, 0x18, 0x140000000)
        struct.pack_into("<I", opt, 0x6C, 16)
        dd = 0x70
    else:
        struct.pack_into("<H", opt, 0x00, 0x10B)
        struct.pack_into("<I", opt, 0x1C, 0x400000)
        struct.pack_into("<I", opt, 0x5C, 16)
        dd = 0x60
    struct.pack_into("<I", opt, 0x10, 0x1000)
    struct.pack_into("<I", opt, dd + 1 * 8, import_rva)
    struct.pack_into("<I", opt, dd + 1 * 8 + 4, import_size)

    sh = bytearray(40)
    sh[0:8] = b".rdata\x00\x00"
    struct.pack_into("<I", sh, 8, len(rdata))       # VirtualSize
    struct.pack_into("<I", sh, 12, 0x2000)          # VirtualAddress
    struct.pack_into("<I", sh, 16, len(rdata))      # SizeOfRawData
    struct.pack_into("<I", sh, 20, 0x200)           # PointerToRawData
    struct.pack_into("<I", sh, 36, 0x40000040)      # Readable data

    blob = bytes(dos) + bytes(nt) + coff + bytes(opt) + bytes(sh)
    if len(blob) < 0x200:
        blob += b"\x00" * (0x200 - len(blob))
    return blob + bytes(rdata)


def _one_import_rdata(*, use_ilt: bool = True) -> bytearray:
    # Import Descriptor at RVA 0x2000, terminator at +20
    # Thunk table at RVA 0x2040 (32-bit thunks on both formats),
    # DLL name at 0x2060, hint/name at 0x2080
    rdata = bytearray(0x400)
    struct.pack_into("<I", rdata, 0, 0x2040 if use_ilt else 0)   # OriginalFirstThunk
    struct.pack_into("<I", rdata, 12, 0x2060)                      # Name RVA
    struct.pack_into("<I", rdata, 16, 0x2040)                      # FirstThunk
    struct.pack_into("<I", rdata, 0x40, 0x2080)
    rdata[0x60 : 0x60 + 13] = b"KERNEL32.DLL\x00"
    struct.pack_into("<H", rdata, 0x80, 0x0167)
    rdata[0x82 : 0x82 + 12] = b"ExitProcess\x00"
    return rdata


def test_pe32plus_single_name_import():
    res = analyze_bytes(_build_image(_one_import_rdata(), is_64bit=True))

    assert res.error is None
    assert len(res.imports) == 1
    imp = res.imports[0]
    assert imp.dll_name == "KERNEL32.DLL"
    assert imp.functions == ("ExitProcess",)
    assert imp.symbols[0].name == "ExitProcess"
    assert imp.symbols[0].ordinal is None


def test_pe32_falls_back_to_first_thunk_without_ilt():
    res = analyze_bytes(_build_image(_one_import_rdata(use_ilt=False)))
    assert [(i.dll_name, i.functions) for i in res.imports] == [("KERNEL32.DLL", ("ExitProcess",))]


def test_ordinal_thunk_emits_ordinal_label():
    rdata = _one_import_rdata()
    struct.pack_into("<I", rdata, 0x40, 0x80000007)
    res = analyze_bytes(_build_image(rdata))

    assert res.imports[0].functions == ("Ordinal 7",)
    assert res.imports[0].symbols[0].ordinal == 7


def test_decode_thunk_checks_top_bit_of_32bit_value():
    assert decode_thunk(0x80000007).label == "Ordinal 7"
    assert decode_thunk(0x8001FFFF).ordinal == 0xFFFF
    # name thunk (RVA) is not an ordinal
    assert decode_thunk(0x2080) is None
    assert decode_thunk(0x7FFFFFFF) is None


def test_mixed_thunks_keep_table_order():
    rdata = _one_import_rdata()
    struct.pack_into("<I", rdata, 0x40, 0x80000010)
    struct.pack_into("<I", rdata, 0x44, 0x2080)
    struct.pack_into("<I", rdata, 0x48, 0x80000002)
    res = analyze_bytes(_build_image(rdata))
    assert res.imports[0].functions == ("Ordinal 16", "ExitProcess", "Ordinal 2")


def test_unmappable_dll_name_skips_only_that_descriptor():
    rdata = _one_import_rdata()
    # Second descriptor with a name RVA far outside every section
    struct.pack_into("<I", rdata, 20 + 0, 0x2040)
    struct.pack_into("<I", rdata, 20 + 12, 0x900000)
    struct.pack_into("<I", rdata, 20 + 16, 0x2040)
    # Third descriptor is valid again
    struct.pack_into("<I", rdata, 40 + 0, 0x2040)
    struct.pack_into("<I", rdata, 40 + 12, 0x20A0)
    struct.pack_into("<I", rdata, 40 + 16, 0x2040)
    rdata[0xA0 : 0xA0 + 11] = b"USER32.dll\x00"

    res = analyze_bytes(_build_image(rdata))

    assert [i.dll_name for i in res.imports] == ["KERNEL32.DLL", "USER32.dll"]
    assert any(w.code == "E_PE_IMPORT_DLL_NAME_UNREADABLE" for w in res.warnings)


def test_unmappable_hint_name_skips_only_that_thunk():
    rdata = _one_import_rdata()
    struct.pack_into("<I", rdata, 0x40, 0x7FFF0000)
    struct.pack_into("<I", rdata, 0x44, 0x2080)
    res = analyze_bytes(_build_image(rdata))

    assert res.imports[0].functions == ("ExitProcess",)
    assert any(w.code == "E_PE_IMPORT_BY_NAME_UNMAPPABLE" for w in res.warnings)


def test_unmappable_import_directory_yields_no_imports():
    res = analyze_bytes(_build_image(_one_import_rdata(), import_rva=0x50000))
    assert res.error is None
    assert res.imports == ()
    assert any(w.code == "E_PE_IMPORT_RVA_UNMAPPABLE" for w in res.warnings)


def test_functions_per_dll_are_capped():
    rdata = bytearray(0x1000)
    struct.pack_into("<I", rdata, 0, 0x2100)
    struct.pack_into("<I", rdata, 12, 0x2060)
    struct.pack_into("<I", rdata, 16, 0x2100)
    rdata[0x60 : 0x60 + 13] = b"KERNEL32.DLL\x00"
    struct.pack_into("<H", rdata, 0x80, 0)
    rdata[0x82 : 0x82 + 12] = b"ExitProcess\x00"
    # 300 name thunks, no terminator inside the walk limit
    for i in range(300):
        struct.pack_into("<I", rdata, 0x100 + i * 4, 0x2080)

    res = analyze_bytes(_build_image(rdata))

    assert len(res.imports) == 1
    assert len(res.imports[0].symbols) == 50
    assert any(w.code == "E_PE_IMPORT_TOO_MANY_FUNCTIONS" for w in res.warnings)


def test_import_descriptor_count_is_capped():
    rdata = bytearray(0x2000)
    rdata[0x1F00 : 0x1F00 + 9] = b"evil.dll\x00"
    # 300 descriptors all naming the same DLL with no thunks
    for i in range(300):
        struct.pack_into("<I", rdata, i * 20 + 12, 0x3F00)

    res = analyze_bytes(_build_image(rdata, import_size=300 * 20), limits=Limits(max_import_descriptors=200))

    assert len(res.imports) == 200
    assert all(i.dll_name == "evil.dll" for i in res.imports)
    assert any(w.code == "E_PE_IMPORT_TOO_MANY_DLLS" for w in res.warnings)


def test_pe32plus_ordinal_thunk_reads_32bit_flag():
    rdata = _one_import_rdata()
    struct.pack_into("<II", rdata, 0x40, 0x80000007, 0)
    res = analyze_bytes(_build_image(rdata, is_64bit=True))

    assert res.imports[0].functions == ("Ordinal 7",)
    assert res.imports[0].symbols[0].ordinal == 7


def test_pe32plus_ilt_followed_by_iat_yields_single_symbol():
    rdata = _one_import_rdata()
    # ILT at 0x2040 terminated after one entry; IAT copy starts right after it
    struct.pack_into("<II", rdata, 0x40, 0x2080, 0)
    struct.pack_into("<II", rdata, 0x48, 0x2080, 0)
    struct.pack_into("<I", rdata, 16, 0x2048)
    res = analyze_bytes(_build_image(rdata, is_64bit=True))

    assert [(i.dll_name, i.functions) for i in res.imports] == [("KERNEL32.DLL", ("ExitProcess",))]


def test_terminated_descriptor_table_at_cap_has_no_warning():
    rdata = bytearray(0x2000)
    rdata[0x1F00 : 0x1F00 + 9] = b"evil.dll\x00"
    # exactly 200 descriptors, then an all-zero terminator
    for i in range(200):
        struct.pack_into("<I", rdata, i * 20 + 12, 0x3F00)

    res = analyze_bytes(_build_image(rdata, import_size=201 * 20), limits=Limits(max_import_descriptors=200))

    assert len(res.imports) == 200
    assert not any(w.code == "E_PE_IMPORT_TOO_MANY_DLLS" for w in res.warnings)


def _thunk_rdata(count: int) -> bytearray:
    rdata = bytearray(0x400)
    struct.pack_into("<I", rdata, 0, 0x2100)
    struct.pack_into("<I", rdata, 12, 0x2060)
    struct.pack_into("<I", rdata, 16, 0x2100)
    rdata[0x60 : 0x60 + 13] = b"KERNEL32.DLL\x00"
    rdata[0x82 : 0x82 + 12] = b"ExitProcess\x00"
    for i in range(count):
        struct.pack_into("<I", rdata, 0x100 + i * 4, 0x2080)
    return rdata


def test_unterminated_thunk_array_is_capped_with_warning():
    res = analyze_bytes(_build_image(_thunk_rdata(10)), limits=Limits(max_thunks_per_dll=5))

    assert len(res.imports[0].symbols) == 5
    codes = [w.code for w in res.warnings]
    assert "E_PE_IMPORT_TOO_MANY_THUNKS" in codes
    assert "E_PE_IMPORT_TOO_MANY_FUNCTIONS" not in codes


def test_thunk_array_terminated_at_cap_has_no_warning():
    res = analyze_bytes(_build_image(_thunk_rdata(5)), limits=Limits(max_thunks_per_dll=5))

    assert len(res.imports[0].symbols) == 5
    assert not any(w.code == "E_PE_IMPORT_TOO_MANY_THUNKS" for w in res.warnings)
