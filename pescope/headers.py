from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from pescope.flags import (
    DATA_DIRECTORY_NAMES,
    DLL_CHARACTERISTICS,
    FILE_CHARACTERISTICS,
    MACHINE_TYPES,
    SUBSYSTEMS,
    decode_flags,
    lookup_name,
)
from pescope.model import CoffHeader, DataDirectory, Diagnostic, DosHeader, OptionalHeader, diag
from pescope.source import ByteSource

logger = logging.getLogger(__name__)

IMAGE_DOS_SIGNATURE = b"MZ"
IMAGE_NT_SIGNATURE = b"PE\x00\x00"

DOS_HEADER_SIZE = 64
COFF_HEADER_SIZE = 20
E_LFANEW_OFFSET = 0x3C

PE32_MAGIC = 0x10B
PE32P_MAGIC = 0x20B

MAX_DATA_DIRECTORIES = 16

# Optional header field layouts: name -> (offset, struct format).
# Offsets up to SizeOfUninitializedData are shared; PE32 has BaseOfData at
# 0x18 and a 4-byte ImageBase at 0x1C, PE32+ widens ImageBase and the
# stack/heap sizes to 8 bytes, which shifts everything after them.
_COMMON_LAYOUT: Dict[str, Tuple[int, str]] = {
    "major_linker_version": (0x02, "<B"),
    "minor_linker_version": (0x03, "<B"),
    "size_of_code": (0x04, "<I"),
    "size_of_initialized_data": (0x08, "<I"),
    "size_of_uninitialized_data": (0x0C, "<I"),
    "address_of_entry_point": (0x10, "<I"),
    "base_of_code": (0x14, "<I"),
    "section_alignment": (0x20, "<I"),
    "file_alignment": (0x24, "<I"),
    "major_os_version": (0x28, "<H"),
    "minor_os_version": (0x2A, "<H"),
    "major_image_version": (0x2C, "<H"),
    "minor_image_version": (0x2E, "<H"),
    "major_subsystem_version": (0x30, "<H"),
    "minor_subsystem_version": (0x32, "<H"),
    "size_of_image": (0x38, "<I"),
    "size_of_headers": (0x3C, "<I"),
    "checksum": (0x40, "<I"),
    "subsystem": (0x44, "<H"),
    "dll_characteristics": (0x46, "<H"),
}

PE32_LAYOUT: Dict[str, Tuple[int, str]] = dict(
    _COMMON_LAYOUT,
    image_base=(0x1C, "<I"),
    size_of_stack_reserve=(0x48, "<I"),
    size_of_stack_commit=(0x4C, "<I"),
    size_of_heap_reserve=(0x50, "<I"),
    size_of_heap_commit=(0x54, "<I"),
    number_of_rva_and_sizes=(0x5C, "<I"),
)

PE32P_LAYOUT: Dict[str, Tuple[int, str]] = dict(
    _COMMON_LAYOUT,
    image_base=(0x18, "<Q"),
    size_of_stack_reserve=(0x48, "<Q"),
    size_of_stack_commit=(0x50, "<Q"),
    size_of_heap_reserve=(0x58, "<Q"),
    size_of_heap_commit=(0x60, "<Q"),
    number_of_rva_and_sizes=(0x6C, "<I"),
)

# Offset of the first IMAGE_DATA_DIRECTORY inside the optional header
PE32_DIRECTORIES_OFFSET = 0x60
PE32P_DIRECTORIES_OFFSET = 0x70

_READERS = {"<B": "u8", "<H": "u16", "<I": "u32", "<Q": "u64"}


@dataclass
class HeaderDecodeResult:
    dos: Optional[DosHeader] = None
    coff: Optional[CoffHeader] = None
    optional: Optional[OptionalHeader] = None
    error: Optional[Diagnostic] = None
    warnings: List[Diagnostic] = field(default_factory=list)
    # File offset of the first section header
    section_table_offset: int = 0


def format_timestamp(ts: int) -> str:
    if not ts:
        return "invalid"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def decode_dos_header(head: bytes) -> DosHeader:
    src = ByteSource(head[:DOS_HEADER_SIZE])
    return DosHeader(
        magic=head[:2].decode("latin-1"),
        last_page_bytes=src.u16(0x02) or 0,
        pages_in_file=src.u16(0x04) or 0,
        relocations=src.u16(0x06) or 0,
        header_size_paragraphs=src.u16(0x08) or 0,
        pe_header_offset=src.u32(E_LFANEW_OFFSET) or 0,
    )


def decode_coff_header(source: ByteSource, off: int) -> Optional[CoffHeader]:
    raw = source.read(off, COFF_HEADER_SIZE)
    if raw is None:
        return None
    coff = ByteSource(raw)
    machine = coff.u16(0) or 0
    ts = coff.u32(4) or 0
    chars = coff.u16(18) or 0
    return CoffHeader(
        machine=machine,
        machine_name=lookup_name(machine, MACHINE_TYPES),
        number_of_sections=coff.u16(2) or 0,
        time_date_stamp=ts,
        time_date_stamp_human=format_timestamp(ts),
        pointer_to_symbol_table=coff.u32(8) or 0,
        number_of_symbols=coff.u32(12) or 0,
        size_of_optional_header=coff.u16(16) or 0,
        characteristics=decode_flags(chars, FILE_CHARACTERISTICS),
    )


def decode_optional_header(
    source: ByteSource, off: int, declared_size: int
) -> Tuple[Optional[OptionalHeader], List[Diagnostic]]:
    warnings: List[Diagnostic] = []

    magic = source.u16(off)
    if magic not in (PE32_MAGIC, PE32P_MAGIC):
        return None, [diag("E_PE_OPT_BAD_MAGIC", "Optional header magic not PE32/PE32+.", opt_magic=magic)]

    is_64bit = magic == PE32P_MAGIC
    layout = PE32P_LAYOUT if is_64bit else PE32_LAYOUT
    dd_rel = PE32P_DIRECTORIES_OFFSET if is_64bit else PE32_DIRECTORIES_OFFSET

    values: Dict[str, int] = {}
    missing: List[str] = []
    for name, (rel, fmt) in layout.items():
        v = getattr(source, _READERS[fmt])(off + rel)
        if v is None:
            missing.append(name)
            v = 0
        values[name] = int(v)
    if missing:
        warnings.append(
            diag(
                "E_PE_OPT_TRUNCATED",
                "Optional header truncated; missing fields default to 0.",
                opt_off=off,
                missing_fields=missing,
            )
        )

    # Directory entries may only come from inside the declared optional header
    declared_room = max(0, (declared_size - dd_rel) // 8)
    n_dirs = min(values["number_of_rva_and_sizes"], MAX_DATA_DIRECTORIES, declared_room)
    directories: List[DataDirectory] = []
    for i in range(n_dirs):
        d_off = off + dd_rel + i * 8
        va = source.u32(d_off)
        size = source.u32(d_off + 4)
        if va is None or size is None:
            warnings.append(diag("E_PE_DATA_DIRECTORY_TRUNCATED", "Data directory array truncated.", index=i))
            break
        directories.append(DataDirectory(index=i, name=DATA_DIRECTORY_NAMES[i], virtual_address=va, size=size))

    dll_chars = values["dll_characteristics"]
    subsystem = values["subsystem"]
    header = OptionalHeader(
        magic=magic,
        is_64bit=is_64bit,
        format="PE32+" if is_64bit else "PE32",
        major_linker_version=values["major_linker_version"],
        minor_linker_version=values["minor_linker_version"],
        size_of_code=values["size_of_code"],
        size_of_initialized_data=values["size_of_initialized_data"],
        size_of_uninitialized_data=values["size_of_uninitialized_data"],
        address_of_entry_point=values["address_of_entry_point"],
        base_of_code=values["base_of_code"],
        image_base=values["image_base"],
        section_alignment=values["section_alignment"],
        file_alignment=values["file_alignment"],
        os_version=(values["major_os_version"], values["minor_os_version"]),
        image_version=(values["major_image_version"], values["minor_image_version"]),
        subsystem_version=(values["major_subsystem_version"], values["minor_subsystem_version"]),
        size_of_image=values["size_of_image"],
        size_of_headers=values["size_of_headers"],
        checksum=values["checksum"],
        subsystem=subsystem,
        subsystem_name=SUBSYSTEMS.get(subsystem, f"Unknown ({subsystem})"),
        dll_characteristics=decode_flags(dll_chars, DLL_CHARACTERISTICS),
        size_of_stack_reserve=values["size_of_stack_reserve"],
        size_of_stack_commit=values["size_of_stack_commit"],
        size_of_heap_reserve=values["size_of_heap_reserve"],
        size_of_heap_commit=values["size_of_heap_commit"],
        number_of_rva_and_sizes=values["number_of_rva_and_sizes"],
        data_directories=tuple(directories),
    )
    return header, warnings


def decode_headers(source: ByteSource) -> HeaderDecodeResult:
    """
    Decode DOS, COFF and optional headers from the buffered header region.
    A structural problem sets `error` and leaves the later headers unset.
    """
    res = HeaderDecodeResult()
    head = source.head

    if len(head) < DOS_HEADER_SIZE:
        res.error = diag("E_PE_FILE_TOO_SMALL", "File too small to be a valid PE", file_size=source.size)
        return res

    dos = decode_dos_header(head)
    if head[:2] != IMAGE_DOS_SIGNATURE:
        res.error = diag("E_PE_BAD_DOS_SIGNATURE", "Invalid DOS header (not MZ)", magic=head[:2].hex())
        return res
    res.dos = dos

    e_lfanew = dos.pe_header_offset
    if e_lfanew + 4 > len(head):
        res.error = diag("E_PE_HEADER_OFFSET_OOB", "PE header offset beyond file size", e_lfanew=e_lfanew)
        return res

    if head[e_lfanew : e_lfanew + 4] != IMAGE_NT_SIGNATURE:
        res.error = diag("E_PE_BAD_NT_SIGNATURE", "Invalid PE signature", e_lfanew=e_lfanew)
        return res

    coff_off = e_lfanew + 4
    coff = decode_coff_header(source, coff_off)
    if coff is None:
        res.error = diag("E_PE_COFF_TRUNCATED", "COFF header truncated", coff_off=coff_off)
        return res
    res.coff = coff

    opt_off = coff_off + COFF_HEADER_SIZE
    if coff.size_of_optional_header > 0:
        res.optional, opt_warnings = decode_optional_header(source, opt_off, coff.size_of_optional_header)
        res.warnings.extend(opt_warnings)
    else:
        logger.debug("No optional header declared at 0x%x", opt_off)

    res.section_table_offset = opt_off + coff.size_of_optional_header
    return res
