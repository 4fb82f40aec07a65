from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field


def utc_now_iso() -> str:
    """
    UTC timestamp in ISO-8601 with 'Z' suffix, seconds precision.
    Example: 2026-01-08T17:12:34Z
    """
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


class Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class Diagnostic(Record):
    code: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)


def diag(code: str, message: str, **context: Any) -> Diagnostic:
    return Diagnostic(code=code, message=message, context=context)


class FileIdentity(Record):
    name: str
    path: str = ""
    size: int = 0


class DosHeader(Record):
    magic: str
    last_page_bytes: int = 0
    pages_in_file: int = 0
    relocations: int = 0
    header_size_paragraphs: int = 0
    pe_header_offset: int = 0


class CoffHeader(Record):
    machine: int
    machine_name: str
    number_of_sections: int
    time_date_stamp: int
    time_date_stamp_human: str
    pointer_to_symbol_table: int = 0
    number_of_symbols: int = 0
    size_of_optional_header: int = 0
    characteristics: Tuple[str, ...] = ()

    @property
    def is_dll(self) -> bool:
        return "DLL" in self.characteristics


class DataDirectory(Record):
    index: int
    name: str
    virtual_address: int
    size: int


class OptionalHeader(Record):
    magic: int
    is_64bit: bool
    format: str
    major_linker_version: int = 0
    minor_linker_version: int = 0
    size_of_code: int = 0
    size_of_initialized_data: int = 0
    size_of_uninitialized_data: int = 0
    address_of_entry_point: int = 0
    base_of_code: int = 0
    image_base: int = 0
    section_alignment: int = 0
    file_alignment: int = 0
    os_version: Tuple[int, int] = (0, 0)
    image_version: Tuple[int, int] = (0, 0)
    subsystem_version: Tuple[int, int] = (0, 0)
    size_of_image: int = 0
    size_of_headers: int = 0
    checksum: int = 0
    subsystem: int = 0
    subsystem_name: str = "Unknown"
    dll_characteristics: Tuple[str, ...] = ()
    size_of_stack_reserve: int = 0
    size_of_stack_commit: int = 0
    size_of_heap_reserve: int = 0
    size_of_heap_commit: int = 0
    number_of_rva_and_sizes: int = 0
    data_directories: Tuple[DataDirectory, ...] = ()

    def directory(self, index: int) -> Optional[DataDirectory]:
        for d in self.data_directories:
            if d.index == index:
                return d
        return None


class SectionHeader(Record):
    name: str
    virtual_size: int
    virtual_address: int
    size_of_raw_data: int
    pointer_to_raw_data: int
    characteristics: Tuple[str, ...] = ()
    entropy: float = 0.0


class ImportedSymbol(Record):
    name: Optional[str] = None
    ordinal: Optional[int] = None

    @property
    def label(self) -> str:
        if self.ordinal is not None:
            return f"Ordinal {self.ordinal}"
        return self.name or ""


class ImportEntry(Record):
    dll_name: str
    symbols: Tuple[ImportedSymbol, ...] = ()

    @computed_field  # type: ignore[misc]
    @property
    def functions(self) -> Tuple[str, ...]:
        return tuple(s.label for s in self.symbols)


class ExportDirectory(Record):
    present: bool = False
    virtual_address: int = 0
    size: int = 0
    file_offset: Optional[int] = None


class EntropyBlock(Record):
    offset: int
    size: int
    entropy: float


class EntropyProfile(Record):
    block_size: int = 256
    block_count: int = 0
    bytes_scanned: int = 0
    average: float = 0.0
    maximum: float = 0.0
    minimum: float = 0.0
    high_block_count: int = 0
    low_block_count: int = 0
    high_entropy_regions: Tuple[EntropyBlock, ...] = ()
    assessment: str = "Normal"


class Heuristics(Record):
    entrypoint_section: Optional[str] = None
    high_entropy_sections: Tuple[str, ...] = ()
    high_entropy_threshold: float = 7.0
    missing_mitigations: Tuple[str, ...] = ()
    security_directory_listed: bool = False
    imports_fingerprint_sha256: str = ""
    flags: Tuple[str, ...] = ()


class AnalysisResult(Record):
    file: FileIdentity
    is_pe: bool = False
    error: Optional[Diagnostic] = None
    warnings: Tuple[Diagnostic, ...] = ()

    dos_header: Optional[DosHeader] = None
    coff_header: Optional[CoffHeader] = None
    optional_header: Optional[OptionalHeader] = None

    sections: Tuple[SectionHeader, ...] = ()
    imports: Tuple[ImportEntry, ...] = ()
    exports: ExportDirectory = ExportDirectory()

    entropy: float = 0.0
    entropy_profile: EntropyProfile = EntropyProfile()
    packers: Tuple[str, ...] = ()
    suspicious_strings: Tuple[str, ...] = ()
    heuristics: Optional[Heuristics] = None


class InputEvidence(Record):
    input_path: str
    file_size: int
    sha256: str
    md5: str


class Report(BaseModel):
    schema_version: str = "1.0"
    scan_id: str
    timestamp_utc: str = Field(default_factory=utc_now_iso)

    tool: Dict[str, Any] = Field(default_factory=dict)
    input: InputEvidence
    analysis: AnalysisResult
