from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from pescope.config import Limits
from pescope.entropy import shannon_entropy
from pescope.flags import SECTION_CHARACTERISTICS, decode_flags
from pescope.model import Diagnostic, SectionHeader, diag
from pescope.source import ByteSource

logger = logging.getLogger(__name__)

SECTION_HEADER_SIZE = 40


def decode_section_name(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace").strip()


def _section_entropy(source: ByteSource, ptr_raw: int, raw_size: int, window: int) -> float:
    if raw_size <= 0 or ptr_raw <= 0 or ptr_raw >= source.size:
        return 0.0
    blob = source.read_upto(ptr_raw, min(raw_size, window))
    if not blob:
        return 0.0
    return round(shannon_entropy(blob), 6)


def parse_sections(
    source: ByteSource,
    sect_off: int,
    number_of_sections: int,
    *,
    limits: Limits = Limits(),
) -> Tuple[List[SectionHeader], List[Diagnostic]]:
    warnings: List[Diagnostic] = []

    count = number_of_sections
    if count > limits.max_sections:
        warnings.append(
            diag(
                "E_PE_SECTION_COUNT_CLAMPED",
                f"Section count too large; clamped to max_sections={limits.max_sections}.",
                number_of_sections=number_of_sections,
                max_sections=limits.max_sections,
            )
        )
        count = limits.max_sections

    table_end = len(source.head)
    sections: List[SectionHeader] = []
    for i in range(count):
        sh_off = sect_off + i * SECTION_HEADER_SIZE
        if sh_off + SECTION_HEADER_SIZE > table_end:
            warnings.append(diag("E_PE_SECTION_HEADER_TRUNCATED", "Section header truncated.", section_index=i, sh_off=sh_off))
            break
        sh = ByteSource(source.head[sh_off : sh_off + SECTION_HEADER_SIZE])

        virtual_size = sh.u32(8) or 0
        virtual_address = sh.u32(12) or 0
        size_of_raw_data = sh.u32(16) or 0
        ptr_raw = sh.u32(20) or 0
        chars = sh.u32(36) or 0

        sections.append(
            SectionHeader(
                name=decode_section_name(sh.read(0, 8) or b""),
                virtual_size=virtual_size,
                virtual_address=virtual_address,
                size_of_raw_data=size_of_raw_data,
                pointer_to_raw_data=ptr_raw,
                characteristics=decode_flags(chars, SECTION_CHARACTERISTICS),
                entropy=_section_entropy(source, ptr_raw, size_of_raw_data, limits.section_entropy_window),
            )
        )

    logger.debug("Parsed %d of %d declared sections", len(sections), number_of_sections)
    return sections, warnings


class RvaResolver:
    """
    Maps RVAs to file offsets through the section table.

    The first section in table order whose virtual range contains the RVA
    wins. Offsets that land outside the file resolve to None.
    """

    def __init__(self, sections: Sequence[SectionHeader], file_size: int):
        self._sections = tuple(sections)
        self._file_size = file_size

    def section_for(self, rva: int) -> Optional[SectionHeader]:
        for s in self._sections:
            span = s.virtual_size or s.size_of_raw_data
            if span <= 0:
                continue
            if s.virtual_address <= rva < s.virtual_address + span:
                return s
        return None

    def resolve(self, rva: int) -> Optional[int]:
        if rva < 0:
            return None
        s = self.section_for(rva)
        if s is None:
            return None
        off = s.pointer_to_raw_data + (rva - s.virtual_address)
        if 0 <= off < self._file_size:
            return off
        return None
