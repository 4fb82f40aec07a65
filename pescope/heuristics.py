from __future__ import annotations

import hashlib
from typing import List, Optional, Sequence

from pescope.flags import DIR_SECURITY
from pescope.model import Heuristics, ImportEntry, OptionalHeader, SectionHeader
from pescope.sections import RvaResolver


def entrypoint_section_name(entry_rva: Optional[int], sections: Sequence[SectionHeader]) -> Optional[str]:
    """
    Return the section name that contains AddressOfEntryPoint RVA.
    Deterministic: first match in section order.
    """
    if not entry_rva or entry_rva <= 0:
        return None
    # file_size only bounds offsets, which we do not need here
    s = RvaResolver(sections, file_size=0).section_for(entry_rva)
    return s.name if s is not None else None


def high_entropy_sections(sections: Sequence[SectionHeader], *, threshold: float = 7.0) -> List[str]:
    return [s.name for s in sections if s.entropy > threshold]


def missing_mitigations(optional: Optional[OptionalHeader]) -> List[str]:
    """Exploit mitigations the image does not opt into."""
    if optional is None:
        return []
    present = set(optional.dll_characteristics)
    wanted = ["DYNAMIC_BASE", "NX_COMPAT", "GUARD_CF"]
    if optional.is_64bit:
        wanted.append("HIGH_ENTROPY_VA")
    return [w for w in wanted if w not in present]


def security_directory_listed(optional: Optional[OptionalHeader]) -> bool:
    """
    Presence-only check for Security Directory (Authenticode).
    NOTE: This directory uses FILE OFFSET + SIZE (not RVA).
    """
    if optional is None:
        return False
    d = optional.directory(DIR_SECURITY)
    return d is not None and d.virtual_address > 0 and d.size > 0


def imports_fingerprint_sha256(imports: Sequence[ImportEntry]) -> str:
    """
    Deterministic import fingerprint (NOT classic imphash).
    Canonical form:
      - dll names lowercased, one line per dll, sorted by dll
      - function names lowercased and sorted
      - ordinals included as "ord:<n>"
    Returns sha256(hex) of the canonical text.
    """
    lines: List[str] = []
    for imp in sorted(imports, key=lambda x: x.dll_name.lower()):
        funcs = sorted({s.name.lower() for s in imp.symbols if s.name})
        ords = sorted({s.ordinal for s in imp.symbols if s.ordinal is not None})
        items = funcs + [f"ord:{o}" for o in ords]
        lines.append(f"{imp.dll_name.strip().lower()}:{','.join(items)}")

    canonical = "\n".join(lines)
    return hashlib.sha256(canonical.encode("utf-8", errors="replace")).hexdigest()


def compute_heuristics(
    optional: Optional[OptionalHeader],
    sections: Sequence[SectionHeader],
    imports: Sequence[ImportEntry],
    *,
    threshold: float = 7.0,
) -> Heuristics:
    """
    Derived-only heuristic fields from already parsed structures.
    No I/O.
    """
    ep_sec = entrypoint_section_name(optional.address_of_entry_point if optional else None, sections)
    high_ent = high_entropy_sections(sections, threshold=threshold)
    missing = missing_mitigations(optional)
    sec_listed = security_directory_listed(optional)

    flags: List[str] = []
    if ep_sec:
        flags.append("entrypoint_section_resolved")
    elif optional is not None and optional.address_of_entry_point:
        flags.append("entrypoint_outside_sections")
    if high_ent:
        flags.append("high_entropy_sections_present")
    if missing:
        flags.append("mitigations_missing")
    if sec_listed:
        flags.append("security_directory_listed")

    return Heuristics(
        entrypoint_section=ep_sec,
        high_entropy_sections=tuple(high_ent),
        high_entropy_threshold=threshold,
        missing_mitigations=tuple(missing),
        security_directory_listed=sec_listed,
        imports_fingerprint_sha256=imports_fingerprint_sha256(imports),
        flags=tuple(flags),
    )
