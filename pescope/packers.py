from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

from pescope.model import SectionHeader

# (family, raw byte pattern). Heuristic indicator only; not a verdict.
PACKER_SIGNATURES: Tuple[Tuple[str, bytes], ...] = (
    ("UPX", b"UPX0"),
    ("UPX", b"UPX1"),
    ("UPX", b"UPX!"),
    ("ASPack", b".aspack"),
    ("ASPack", b"ByDwing"),
    ("PECompact", b"PEC2"),
    ("Themida", b".themida"),
    ("VMProtect", b".vmp0"),
    ("VMProtect", b".vmp1"),
    ("Enigma", b".enigma"),
    ("MPRESS", b".MPRESS"),
    ("Petite", b".petite"),
    ("NSPack", b".nsp0"),
    ("PELock", b"PELock"),
    ("Armadillo", b".text1"),
    (".NET", b"mscoree.dll"),
)

# Lowercase fragments matched against decoded section names
SECTION_NAME_FRAGMENTS: Dict[str, str] = {
    "upx": "UPX",
    "aspack": "ASPack",
    "vmp": "VMProtect",
    "themida": "Themida",
    "enigma": "Enigma",
    "mpress": "MPRESS",
    "petite": "Petite",
    "nsp": "NSPack",
}


def detect_packers(data: bytes, sections: Sequence[SectionHeader] = ()) -> Tuple[str, ...]:
    """
    Packer families whose byte signature occurs in data or whose name
    fragment occurs in a section name. Unique, first-seen order.
    """
    found: List[str] = []

    def add(name: str) -> None:
        if name not in found:
            found.append(name)

    for family, pattern in PACKER_SIGNATURES:
        if pattern in data:
            add(family)

    for s in sections:
        lowered = s.name.lower()
        for fragment, family in SECTION_NAME_FRAGMENTS.items():
            if fragment in lowered:
                add(family)

    return tuple(found)
