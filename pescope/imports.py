from __future__ import annotations

import logging
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from pescope.config import Limits
from pescope.flags import DIR_EXPORT, DIR_IMPORT
from pescope.model import DataDirectory, Diagnostic, ExportDirectory, ImportedSymbol, ImportEntry, diag
from pescope.sections import RvaResolver
from pescope.source import ByteSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMPORT_DESCRIPTOR_SIZE = 20

# Thunks are walked as 32-bit values on both PE32 and PE32+
THUNK_SIZE = 4
ORDINAL_FLAG = 0x80000000


def walk_array(
    source: ByteSource,
    start: int,
    stride: int,
    *,
    limit: int,
    read: Callable[[ByteSource, int], Optional[T]],
    is_terminal: Callable[[T], bool],
    on_limit: Optional[Callable[[], None]] = None,
) -> Iterator[Tuple[int, T]]:
    """
    Yield (index, element) for a sentinel-terminated array of fixed-size
    elements. Stops at the first terminal element, at the first element that
    cannot be read, or after `limit` elements, whichever comes first.

    `on_limit` is called only when the walk was cut short by `limit`, i.e.
    the element right after the last one yielded is readable and not terminal.
    """
    for idx in range(limit):
        elem = read(source, start + idx * stride)
        if elem is None or is_terminal(elem):
            return
        yield idx, elem

    if on_limit is not None:
        nxt = read(source, start + limit * stride)
        if nxt is not None and not is_terminal(nxt):
            on_limit()


def _read_descriptor(source: ByteSource, off: int) -> Optional[Tuple[int, int, int]]:
    raw = source.read(off, IMPORT_DESCRIPTOR_SIZE)
    if raw is None:
        return None
    d = ByteSource(raw)
    # (OriginalFirstThunk, Name, FirstThunk)
    return d.u32(0) or 0, d.u32(12) or 0, d.u32(16) or 0


def decode_thunk(value: int) -> Optional[ImportedSymbol]:
    """
    Decode an ordinal thunk. Returns None when the thunk is an RVA to a
    hint/name record instead.
    """
    if value & ORDINAL_FLAG:
        return ImportedSymbol(ordinal=int(value & 0xFFFF))
    return None


def _walk_thunks(
    source: ByteSource,
    resolver: RvaResolver,
    thunk_off: int,
    *,
    dll_name: str,
    limits: Limits,
    warnings: List[Diagnostic],
) -> List[ImportedSymbol]:
    symbols: List[ImportedSymbol] = []
    for _, value in walk_array(
        source,
        thunk_off,
        THUNK_SIZE,
        limit=limits.max_thunks_per_dll,
        read=ByteSource.u32,
        is_terminal=lambda v: v == 0,
        on_limit=lambda: warnings.append(
            diag(
                "E_PE_IMPORT_TOO_MANY_THUNKS",
                f"Thunk array not terminated within max_thunks_per_dll={limits.max_thunks_per_dll}.",
                dll=dll_name,
            )
        ),
    ):
        if len(symbols) >= limits.max_functions_per_dll:
            warnings.append(
                diag(
                    "E_PE_IMPORT_TOO_MANY_FUNCTIONS",
                    f"Import function count exceeded max_functions_per_dll={limits.max_functions_per_dll}.",
                    dll=dll_name,
                )
            )
            break

        sym = decode_thunk(value)
        if sym is not None:
            symbols.append(sym)
            continue

        ibn_off = resolver.resolve(value)
        if ibn_off is None:
            logger.debug("Unmappable hint/name RVA 0x%x in %s", value, dll_name)
            warnings.append(
                diag("E_PE_IMPORT_BY_NAME_UNMAPPABLE", "IMAGE_IMPORT_BY_NAME RVA could not be mapped.", dll=dll_name, ibn_rva=value)
            )
            continue

        name = source.c_string(ibn_off + 2, max_len=limits.max_name_len)
        if not name:
            warnings.append(
                diag("E_PE_IMPORT_BY_NAME_UNREADABLE", "Imported function name unreadable.", dll=dll_name, ibn_rva=value)
            )
            continue
        symbols.append(ImportedSymbol(name=name))

    return symbols


def walk_imports(
    source: ByteSource,
    import_dir: Optional[DataDirectory],
    resolver: RvaResolver,
    *,
    limits: Limits = Limits(),
) -> Tuple[List[ImportEntry], List[Diagnostic]]:
    warnings: List[Diagnostic] = []
    imports: List[ImportEntry] = []

    if import_dir is None or not import_dir.virtual_address or not import_dir.size:
        return imports, warnings

    base_off = resolver.resolve(import_dir.virtual_address)
    if base_off is None:
        return imports, [
            diag(
                "E_PE_IMPORT_RVA_UNMAPPABLE",
                "Import directory RVA could not be mapped to file offset.",
                import_rva=import_dir.virtual_address,
            )
        ]

    for _, (oft, name_rva, first_thunk) in walk_array(
        source,
        base_off,
        IMPORT_DESCRIPTOR_SIZE,
        limit=limits.max_import_descriptors,
        read=_read_descriptor,
        is_terminal=lambda d: d[1] == 0,
        on_limit=lambda: warnings.append(
            diag(
                "E_PE_IMPORT_TOO_MANY_DLLS",
                f"Import descriptor table not terminated within max_import_descriptors={limits.max_import_descriptors}.",
                max_import_descriptors=limits.max_import_descriptors,
            )
        ),
    ):
        name_off = resolver.resolve(name_rva)
        dll_name = source.c_string(name_off, max_len=limits.max_name_len) if name_off is not None else None
        if not dll_name:
            warnings.append(
                diag("E_PE_IMPORT_DLL_NAME_UNREADABLE", "Import DLL name could not be resolved or read.", name_rva=name_rva)
            )
            continue

        symbols: List[ImportedSymbol] = []
        thunk_rva = oft or first_thunk
        thunk_off = resolver.resolve(thunk_rva) if thunk_rva else None
        if thunk_off is None:
            warnings.append(
                diag("E_PE_IMPORT_THUNK_UNMAPPABLE", "Import thunk RVA could not be mapped.", thunk_rva=thunk_rva, dll=dll_name)
            )
        else:
            symbols = _walk_thunks(
                source,
                resolver,
                thunk_off,
                dll_name=dll_name,
                limits=limits,
                warnings=warnings,
            )

        imports.append(ImportEntry(dll_name=dll_name, symbols=tuple(symbols)))

    return imports, warnings


def locate_exports(directories: Sequence[DataDirectory], resolver: RvaResolver) -> ExportDirectory:
    """Locate the export directory; its contents are not walked."""
    for d in directories:
        if d.index == DIR_EXPORT and d.virtual_address and d.size:
            return ExportDirectory(
                present=True,
                virtual_address=d.virtual_address,
                size=d.size,
                file_offset=resolver.resolve(d.virtual_address),
            )
    return ExportDirectory()


def import_directory(directories: Sequence[DataDirectory]) -> Optional[DataDirectory]:
    for d in directories:
        if d.index == DIR_IMPORT:
            return d
    return None
