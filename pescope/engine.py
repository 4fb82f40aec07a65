from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

from pescope.config import Limits
from pescope.entropy import profile_source
from pescope.headers import decode_headers
from pescope.heuristics import compute_heuristics
from pescope.imports import import_directory, locate_exports, walk_imports
from pescope.indicators import find_suspicious_strings
from pescope.model import AnalysisResult, Diagnostic, ExportDirectory, FileIdentity, ImportEntry, Heuristics, diag
from pescope.packers import detect_packers
from pescope.sections import RvaResolver, parse_sections
from pescope.source import ByteSource, FileByteSource

logger = logging.getLogger(__name__)


def analyze_source(
    source: ByteSource,
    *,
    name: str = "<memory>",
    path: str = "",
    limits: Limits = Limits(),
) -> AnalysisResult:
    """
    Run the full single-pass analysis over source.

    Structural problems come back as `error` on the result; nothing in the
    input can make this raise.
    """
    identity = FileIdentity(name=name, path=path, size=source.size)

    hdr = decode_headers(source)
    if hdr.error is not None:
        logger.warning("%s: %s", name, hdr.error.message)
        return AnalysisResult(file=identity, error=hdr.error)

    warnings: List[Diagnostic] = list(hdr.warnings)
    coff = hdr.coff
    opt = hdr.optional

    sections, sec_warnings = parse_sections(
        source,
        hdr.section_table_offset,
        coff.number_of_sections if coff else 0,
        limits=limits,
    )
    warnings.extend(sec_warnings)
    resolver = RvaResolver(sections, source.size)

    imports: List[ImportEntry] = []
    exports = ExportDirectory()
    if opt is not None:
        imports, imp_warnings = walk_imports(
            source,
            import_directory(opt.data_directories),
            resolver,
            limits=limits,
        )
        warnings.extend(imp_warnings)
        exports = locate_exports(opt.data_directories, resolver)

    overall, profile = profile_source(
        source,
        block_size=limits.entropy_block_size,
        max_bytes=limits.max_entropy_bytes,
        high_threshold=limits.high_entropy_threshold,
        low_threshold=limits.low_entropy_threshold,
        max_regions=limits.max_entropy_regions,
    )

    packers = detect_packers(source.head, sections)
    strings = find_suspicious_strings(
        source.head,
        per_pattern=limits.strings_per_pattern,
        max_total=limits.strings_max_total,
    )

    heuristics: Optional[Heuristics] = None
    try:
        heuristics = compute_heuristics(opt, sections, imports, threshold=limits.high_entropy_threshold)
    except Exception as e:
        warnings.append(diag("E_PE_HEURISTICS_FAILED", f"Failed to compute PE heuristics: {type(e).__name__}"))

    for w in warnings:
        logger.debug("%s: %s %s", name, w.code, w.message)
    logger.info(
        "%s: %d sections, %d imported DLLs, entropy %.2f, %d warning(s)",
        name,
        len(sections),
        len(imports),
        overall,
        len(warnings),
    )

    return AnalysisResult(
        file=identity,
        is_pe=True,
        warnings=tuple(warnings),
        dos_header=hdr.dos,
        coff_header=coff,
        optional_header=opt,
        sections=tuple(sections),
        imports=tuple(imports),
        exports=exports,
        entropy=overall,
        entropy_profile=profile,
        packers=packers,
        suspicious_strings=strings,
        heuristics=heuristics,
    )


def analyze_bytes(
    data: bytes,
    *,
    name: str = "<memory>",
    path: str = "",
    limits: Limits = Limits(),
) -> AnalysisResult:
    source = ByteSource(data, header_buffer_bytes=limits.header_buffer_bytes)
    return analyze_source(source, name=name, path=path, limits=limits)


def analyze_file(path: Union[str, Path], *, limits: Limits = Limits()) -> AnalysisResult:
    p = Path(path)
    try:
        with FileByteSource(p, header_buffer_bytes=limits.header_buffer_bytes) as source:
            return analyze_source(source, name=p.name, path=str(p), limits=limits)
    except OSError as e:
        logger.warning("Cannot read %s: %s", p, e)
        return AnalysisResult(
            file=FileIdentity(name=p.name, path=str(p)),
            error=diag("E_IO_READ_FAILED", f"Could not read file: {type(e).__name__}: {e}", path=str(p)),
        )
