from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any, Dict

from pescope.model import AnalysisResult


def _bool(v: bool) -> str:
    return "true" if v else "false"


def summary_row(result: AnalysisResult) -> Dict[str, Any]:
    coff = result.coff_header
    opt = result.optional_header

    row = {
        "file_name": result.file.name,
        "file_path": result.file.path,
        "file_size": result.file.size,
        "is_pe": _bool(result.is_pe),
        "error": result.error.message if result.error else "",
        "warning_count": len(result.warnings),

        "pe_machine": coff.machine_name if coff else "",
        "pe_timestamp": coff.time_date_stamp_human if coff else "",
        "pe_sections": coff.number_of_sections if coff else "",
        "pe_sections_parsed": len(result.sections),
        "pe_is_dll": _bool(bool(coff and coff.is_dll)),
        "pe_is_64": _bool(bool(opt and opt.is_64bit)),
        "pe_entrypoint_rva": f"0x{opt.address_of_entry_point:X}" if opt else "",
        "pe_image_base": f"0x{opt.image_base:X}" if opt else "",
        "pe_subsystem": opt.subsystem_name if opt else "",

        "import_dll_count": len(result.imports),
        "import_function_count": sum(len(i.symbols) for i in result.imports),
        "export_directory_present": _bool(result.exports.present),

        "entropy": result.entropy,
        "entropy_assessment": result.entropy_profile.assessment,
        "packers": ";".join(result.packers),
        "suspicious_string_count": len(result.suspicious_strings),
    }

    return row


def summary_csv_text(result: AnalysisResult) -> str:
    row = summary_row(result)
    buf = io.StringIO(newline="")
    writer = csv.DictWriter(buf, fieldnames=list(row.keys()))
    writer.writeheader()
    writer.writerow(row)
    return buf.getvalue()


def write_summary_csv(path: Path, result: AnalysisResult) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        f.write(summary_csv_text(result))
