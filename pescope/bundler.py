from __future__ import annotations

import hashlib
import zipfile
from pathlib import Path
from typing import Tuple

from pescope.model import Report
from pescope.reporters.csv_report import summary_csv_text

HASH_CHUNK_SIZE = 1024 * 1024


def file_hashes(path: Path) -> Tuple[str, str]:
    """(sha256, md5) hex digests, streamed so large samples are never fully loaded."""
    sha256 = hashlib.sha256()
    md5 = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            sha256.update(chunk)
            md5.update(chunk)
    return sha256.hexdigest(), md5.hexdigest()


def bundle_zip_name(scan_id: str, input_path: Path) -> str:
    # sample.zip -> pescope_<id>_sample.zip, never sample.zip.zip
    name = input_path.name
    if name.lower().endswith(".zip"):
        name = name[:-4]
    return f"pescope_{scan_id}_{name}.zip"


def report_json(report: Report) -> str:
    return report.model_dump_json(indent=2)


def write_report_json(path: Path, report: Report) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report_json(report), encoding="utf-8")


def write_bundle(out_base: Path, report: Report, input_path: Path) -> Path:
    """Zip report.json and summary.csv for one analyzed file into out_base."""
    out_base.mkdir(parents=True, exist_ok=True)
    zip_path = out_base / bundle_zip_name(report.scan_id, input_path)
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("report.json", report_json(report))
        zf.writestr("summary.csv", summary_csv_text(report.analysis))
    return zip_path
