from __future__ import annotations

import uuid
from importlib import metadata
from pathlib import Path
from typing import List, Optional

import typer

from pescope.bundler import file_hashes, write_bundle, write_report_json
from pescope.config import AppConfig, config_to_snapshot, load_config
from pescope.engine import analyze_file
from pescope.entropy import profile_source
from pescope.log import configure_logging
from pescope.model import AnalysisResult, InputEvidence, Report
from pescope.reporters.console import render_console, render_entropy
from pescope.reporters.csv_report import write_summary_csv
from pescope.source import FileByteSource

app = typer.Typer(add_completion=False)


def _tool_version() -> str:
    try:
        return metadata.version("pescope")
    except metadata.PackageNotFoundError:
        return "0.1.0-dev"


def version_callback(value: bool):
    if value:
        typer.echo(f"pescope version: {_tool_version()}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True, help="Show version and exit."
    ),
):
    """
    Static PE (Portable Executable) header, import and entropy analyzer.
    """
    pass


def build_report(p: Path, result: AnalysisResult, cfg: AppConfig) -> Report:
    sha256, md5 = file_hashes(p)
    return Report(
        schema_version=cfg.schema_version,
        scan_id=str(uuid.uuid4()),
        tool={"name": "pescope", "version": _tool_version(), "config": config_to_snapshot(cfg)},
        input=InputEvidence(input_path=str(p), file_size=result.file.size, sha256=sha256, md5=md5),
        analysis=result,
    )


def _analyze_one(
    p: Path,
    cfg: AppConfig,
    *,
    json_out: Optional[Path],
    csv_out: Optional[Path],
    out_base: Optional[Path],
    quiet: bool,
) -> Optional[AnalysisResult]:
    size = p.stat().st_size
    if size > cfg.limits.max_file_size_bytes:
        typer.secho(f"Skipping {p.name}: File too large ({size} bytes).", fg=typer.colors.YELLOW, err=True)
        return None

    result = analyze_file(p, limits=cfg.limits)

    if json_out is not None or out_base is not None:
        report = build_report(p, result, cfg)
        if json_out is not None:
            write_report_json(json_out, report)
        if out_base is not None:
            bundle_zip = write_bundle(out_base, report, p)
            typer.echo(f"Bundle written: {bundle_zip}")
    if csv_out is not None:
        write_summary_csv(csv_out, result)

    if not quiet:
        render_console(result)
    elif result.error is not None:
        typer.secho(f"{p.name}: {result.error.message}", fg=typer.colors.RED, err=True)
    return result


@app.command()
def analyze(
    path: str = typer.Argument(..., help="PE file or directory to analyze."),
    config: str = typer.Option(None, "--config", help="Path to YAML config."),
    json_out: str = typer.Option(None, "--json", help="Write the JSON report to this file (single file only)."),
    csv_out: str = typer.Option(None, "--csv", help="Write a one-row summary CSV to this file (single file only)."),
    outdir: str = typer.Option(None, "--outdir", help="Write a zipped report bundle per file into this directory."),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Recurse into subdirectories."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print the console summary."),
):
    cfg = load_config(config)
    configure_logging(cfg.log_level)

    p_in = Path(path).expanduser().resolve()
    if not p_in.exists():
        raise typer.BadParameter(f"Path does not exist: {p_in}")

    out_base = Path(outdir).expanduser().resolve() if outdir else None

    if p_in.is_file():
        _analyze_one(
            p_in,
            cfg,
            json_out=Path(json_out) if json_out else None,
            csv_out=Path(csv_out) if csv_out else None,
            out_base=out_base,
            quiet=quiet,
        )
        return

    if not p_in.is_dir():
        raise typer.BadParameter(f"Unsupported path type: {p_in}")
    if json_out or csv_out:
        raise typer.BadParameter("--json and --csv only apply to a single file; use --outdir for directories.")

    pattern = "**/*" if recursive else "*"
    files: List[Path] = sorted(f for f in p_in.glob(pattern) if f.is_file() and not f.name.startswith("."))
    if not files:
        typer.echo("No files found to analyze.")
        return

    typer.echo(f"Analyzing {len(files)} files in {p_in}")
    pe_count = 0
    for f in files:
        res = _analyze_one(f, cfg, json_out=None, csv_out=None, out_base=out_base, quiet=quiet)
        if res is not None and res.is_pe:
            pe_count += 1
    typer.echo(f"Done. {pe_count}/{len(files)} files parsed as PE.")


@app.command()
def entropy(
    path: str = typer.Argument(..., help="File to profile."),
    config: str = typer.Option(None, "--config", help="Path to YAML config."),
    block_size: int = typer.Option(None, "--block-size", help="Block size in bytes (default from config)."),
):
    """
    Block entropy profile of any file, PE or not.
    """
    cfg = load_config(config)
    configure_logging(cfg.log_level)
    lim = cfg.limits

    p = Path(path).expanduser().resolve()
    if not p.is_file():
        raise typer.BadParameter(f"Not a file: {p}")
    bs = block_size or lim.entropy_block_size
    if bs <= 0:
        raise typer.BadParameter("--block-size must be positive")

    with FileByteSource(p, header_buffer_bytes=lim.header_buffer_bytes) as source:
        overall, profile = profile_source(
            source,
            block_size=bs,
            max_bytes=lim.max_entropy_bytes,
            high_threshold=lim.high_entropy_threshold,
            low_threshold=lim.low_entropy_threshold,
            max_regions=lim.max_entropy_regions,
        )
    render_entropy(p.name, profile, overall)


if __name__ == "__main__":
    app()
