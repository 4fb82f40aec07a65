from __future__ import annotations
from rich.console import Console
from rich.table import Table
from rich.text import Text
from typing import Optional

from pescope.model import AnalysisResult, EntropyProfile

console = Console()


def _hex(v: int) -> str:
    return f"0x{v:X}"


def render_console(result: AnalysisResult, out: Optional[Console] = None) -> None:
    c = out or console

    t = Table(title="pescope: PE Analysis (Static, No Execution)")
    t.add_column("Field")
    t.add_column("Value", overflow="fold")
    t.add_row("file", Text(result.file.name))
    t.add_row("path", Text(result.file.path))
    t.add_row("size", str(result.file.size))

    if result.error is not None:
        t.add_row("error", Text(result.error.message, style="red"))
        c.print(t)
        return

    coff = result.coff_header
    opt = result.optional_header
    if coff is not None:
        t.add_row("machine", coff.machine_name)
        t.add_row("compiled", coff.time_date_stamp_human)
        t.add_row("characteristics", ", ".join(coff.characteristics))
    if opt is not None:
        t.add_row("format", opt.format)
        t.add_row("entry point", _hex(opt.address_of_entry_point))
        t.add_row("image base", _hex(opt.image_base))
        t.add_row("subsystem", opt.subsystem_name)
        t.add_row("dll characteristics", ", ".join(opt.dll_characteristics))
    t.add_row("entropy", f"{result.entropy:.2f} ({result.entropy_profile.assessment})")
    t.add_row("packers", ", ".join(result.packers) or "-")
    if result.heuristics is not None:
        t.add_row("missing mitigations", ", ".join(result.heuristics.missing_mitigations) or "-")
    c.print(t)

    st = Table(title="Sections")
    for col in ("Name", "VirtAddr", "VirtSize", "RawPtr", "RawSize", "Entropy", "Flags"):
        st.add_column(col)
    for s in result.sections:
        ent = f"{s.entropy:.2f}"
        if s.entropy > 7.0:
            ent = f"[red]{ent}[/red]"
        st.add_row(
            Text(s.name),
            _hex(s.virtual_address),
            _hex(s.virtual_size),
            _hex(s.pointer_to_raw_data),
            _hex(s.size_of_raw_data),
            ent,
            ", ".join(s.characteristics),
        )
    c.print(st)

    if result.imports:
        it = Table(title="Imports")
        it.add_column("DLL")
        it.add_column("Functions", overflow="fold")
        for imp in result.imports:
            it.add_row(Text(imp.dll_name), Text(", ".join(imp.functions)))
        c.print(it)

    if result.suspicious_strings:
        c.print("[yellow]Suspicious strings:[/yellow]")
        for s in result.suspicious_strings:
            c.print(f"  {s}", markup=False)

    for w in result.warnings:
        c.print(Text(f"warning {w.code}: {w.message}", style="dim"))


def render_entropy(name: str, profile: EntropyProfile, overall: float, out: Optional[Console] = None) -> None:
    c = out or console
    t = Table(title=f"Entropy profile: {name}")
    t.add_column("Metric")
    t.add_column("Value")
    t.add_row("overall", f"{overall:.4f} / 8.00")
    t.add_row("block size", str(profile.block_size))
    t.add_row("blocks", str(profile.block_count))
    t.add_row("average", f"{profile.average:.4f}")
    t.add_row("maximum", f"{profile.maximum:.4f}")
    t.add_row("minimum", f"{profile.minimum:.4f}")
    t.add_row("high blocks", str(profile.high_block_count))
    t.add_row("low blocks", str(profile.low_block_count))
    t.add_row("assessment", profile.assessment)
    c.print(t)

    if profile.high_entropy_regions:
        rt = Table(title="High entropy regions")
        rt.add_column("Offset")
        rt.add_column("Entropy")
        for b in profile.high_entropy_regions:
            rt.add_row(f"0x{b.offset:08X}", f"{b.entropy:.4f}")
        c.print(rt)
