from __future__ import annotations

import re
from typing import Iterator, List, Tuple

MIN_RUN_LEN = 6
MAX_RUN_LEN = 512

# Printable ASCII runs; longer runs are cut into MAX_RUN_LEN pieces
_RUN_RE = re.compile(rb"[\x20-\x7e]{%d,%d}" % (MIN_RUN_LEN, MAX_RUN_LEN))

# Repeats are bounded; an e-mail local part never starts mid-word.
_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(rb"https?://[^\s\"'<>]{1,190}", re.IGNORECASE),
    re.compile(rb"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b"),
    re.compile(rb"(?<![a-zA-Z0-9._%+-])[a-zA-Z0-9._%+-]{1,64}@[a-zA-Z0-9.-]{1,120}\.[a-zA-Z]{2,12}"),
    re.compile(rb"\\\\[^\\]{1,90}\\[^\\]{1,90}"),
    re.compile(rb"HKEY_[A-Z_]{1,40}\\.{1,150}", re.IGNORECASE),
    re.compile(rb"cmd\.exe|powershell|wscript|cscript", re.IGNORECASE),
    re.compile(rb"password|passwd|secret|token|api[_-]?key", re.IGNORECASE),
)


def printable_runs(data: bytes) -> List[bytes]:
    """Printable ASCII runs of MIN_RUN_LEN..MAX_RUN_LEN bytes, in file order."""
    return [m.group(0) for m in _RUN_RE.finditer(data)]


def _matches(pat: re.Pattern, runs: List[bytes]) -> Iterator[bytes]:
    for run in runs:
        for m in pat.finditer(run):
            yield m.group(0)


def find_suspicious_strings(data: bytes, *, per_pattern: int = 10, max_total: int = 50) -> Tuple[str, ...]:
    """
    URLs, IPs, e-mail addresses, UNC paths, registry keys, script hosts and
    credential keywords found in the printable runs of the raw bytes.
    """
    runs = printable_runs(data)
    out: List[str] = []
    seen = set()

    for pat in _PATTERNS:
        taken = 0
        for raw in _matches(pat, runs):
            if taken >= per_pattern:
                break
            taken += 1
            if not (5 < len(raw) < 200):
                continue
            s = raw.decode("latin-1")
            if s not in seen:
                seen.add(s)
                out.append(s)

    return tuple(out[:max_total])
