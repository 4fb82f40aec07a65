from __future__ import annotations

import math
from typing import Iterable, List, Tuple

from pescope.model import EntropyBlock, EntropyProfile
from pescope.source import ByteSource


def _entropy_from_counts(counts: Iterable[int], total: int) -> float:
    if total <= 0:
        return 0.0
    ent = 0.0
    for c in counts:
        if c:
            p = c / total
            ent -= p * math.log2(p)
    return float(ent)


def shannon_entropy(blob: bytes) -> float:
    """Shannon entropy of blob in bits per byte, 0.0 for empty input."""
    if not blob:
        return 0.0
    counts = [0] * 256
    for x in blob:
        counts[x] += 1
    return _entropy_from_counts(counts, len(blob))


class EntropyAccumulator:
    """Histogram that can be fed chunk by chunk for whole-file entropy."""

    def __init__(self) -> None:
        self.counts = [0] * 256
        self.total = 0

    def update(self, blob: bytes) -> None:
        counts = self.counts
        for x in blob:
            counts[x] += 1
        self.total += len(blob)

    def value(self) -> float:
        return _entropy_from_counts(self.counts, self.total)


def block_entropy(data: bytes, *, block_size: int = 256, base_offset: int = 0) -> List[EntropyBlock]:
    """Entropy of consecutive fixed-size blocks; the last block may be short."""
    if block_size <= 0:
        raise ValueError("block_size must be positive")
    out: List[EntropyBlock] = []
    for off in range(0, len(data), block_size):
        chunk = data[off : off + block_size]
        out.append(EntropyBlock(offset=base_offset + off, size=len(chunk), entropy=round(shannon_entropy(chunk), 4)))
    return out


def assess(average: float, high_fraction: float) -> str:
    if average > 7.5:
        return "Highly Encrypted/Compressed"
    if average > 6.5:
        return "Possibly Packed"
    if high_fraction > 0.5:
        return "Mixed Content"
    return "Normal"


def profile_source(
    source: ByteSource,
    *,
    block_size: int = 256,
    max_bytes: int = 20_000_000,
    high_threshold: float = 7.0,
    low_threshold: float = 1.0,
    max_regions: int = 20,
) -> Tuple[float, EntropyProfile]:
    """
    Stream the source once and return (overall_entropy, block profile).
    Only the first max_bytes are considered.
    """
    acc = EntropyAccumulator()
    count = 0
    total_entropy = 0.0
    hi = 0.0
    lo = 8.0
    high_count = 0
    low_count = 0
    regions: List[EntropyBlock] = []

    # Chunk size is a multiple of block_size so blocks never straddle chunks
    chunk_size = block_size * 1024
    offset = 0
    for chunk in source.iter_chunks(chunk_size, limit=max_bytes):
        acc.update(chunk)
        for blk in block_entropy(chunk, block_size=block_size, base_offset=offset):
            count += 1
            total_entropy += blk.entropy
            hi = max(hi, blk.entropy)
            lo = min(lo, blk.entropy)
            if blk.entropy > high_threshold:
                high_count += 1
                if len(regions) < max_regions:
                    regions.append(blk)
            elif blk.entropy < low_threshold:
                low_count += 1
        offset += len(chunk)

    if count == 0:
        return 0.0, EntropyProfile(block_size=block_size, minimum=0.0)

    average = total_entropy / count
    profile = EntropyProfile(
        block_size=block_size,
        block_count=count,
        bytes_scanned=offset,
        average=round(average, 4),
        maximum=round(hi, 4),
        minimum=round(lo, 4),
        high_block_count=high_count,
        low_block_count=low_count,
        high_entropy_regions=tuple(regions),
        assessment=assess(average, high_count / count),
    )
    return round(acc.value(), 6), profile
