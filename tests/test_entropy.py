from __future__ import annotations

import random

import pytest

from pescope.entropy import EntropyAccumulator, assess, block_entropy, profile_source, shannon_entropy
from pescope.source import ByteSource


@pytest.mark.parametrize("n", [1, 17, 256, 4096])
def test_single_repeated_byte_has_zero_entropy(n):
    assert shannon_entropy(b"\x41" * n) == 0.0


def test_empty_input_has_zero_entropy():
    assert shannon_entropy(b"") == 0.0


def test_uniform_bytes_have_eight_bits():
    assert shannon_entropy(bytes(range(256)) * 8) == pytest.approx(8.0, abs=0.05)


def test_random_bytes_are_close_to_eight_bits():
    rng = random.Random(1234)
    data = bytes(rng.getrandbits(8) for _ in range(65536))
    assert shannon_entropy(data) == pytest.approx(8.0, abs=0.05)


def test_two_symbols_have_one_bit():
    assert shannon_entropy(b"ab" * 100) == pytest.approx(1.0)


def test_accumulator_matches_one_shot_entropy():
    data = b"hello world" * 50 + bytes(range(256))
    acc = EntropyAccumulator()
    acc.update(data[:100])
    acc.update(data[100:])
    assert acc.value() == pytest.approx(shannon_entropy(data))


def test_block_entropy_covers_the_whole_buffer():
    blocks = block_entropy(b"\x00" * 600, block_size=256)
    assert [(b.offset, b.size) for b in blocks] == [(0, 256), (256, 256), (512, 88)]
    assert all(b.entropy == 0.0 for b in blocks)


def test_block_entropy_rejects_bad_block_size():
    with pytest.raises(ValueError):
        block_entropy(b"abc", block_size=0)


@pytest.mark.parametrize(
    "average,high_fraction,expected",
    [
        (7.6, 0.0, "Highly Encrypted/Compressed"),
        (7.0, 0.0, "Possibly Packed"),
        (5.0, 0.6, "Mixed Content"),
        (3.0, 0.1, "Normal"),
    ],
)
def test_assessment_labels(average, high_fraction, expected):
    assert assess(average, high_fraction) == expected


def test_profile_flags_localized_high_entropy_region():
    data = b"\x00" * 4096 + bytes(range(256)) * 16
    overall, profile = profile_source(ByteSource(data), block_size=256, max_regions=5)

    assert profile.block_count == 32
    assert profile.bytes_scanned == 8192
    assert profile.high_block_count == 16
    assert profile.low_block_count == 16
    assert profile.average == pytest.approx(4.0)
    assert profile.maximum == 8.0
    assert profile.minimum == 0.0
    assert profile.assessment == "Normal"
    # capped list of regions, in file order
    assert [b.offset for b in profile.high_entropy_regions] == [4096, 4352, 4608, 4864, 5120]
    assert 0.0 < overall < 8.0


def test_profile_respects_max_bytes():
    data = bytes(range(256)) * 64
    overall, profile = profile_source(ByteSource(data), block_size=256, max_bytes=1024)
    assert profile.bytes_scanned == 1024
    assert profile.block_count == 4
    assert profile.assessment == "Highly Encrypted/Compressed"
    assert overall == pytest.approx(8.0)


def test_profile_of_empty_source():
    overall, profile = profile_source(ByteSource(b""))
    assert overall == 0.0
    assert profile.block_count == 0
