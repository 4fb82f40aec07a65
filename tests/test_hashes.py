import hashlib
from pathlib import Path

from pescope.bundler import file_hashes


def test_file_hashes(tmp_path: Path):
    p = tmp_path / "x.bin"
    p.write_bytes(b"abc123")
    sha256, md5 = file_hashes(p)
    assert sha256 == hashlib.sha256(b"abc123").hexdigest()
    assert md5 == hashlib.md5(b"abc123").hexdigest()


def test_file_hashes_empty_file(tmp_path: Path):
    p = tmp_path / "empty.bin"
    p.write_bytes(b"")
    sha256, md5 = file_hashes(p)
    assert len(sha256) == 64
    assert len(md5) == 32
