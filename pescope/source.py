from __future__ import annotations

import struct
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

DEFAULT_HEADER_BUFFER_BYTES = 1024 * 1024


class ByteSource:
    """
    Bounded, randomly addressable view over a file's bytes.

    The first `header_buffer_bytes` are held in `head`; reads past that
    region go to `_fetch`, which subclasses back with a file handle.
    Every accessor returns None instead of raising when any requested
    byte falls outside [0, size).
    """

    def __init__(self, data: bytes, *, header_buffer_bytes: int = DEFAULT_HEADER_BUFFER_BYTES):
        self._data = bytes(data)
        self._size = len(self._data)
        self.head = self._data[:header_buffer_bytes]

    @property
    def size(self) -> int:
        return self._size

    def _fetch(self, offset: int, length: int) -> bytes:
        return self._data[offset : offset + length]

    def read(self, offset: int, length: int) -> Optional[bytes]:
        if offset < 0 or length < 0 or offset + length > self._size:
            return None
        if offset + length <= len(self.head):
            return self.head[offset : offset + length]
        blob = self._fetch(offset, length)
        if len(blob) != length:
            return None
        return blob

    def read_upto(self, offset: int, length: int) -> Optional[bytes]:
        """Like read(), but clamps the window at end of file."""
        if offset < 0 or offset >= self._size or length <= 0:
            return None
        return self.read(offset, min(length, self._size - offset))

    def _unpack(self, fmt: str, offset: int) -> Optional[int]:
        raw = self.read(offset, struct.calcsize(fmt))
        if raw is None:
            return None
        return struct.unpack(fmt, raw)[0]

    def u8(self, offset: int) -> Optional[int]:
        return self._unpack("<B", offset)

    def u16(self, offset: int) -> Optional[int]:
        return self._unpack("<H", offset)

    def u32(self, offset: int) -> Optional[int]:
        return self._unpack("<I", offset)

    def u64(self, offset: int) -> Optional[int]:
        return self._unpack("<Q", offset)

    def c_string(self, offset: int, *, max_len: int = 256) -> Optional[str]:
        """
        Read a NUL-terminated ASCII string of at most max_len characters.
        Returns None when no terminator is found inside the window.
        """
        chunk = self.read_upto(offset, max_len + 1)
        if chunk is None:
            return None
        nul = chunk.find(b"\x00")
        if nul == -1:
            return None
        return chunk[:nul].decode("ascii", errors="replace")

    def iter_chunks(self, chunk_size: int, *, limit: Optional[int] = None) -> Iterator[bytes]:
        end = self._size if limit is None else min(self._size, limit)
        off = 0
        while off < end:
            n = min(chunk_size, end - off)
            blob = self.read(off, n)
            if not blob:
                return
            yield blob
            off += n

    def close(self) -> None:
        pass

    def __enter__(self) -> "ByteSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class FileByteSource(ByteSource):
    """ByteSource backed by an open file; only the header region is buffered."""

    def __init__(self, path: Path, *, header_buffer_bytes: int = DEFAULT_HEADER_BUFFER_BYTES):
        self.path = Path(path)
        self._size = self.path.stat().st_size
        self._data = b""
        self._fh: Optional[BinaryIO] = self.path.open("rb")
        self.head = self._fh.read(header_buffer_bytes)

    def _fetch(self, offset: int, length: int) -> bytes:
        if self._fh is None:
            return b""
        self._fh.seek(offset)
        return self._fh.read(length)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
