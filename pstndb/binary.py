"""Typed little-endian reads and writes over a seekable byte stream.

BinaryCursor is the one place that turns stream positions into typed values.
All multi-byte values are little-endian. Out-of-band writes go through
``at()`` / ``write_bytes_at()``, which always put the stream position back.
"""

import io
import struct
from contextlib import contextmanager

from .errors import ShortReadError
from .utils import datetime_to_filetime, filetime_to_datetime

_U8 = struct.Struct('<B')
_U16 = struct.Struct('<H')
_U32 = struct.Struct('<I')
_U64 = struct.Struct('<Q')
_I32 = struct.Struct('<i')
_I64 = struct.Struct('<q')
_F64 = struct.Struct('<d')


def _terminator(encoding: str) -> bytes:
    """Null terminator width for an encoding (2 bytes for UTF-16)."""
    if encoding.lower().replace('_', '-').startswith('utf-16'):
        return b'\x00\x00'
    return b'\x00'


class BinaryCursor:
    """Reader/writer over a seekable binary stream.

    Usage:
        cur = BinaryCursor(io.BytesIO(payload))
        count = cur.read_u32()
        with cur.at(0):
            cur.write_u32(count + 1)
    """

    def __init__(self, stream=None):
        self.stream = stream if stream is not None else io.BytesIO()

    @classmethod
    def from_bytes(cls, data: bytes):
        return cls(io.BytesIO(data))

    def getvalue(self) -> bytes:
        return self.stream.getvalue()

    # --- positioning ---

    def tell(self) -> int:
        return self.stream.tell()

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self.stream.seek(offset, whence)

    def size(self) -> int:
        pos = self.stream.tell()
        end = self.stream.seek(0, io.SEEK_END)
        self.stream.seek(pos)
        return end

    def remaining(self) -> int:
        return self.size() - self.tell()

    @contextmanager
    def at(self, offset: int):
        """Temporarily move to ``offset``; the original position is restored
        even if the body raises."""
        saved = self.stream.tell()
        self.stream.seek(offset)
        try:
            yield self
        finally:
            self.stream.seek(saved)

    # --- raw bytes ---

    def read_bytes(self, count: int) -> bytes:
        if count < 0:
            raise ValueError(f"negative read length {count}")
        if count == 0:
            return b''
        data = self.stream.read(count)
        if data is None or len(data) != count:
            got = 0 if data is None else len(data)
            raise ShortReadError(
                f"wanted {count} bytes at offset {self.tell() - got}, got {got}",
                operation="read")
        return data

    def write_bytes(self, data: bytes) -> None:
        written = self.stream.write(data)
        if written is not None and written != len(data):
            raise ShortReadError(f"short write: {written} of {len(data)} bytes",
                                 operation="write")

    def read_bytes_at(self, offset: int, count: int) -> bytes:
        with self.at(offset):
            return self.read_bytes(count)

    def write_bytes_at(self, offset: int, data: bytes) -> None:
        with self.at(offset):
            self.write_bytes(data)

    # --- fixed width ---

    def _read(self, st: struct.Struct):
        return st.unpack(self.read_bytes(st.size))[0]

    def _write(self, st: struct.Struct, value) -> None:
        self.write_bytes(st.pack(value))

    def read_u8(self) -> int:
        return self._read(_U8)

    def read_u16(self) -> int:
        return self._read(_U16)

    def read_u32(self) -> int:
        return self._read(_U32)

    def read_u64(self) -> int:
        return self._read(_U64)

    def read_i32(self) -> int:
        return self._read(_I32)

    def read_i64(self) -> int:
        return self._read(_I64)

    def read_f64(self) -> float:
        return self._read(_F64)

    def read_bool(self) -> bool:
        return self.read_u8() != 0

    def write_u8(self, value: int) -> None:
        self._write(_U8, value)

    def write_u16(self, value: int) -> None:
        self._write(_U16, value)

    def write_u32(self, value: int) -> None:
        self._write(_U32, value)

    def write_u64(self, value: int) -> None:
        self._write(_U64, value)

    def write_i32(self, value: int) -> None:
        self._write(_I32, value)

    def write_i64(self, value: int) -> None:
        self._write(_I64, value)

    def write_f64(self, value: float) -> None:
        self._write(_F64, value)

    def write_bool(self, value: bool) -> None:
        self.write_u8(1 if value else 0)

    def read_filetime(self):
        return filetime_to_datetime(self.read_i64())

    def write_filetime(self, value) -> None:
        self.write_i64(datetime_to_filetime(value))

    # --- strings and sized blobs ---

    def read_string(self, length: int, encoding: str) -> str:
        return self.read_bytes(length).decode(encoding)

    def write_string(self, value: str, encoding: str) -> None:
        self.write_bytes(value.encode(encoding))

    def read_cstring(self, encoding: str) -> str:
        """Read up to and including a null terminator."""
        term = _terminator(encoding)
        buf = bytearray()
        while True:
            unit = self.read_bytes(len(term))
            if unit == term:
                return bytes(buf).decode(encoding)
            buf += unit

    def write_cstring(self, value: str, encoding: str) -> None:
        self.write_string(value, encoding)
        self.write_bytes(_terminator(encoding))

    def read_sized_bytes(self, limit: int | None = None) -> bytes:
        """Read ``{length:i32}{bytes}``.

        Raises ValueError for a negative length or one above ``limit``.
        """
        size = self.read_i32()
        if size < 0 or (limit is not None and size > limit):
            raise ValueError(f"implausible length prefix {size}")
        return self.read_bytes(size)

    def write_sized_bytes(self, data: bytes) -> None:
        self.write_i32(len(data))
        self.write_bytes(data)

    def read_prefixed_string(self, encoding: str) -> str:
        return self.read_sized_bytes().decode(encoding)

    def write_prefixed_string(self, value: str, encoding: str) -> None:
        self.write_sized_bytes(value.encode(encoding))
