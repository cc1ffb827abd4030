"""Backing stores: byte-range access to a container file.

The node layer only ever talks to these through the BackingStore protocol
(read_range / write_range / file_length / set_file_length / is_read_only).
"""

import io
import os
from pathlib import Path

from ..binary import BinaryCursor
from ..errors import AccessDeniedError, ShortReadError


class _CursorStore:
    """Shared range logic over a BinaryCursor."""

    def __init__(self, stream, read_only):
        self._cursor = BinaryCursor(stream)
        self._read_only = read_only

    def is_read_only(self) -> bool:
        return self._read_only

    def file_length(self) -> int:
        return self._cursor.size()

    def read_range(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0:
            raise ValueError(f"invalid range ({offset}, {length})")
        if length == 0:
            return b''
        if offset + length > self.file_length():
            raise ShortReadError(
                f"range [{offset}, {offset + length}) is past end of file "
                f"({self.file_length()} bytes)", operation="read_range")
        return self._cursor.read_bytes_at(offset, length)

    def write_range(self, offset: int, data: bytes) -> None:
        if self._read_only:
            raise AccessDeniedError("Cannot write to a read-only container",
                                    operation="write_range")
        if offset < 0:
            raise ValueError(f"invalid offset {offset}")
        end = self.file_length()
        if offset > end:
            # Zero-fill the gap explicitly; not every stream supports sparse seeks.
            self._cursor.write_bytes_at(end, b'\x00' * (offset - end))
        self._cursor.write_bytes_at(offset, bytes(data))

    def set_file_length(self, length: int) -> None:
        if self._read_only:
            raise AccessDeniedError("Cannot resize a read-only container",
                                    operation="set_file_length")
        if length < 0:
            raise ValueError(f"invalid length {length}")
        self._cursor.stream.truncate(length)
        current = self.file_length()
        if current < length:
            self._cursor.write_bytes_at(current, b'\x00' * (length - current))


class MemoryBackingStore(_CursorStore):
    """In-memory container, handy for tests and scratch work."""

    def __init__(self, data: bytes = b'', read_only: bool = False):
        super().__init__(io.BytesIO(data), read_only)

    def getvalue(self) -> bytes:
        return self._cursor.getvalue()


class FileBackingStore(_CursorStore):
    """Container backed by a file on disk.

    Usage:
        with FileBackingStore(path, create=True) as store:
            directory = NodeDirectory.create(store, PstFormat.UNICODE)
    """

    def __init__(self, path, read_only: bool = False, create: bool = False):
        self.path = Path(path)
        if read_only:
            mode = 'rb'
        elif create and not self.path.exists():
            mode = 'w+b'
        else:
            mode = 'r+b'
        self._file = open(self.path, mode)
        super().__init__(self._file, read_only)

    def write_range(self, offset: int, data: bytes) -> None:
        super().write_range(offset, data)
        self._file.flush()

    def set_file_length(self, length: int) -> None:
        super().set_file_length(length)
        self._file.flush()

    def sync(self):
        if not self._read_only:
            self._file.flush()
            os.fsync(self._file.fileno())

    def close(self):
        if not self._file.closed:
            if not self._read_only:
                self._file.flush()
            self._file.close()

    @property
    def closed(self):
        return self._file.closed

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
