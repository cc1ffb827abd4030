"""Heap allocator for node payloads and index pages.

Space is handed out past the current high-water mark and never reused
within a session. ``free`` only forgets a range: once its owner is gone it
drops out of the live extents and a later session may allocate over it.
"""

from ..config import DEFAULT_CONFIG
from ..errors import AllocationError
from ..logging_config import component_logger
from ..utils import align


class HeapAllocator:
    """Block-aligned bump allocator over a backing store.

    Args:
        store: BackingStore the heap lives in.
        extents: Callable returning an iterable of live ``(start, end)``
            ranges (node payloads and index pages).
        config: StoreConfig supplying block size, heap start and growth policy.
    """

    def __init__(self, store, extents, config=DEFAULT_CONFIG, log=None):
        self._store = store
        self._extents = extents
        self.config = config
        self._log = component_logger("heap", log)
        self._session_end = 0

    def high_water_mark(self) -> int:
        """First block-aligned offset past every live range."""
        mark = max(self.config.heap_start, self._session_end)
        for start, end in self._extents():
            if end > start and end > mark:
                mark = end
        return align(mark, self.config.block_size)

    def allocate(self, length: int) -> int:
        """Reserve ``length`` bytes and return their offset."""
        if length < 0:
            raise ValueError(f"negative allocation length {length}")
        if length == 0:
            return self.config.heap_start

        offset = self.high_water_mark()
        end = offset + length
        if end > self.config.max_file_size:
            raise AllocationError(
                f"allocation of {length} bytes at 0x{offset:X} exceeds the "
                f"{self.config.max_file_size} byte file limit", operation="allocate")

        self._grow_to(end)
        self._session_end = align(end, self.config.block_size)
        self._log.debug(f"Allocated {length} bytes at 0x{offset:X}")
        return offset

    def free(self, offset: int, length: int) -> None:
        """Forget a range. Nothing is reclaimed on disk."""
        if length:
            self._log.debug(f"Abandoned {length} bytes at 0x{offset:X}")

    def write(self, offset: int, data: bytes) -> None:
        try:
            self._store.write_range(offset, data)
        except OSError as exc:
            raise AllocationError(
                f"cannot write {len(data)} bytes at 0x{offset:X}: {exc}",
                operation="write") from exc

    def _grow_to(self, end):
        try:
            current = self._store.file_length()
            if end <= current:
                return
            new_length = min(align(end, self.config.growth_increment),
                             self.config.max_file_size)
            self._store.set_file_length(new_length)
        except OSError as exc:
            raise AllocationError(f"cannot extend file to {end} bytes: {exc}",
                                  operation="allocate") from exc
        self._log.debug(f"Extended file from {current} to {new_length} bytes")
