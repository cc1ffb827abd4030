"""Protocols for the collaborators the node layer depends on."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class BackingStore(Protocol):
    """Byte-range access to the container file."""

    def read_range(self, offset: int, length: int) -> bytes:
        """Return exactly ``length`` bytes starting at ``offset``."""
        ...

    def write_range(self, offset: int, data: bytes) -> None:
        """Write ``data`` at ``offset``, extending the file if needed."""
        ...

    def file_length(self) -> int:
        """Current length of the backing file in bytes."""
        ...

    def set_file_length(self, length: int) -> None:
        """Grow or truncate the backing file."""
        ...

    def is_read_only(self) -> bool:
        """True when the container was opened without write access."""
        ...
