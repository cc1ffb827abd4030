"""Error types raised by the node directory and property codec.

A node that simply does not exist is never an error: lookups return None.
"""


class PstError(Exception):
    """Base error for all node storage operations."""

    def __init__(self, message, *, node_id=None, operation=None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.operation = operation

    def __str__(self):
        context = []
        if self.operation:
            context.append(self.operation)
        if self.node_id is not None:
            context.append(f"node 0x{self.node_id:X}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class CorruptedError(PstError):
    """Page structure or payload could not be interpreted and no safe default exists."""


class AccessDeniedError(PstError):
    """A mutating operation was attempted against a read-only container."""


class AllocationError(PstError):
    """The heap could not grow the backing file or write the requested range."""


class ShortReadError(PstError, OSError):
    """The underlying stream ended before the requested byte count."""
