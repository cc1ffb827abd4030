"""Node entries: the directory's unit of record."""

import copy
from dataclasses import dataclass, field
from datetime import datetime

from .nid import classify, is_attachment, is_folder, is_message


@dataclass
class NodeEntry:
    """One node known to the directory.

    ``node_id`` is fixed at construction. The payload occupies the half-open
    range ``[data_offset, data_offset + data_size)`` of the backing file.
    Summary fields are a cache of the node's properties for cheap listing.
    """

    node_id: int
    data_id: int = 0
    parent_id: int = 0
    data_offset: int = 0
    data_size: int = 0
    display_name: str | None = None
    subject: str | None = None
    sender_name: str | None = None
    sender_email: str | None = None
    sent_date: datetime | None = None
    message_size: int | None = None
    has_attachment: bool | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not 0 <= self.node_id <= 0xFFFFFFFF:
            raise ValueError(f"node id out of range: {self.node_id}")
        if not 0 <= self.parent_id <= 0xFFFFFFFF:
            raise ValueError(f"parent id out of range: {self.parent_id}")
        if not 0 <= self.data_id <= 0xFFFFFFFF:
            raise ValueError(f"data id out of range: {self.data_id}")

    def __setattr__(self, name, value):
        if name == 'node_id' and 'node_id' in self.__dict__:
            raise AttributeError("node_id cannot be changed once created")
        super().__setattr__(name, value)

    @property
    def node_type(self):
        return classify(self.node_id)

    @property
    def is_folder(self):
        return is_folder(self.node_id)

    @property
    def is_message(self):
        return is_message(self.node_id)

    @property
    def is_attachment(self):
        return is_attachment(self.node_id)

    @property
    def data_end(self):
        return self.data_offset + self.data_size

    @property
    def data_range(self):
        return (self.data_offset, self.data_end)

    def overlaps(self, other):
        """True if both entries own at least one common byte."""
        if self.data_size == 0 or other.data_size == 0:
            return False
        return self.data_offset < other.data_end and other.data_offset < self.data_end

    def copy(self):
        return copy.deepcopy(self)

    def set_metadata(self, key, value):
        self.metadata[str(key)] = str(value)

    def get_metadata(self, key, default=None):
        return self.metadata.get(key, default)

    def merge_summary(self, other):
        """Take cached summary fields from ``other`` where ours are unset."""
        for name in ('display_name', 'subject', 'sender_name', 'sender_email',
                     'sent_date', 'message_size', 'has_attachment'):
            if getattr(self, name) is None and getattr(other, name) is not None:
                setattr(self, name, getattr(other, name))
        for key, value in other.metadata.items():
            self.metadata.setdefault(key, value)

    def read_data(self, store):
        """Read this node's payload from a backing store."""
        if self.data_size == 0:
            return b''
        return store.read_range(self.data_offset, self.data_size)

    def __repr__(self):
        name = f", name={self.display_name!r}" if self.display_name else ""
        return (f"NodeEntry(nid=0x{self.node_id:X}, type=0x{self.node_type:02X}, "
                f"parent=0x{self.parent_id:X}, data=[{self.data_offset}, "
                f"{self.data_end}){name})")
