"""Node index B-tree pages.

Each page is exactly 512 bytes: an 8-byte header followed by fixed-width
entries. The CRC covers everything after the header.

    header:   page_type(1) level(1) entry_count(2) crc(4)
    leaf:     node_id(4) data_id(4) parent_id(4) data_offset(8) data_size(4)
    internal: key(4) child_page(4)

Internal keys are upper bounds: child *i* holds ids at or above key *i-1*
and below key *i*. The last key of a page equals its bound in the parent,
and the root's last key is KEY_SENTINEL.
"""

import struct
from bisect import bisect_right
from dataclasses import dataclass, field

from ..crc import compute_crc
from ..errors import CorruptedError
from .entry import NodeEntry

PAGE_SIZE = 512
PAGE_HEADER_SIZE = 8
ENTRIES_AREA = PAGE_SIZE - PAGE_HEADER_SIZE  # 504 bytes

# Page types
PTTYPE_NODE_INDEX = 0x81

_HEADER = struct.Struct('<BBHI')
_LEAF_ENTRY = struct.Struct('<IIIQI')
_INTERNAL_ENTRY = struct.Struct('<II')

LEAF_ENTRY_SIZE = _LEAF_ENTRY.size  # 24
INTERNAL_ENTRY_SIZE = _INTERNAL_ENTRY.size  # 8

MAX_LEAF = ENTRIES_AREA // LEAF_ENTRY_SIZE  # 21
MAX_INTERNAL = ENTRIES_AREA // INTERNAL_ENTRY_SIZE  # 63
MIN_LEAF = MAX_LEAF // 4
MIN_INTERNAL = MAX_INTERNAL // 4

MAX_LEVEL = 16
KEY_SENTINEL = 0xFFFFFFFF


@dataclass
class Page:
    """Decoded index page.

    Leaf pages hold NodeEntry records; internal pages hold
    ``(key, child_page_number)`` tuples.
    """

    offset: int
    level: int
    entries: list = field(default_factory=list)

    @property
    def is_leaf(self):
        return self.level == 0

    @property
    def keys(self):
        if self.is_leaf:
            return [e.node_id for e in self.entries]
        return [key for key, _ in self.entries]


def max_entries(level):
    return MAX_LEAF if level == 0 else MAX_INTERNAL


def min_entries(level):
    return MIN_LEAF if level == 0 else MIN_INTERNAL


def page_number(offset):
    if offset % PAGE_SIZE:
        raise ValueError(f"page offset 0x{offset:X} is not page aligned")
    return offset // PAGE_SIZE


def page_offset(number):
    return number * PAGE_SIZE


def pack_leaf_entry(entry):
    """Pack the on-disk part of a NodeEntry (24 bytes)."""
    return _LEAF_ENTRY.pack(entry.node_id, entry.data_id, entry.parent_id,
                            entry.data_offset, entry.data_size)


def unpack_leaf_entry(data, offset=0):
    node_id, data_id, parent_id, data_offset, data_size = \
        _LEAF_ENTRY.unpack_from(data, offset)
    return NodeEntry(node_id=node_id, data_id=data_id, parent_id=parent_id,
                     data_offset=data_offset, data_size=data_size)


def pack_internal_entry(key, child_page):
    """Pack an internal routing entry (8 bytes)."""
    return _INTERNAL_ENTRY.pack(key, child_page)


def build_page(level, entries):
    """Build a single 512-byte index page.

    Args:
        level: Tree depth above the leaves (0 = leaf).
        entries: NodeEntry records for a leaf, ``(key, child_page)`` tuples
            otherwise. Must fit in one page.

    Returns:
        512 bytes of page data.
    """
    if len(entries) > max_entries(level):
        raise ValueError(f"{len(entries)} entries do not fit in a level {level} page")
    if level == 0:
        body = b''.join(pack_leaf_entry(e) for e in entries)
    else:
        body = b''.join(pack_internal_entry(key, child) for key, child in entries)
    body = body.ljust(ENTRIES_AREA, b'\x00')
    header = _HEADER.pack(PTTYPE_NODE_INDEX, level, len(entries), compute_crc(body))
    page = header + body
    assert len(page) == PAGE_SIZE
    return page


def parse_page(data, offset=0):
    """Decode and validate a page read from ``offset``.

    Raises CorruptedError if the type, level, count or CRC is wrong.
    """
    if len(data) != PAGE_SIZE:
        raise CorruptedError(f"index page at 0x{offset:X} is {len(data)} bytes",
                             operation="parse_page")
    ptype, level, count, crc = _HEADER.unpack_from(data, 0)
    where = f"index page at 0x{offset:X}"
    if ptype != PTTYPE_NODE_INDEX:
        raise CorruptedError(f"{where} has page type 0x{ptype:02X}", operation="parse_page")
    if level > MAX_LEVEL:
        raise CorruptedError(f"{where} has implausible level {level}", operation="parse_page")
    if count > max_entries(level):
        raise CorruptedError(f"{where} claims {count} entries", operation="parse_page")
    body = data[PAGE_HEADER_SIZE:]
    actual = compute_crc(body)
    if actual != crc:
        raise CorruptedError(f"{where} CRC mismatch: stored 0x{crc:08X}, "
                             f"computed 0x{actual:08X}", operation="parse_page")

    if level == 0:
        entries = [unpack_leaf_entry(body, i * LEAF_ENTRY_SIZE) for i in range(count)]
    else:
        entries = [_INTERNAL_ENTRY.unpack_from(body, i * INTERNAL_ENTRY_SIZE)
                   for i in range(count)]
    page = Page(offset=offset, level=level, entries=entries)
    keys = page.keys
    if any(a >= b for a, b in zip(keys, keys[1:])):
        raise CorruptedError(f"{where} keys are not strictly ascending",
                             operation="parse_page")
    return page


def route(entries, node_id):
    """Index of the child that may hold ``node_id``.

    First child whose key is greater than the id, else the last child.
    """
    keys = [key for key, _ in entries]
    idx = bisect_right(keys, node_id)
    return min(idx, len(entries) - 1)


def split_entries(entries):
    """Split an overfull entry list at the median."""
    mid = len(entries) // 2
    return entries[:mid], entries[mid:]


def separator(level, left, right):
    """Upper-bound key for ``left`` after a split or redistribution."""
    if level == 0:
        return right[0].node_id
    return left[-1][0]
