"""Companion table payloads.

Hierarchy, contents and attachment tables are ordinary nodes whose payload
lists the ids of the owner's children: ``count:u32`` then ``count`` node ids.
"""

import struct

from ..errors import CorruptedError

_COUNT = struct.Struct('<I')


def encode_table(child_ids):
    ids = list(child_ids)
    return _COUNT.pack(len(ids)) + struct.pack(f'<{len(ids)}I', *ids)


def decode_table(payload, node_id=None):
    if not payload:
        return []
    if len(payload) < _COUNT.size:
        raise CorruptedError("truncated table header", node_id=node_id,
                             operation="decode_table")
    (count,) = _COUNT.unpack_from(payload, 0)
    expected = _COUNT.size + 4 * count
    if len(payload) < expected:
        raise CorruptedError(f"table claims {count} rows in {len(payload)} bytes",
                             node_id=node_id, operation="decode_table")
    return list(struct.unpack_from(f'<{count}I', payload, _COUNT.size))
