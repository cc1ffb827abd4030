"""Best-effort property recovery for payloads the structured reader rejects.

The scanner walks the bytes looking for ``{property_id:u16, property_type:u16}``
records whose type is one a well-formed payload can carry. Anything else
costs one byte and the scan moves on. It stops after a bounded number of
properties or bytes and never raises.
"""

import struct

from ..binary import BinaryCursor
from ..config import DEFAULT_CONFIG
from ..errors import ShortReadError
from ..logging_config import component_logger
from ..mapi.properties import KNOWN_TYPES, PT_UNSPECIFIED, prop_key
from .values import decode_value

_TAG = struct.Struct('<HH')


def scan_properties(payload, start=0, config=DEFAULT_CONFIG, log=None):
    """Recover what properties can be found in ``payload[start:]``.

    Returns a ``{combined_key: PropertyValue}`` dict, possibly empty.
    """
    log = component_logger("recovery", log)
    properties = {}
    end = min(len(payload), start + config.recovery_max_bytes)
    data = bytes(payload[:end])
    cursor = BinaryCursor.from_bytes(data)
    pos = max(start, 0)
    skipped = 0

    while pos + _TAG.size <= end and len(properties) < config.recovery_max_properties:
        prop_id, prop_type = _TAG.unpack_from(data, pos)
        if prop_type == PT_UNSPECIFIED or prop_type not in KNOWN_TYPES:
            pos += 1
            skipped += 1
            continue
        cursor.seek(pos + _TAG.size)
        try:
            value = decode_value(cursor, prop_type, limit=end)
        except (ShortReadError, ValueError):
            pos += 1
            skipped += 1
            continue
        if value is not None:
            properties[prop_key(prop_id, prop_type)] = value
        pos = cursor.tell()

    log.warning(f"Recovered {len(properties)} properties from {max(end - start, 0)} bytes "
                f"({skipped} bytes skipped)")
    return properties
