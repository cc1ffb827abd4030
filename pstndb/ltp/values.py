"""Property values: a closed set of kinds and their wire encoding.

Fixed-width kinds are written raw (1, 4 or 8 bytes). Strings and binary
blobs are written as ``{size:i32}{bytes}``. PT_OBJECT is recognised on read
only so it can be skipped.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from ..mapi.properties import (
    PT_BINARY, PT_BOOLEAN, PT_DOUBLE, PT_LONG, PT_LONGLONG, PT_OBJECT,
    PT_STRING8, PT_SYSTIME, PT_UNICODE, STRING_ENCODINGS,
)
from ..utils import datetime_to_filetime, filetime_to_datetime

_I32_RANGE = (-(1 << 31), (1 << 31) - 1)
_I64_RANGE = (-(1 << 63), (1 << 63) - 1)


class PropertyKind(Enum):
    BOOLEAN = "boolean"
    INT32 = "int32"
    INT64 = "int64"
    DOUBLE = "double"
    SYSTEM_TIME = "system_time"
    STRING = "string"
    BINARY = "binary"


KIND_FOR_TYPE = {
    PT_BOOLEAN: PropertyKind.BOOLEAN,
    PT_LONG: PropertyKind.INT32,
    PT_LONGLONG: PropertyKind.INT64,
    PT_DOUBLE: PropertyKind.DOUBLE,
    PT_SYSTIME: PropertyKind.SYSTEM_TIME,
    PT_STRING8: PropertyKind.STRING,
    PT_UNICODE: PropertyKind.STRING,
    PT_BINARY: PropertyKind.BINARY,
}


def _check_int(value, bounds, label):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{label} property needs an int, got {type(value).__name__}")
    if not bounds[0] <= value <= bounds[1]:
        raise ValueError(f"{value} does not fit in {label}")
    return value


def _normalize_time(value):
    if not isinstance(value, datetime):
        raise TypeError(f"system time property needs a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        raise TypeError("system time property needs a timezone-aware datetime")
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class PropertyValue:
    """One typed property value.

    Build values with ``PropertyValue.of(prop_type, raw)`` so the raw Python
    value is checked against the wire type.
    """

    kind: PropertyKind
    value: object

    @classmethod
    def of(cls, prop_type, raw):
        if isinstance(raw, PropertyValue):
            raw = raw.value
        kind = KIND_FOR_TYPE.get(prop_type)
        if kind is None:
            raise ValueError(f"unsupported property type 0x{prop_type:04X}")
        if kind is PropertyKind.BOOLEAN:
            if not isinstance(raw, bool):
                raise TypeError(f"boolean property needs a bool, got {type(raw).__name__}")
            return cls(kind, raw)
        if kind is PropertyKind.INT32:
            return cls(kind, _check_int(raw, _I32_RANGE, "int32"))
        if kind is PropertyKind.INT64:
            return cls(kind, _check_int(raw, _I64_RANGE, "int64"))
        if kind is PropertyKind.DOUBLE:
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise TypeError(f"double property needs a number, got {type(raw).__name__}")
            return cls(kind, float(raw))
        if kind is PropertyKind.SYSTEM_TIME:
            return cls(kind, _normalize_time(raw))
        if kind is PropertyKind.STRING:
            if not isinstance(raw, str):
                raise TypeError(f"string property needs a str, got {type(raw).__name__}")
            return cls(kind, raw)
        if not isinstance(raw, (bytes, bytearray, memoryview)):
            raise TypeError(f"binary property needs bytes, got {type(raw).__name__}")
        return cls(kind, bytes(raw))

    def matches(self, prop_type):
        return KIND_FOR_TYPE.get(prop_type) is self.kind


def encode_value(cursor, prop_type, value):
    """Write ``value`` (a PropertyValue) in the wire form of ``prop_type``."""
    if not value.matches(prop_type):
        raise ValueError(f"{value.kind.value} value cannot be written as type 0x{prop_type:04X}")
    if prop_type == PT_BOOLEAN:
        cursor.write_bool(value.value)
    elif prop_type == PT_LONG:
        cursor.write_i32(value.value)
    elif prop_type == PT_LONGLONG:
        cursor.write_i64(value.value)
    elif prop_type == PT_DOUBLE:
        cursor.write_f64(value.value)
    elif prop_type == PT_SYSTIME:
        cursor.write_i64(datetime_to_filetime(value.value))
    elif prop_type in STRING_ENCODINGS:
        cursor.write_prefixed_string(value.value, STRING_ENCODINGS[prop_type])
    else:
        cursor.write_sized_bytes(value.value)


def decode_value(cursor, prop_type, limit=None):
    """Read one value of ``prop_type``.

    Returns None for PT_OBJECT, whose bytes are skipped. Raises ValueError
    for an unknown type or an implausible size prefix, ShortReadError if the
    payload ends early, and UnicodeDecodeError for undecodable text.
    """
    if prop_type == PT_BOOLEAN:
        return PropertyValue(PropertyKind.BOOLEAN, cursor.read_bool())
    if prop_type == PT_LONG:
        return PropertyValue(PropertyKind.INT32, cursor.read_i32())
    if prop_type == PT_LONGLONG:
        return PropertyValue(PropertyKind.INT64, cursor.read_i64())
    if prop_type == PT_DOUBLE:
        return PropertyValue(PropertyKind.DOUBLE, cursor.read_f64())
    if prop_type == PT_SYSTIME:
        return PropertyValue(PropertyKind.SYSTEM_TIME, filetime_to_datetime(cursor.read_i64()))
    if prop_type in STRING_ENCODINGS:
        data = cursor.read_sized_bytes(limit)
        return PropertyValue(PropertyKind.STRING, data.decode(STRING_ENCODINGS[prop_type]))
    if prop_type == PT_BINARY:
        return PropertyValue(PropertyKind.BINARY, cursor.read_sized_bytes(limit))
    if prop_type == PT_OBJECT:
        cursor.read_sized_bytes(limit)
        return None
    raise ValueError(f"unknown property type 0x{prop_type:04X}")
