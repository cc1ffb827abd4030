"""Tests for the property recovery scanner."""

import random
import struct

from pstndb.config import StoreConfig
from pstndb.ltp.pc import parse
from pstndb.ltp.recovery import scan_properties
from pstndb.mapi.properties import PT_BOOLEAN, PT_LONG, PT_OBJECT, PT_UNICODE, prop_key


def _bool_records(count: int) -> bytes:
    return b"".join(struct.pack("<HHB", 0x7000 + i, PT_BOOLEAN, 1) for i in range(count))


def test_scan_returns_empty_for_pure_noise() -> None:
    assert scan_properties(b"\xee" * 64) == {}


def test_scan_resynchronises_byte_by_byte() -> None:
    record = struct.pack("<HHi", 0x3602, PT_LONG, 9)

    found = scan_properties(b"\xab\xcd\xef" + record)

    assert found[prop_key(0x3602, PT_LONG)].value == 9


def test_scan_skips_embedded_objects() -> None:
    data = (struct.pack("<HHi", 0x3701, PT_OBJECT, 2) + b"\x00\x00"
            + struct.pack("<HHi", 0x3001, PT_UNICODE, 4) + "ok".encode("utf-16-le"))

    found = scan_properties(data)

    assert list(found) == [prop_key(0x3001, PT_UNICODE)]
    assert found[prop_key(0x3001, PT_UNICODE)].value == "ok"


def test_scan_stops_at_property_limit() -> None:
    found = scan_properties(_bool_records(150))

    assert len(found) == 100


def test_scan_stops_at_byte_limit() -> None:
    config = StoreConfig(recovery_max_bytes=50)

    found = scan_properties(_bool_records(20), config=config)

    assert len(found) == 10


def test_scan_honours_start_offset() -> None:
    data = struct.pack("<I", 0xFFFFFFFF) + _bool_records(3)

    assert len(scan_properties(data, start=4)) == 3


def test_parse_never_raises_on_random_input() -> None:
    rng = random.Random(1234)
    config = StoreConfig()

    for _ in range(300):
        size = rng.randrange(0, 200)
        payload = bytes(rng.randrange(256) for _ in range(size))
        if rng.random() < 0.5 and size >= 4:
            payload = struct.pack("<I", rng.randrange(20)) + payload[4:]
        properties, _clean = parse(payload, config)
        assert isinstance(properties, dict)
