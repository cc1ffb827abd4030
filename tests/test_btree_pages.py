"""Tests for the index page codec."""

import pytest

from pstndb.errors import CorruptedError
from pstndb.ndb.btree import (
    KEY_SENTINEL, MAX_INTERNAL, MAX_LEAF, PAGE_SIZE, PTTYPE_NODE_INDEX, build_page,
    page_number, page_offset, parse_page, route, separator, split_entries,
)
from pstndb.ndb.entry import NodeEntry


def _leaf_entries(count: int) -> list[NodeEntry]:
    return [NodeEntry(node_id=0x100 + i * 0x20, data_id=i, parent_id=0x42,
                      data_offset=0x4400 + i * 512, data_size=i + 1)
            for i in range(count)]


def test_page_capacity() -> None:
    assert MAX_LEAF == 21
    assert MAX_INTERNAL == 63


def test_leaf_page_round_trip() -> None:
    entries = _leaf_entries(MAX_LEAF)

    data = build_page(0, entries)
    page = parse_page(data, 0x4400)

    assert len(data) == PAGE_SIZE
    assert data[0] == PTTYPE_NODE_INDEX
    assert page.level == 0
    assert page.offset == 0x4400
    assert page.entries == entries


def test_empty_leaf_page_round_trip() -> None:
    data = build_page(0, [])
    page = parse_page(data, 0x4400)

    assert len(data) == PAGE_SIZE
    assert page.level == 0
    assert page.entries == []


def test_empty_internal_page_is_full_size() -> None:
    data = build_page(1, [])

    assert len(data) == PAGE_SIZE
    assert parse_page(data).entries == []


def test_internal_page_round_trip() -> None:
    entries = [(0x100, 40), (0x200, 41), (KEY_SENTINEL, 42)]

    page = parse_page(build_page(2, entries))

    assert page.level == 2
    assert page.entries == entries


def test_build_page_rejects_overfull_page() -> None:
    with pytest.raises(ValueError):
        build_page(0, _leaf_entries(MAX_LEAF + 1))


def test_parse_page_detects_crc_mismatch() -> None:
    data = bytearray(build_page(0, _leaf_entries(3)))
    data[20] ^= 0xFF

    with pytest.raises(CorruptedError, match="CRC"):
        parse_page(bytes(data))


def test_parse_page_rejects_wrong_page_type() -> None:
    data = bytearray(build_page(0, []))
    data[0] = 0x80

    with pytest.raises(CorruptedError, match="page type"):
        parse_page(bytes(data))


def test_parse_page_rejects_short_page() -> None:
    with pytest.raises(CorruptedError):
        parse_page(b"\x81" * 100)


def test_parse_page_rejects_unsorted_keys() -> None:
    entries = _leaf_entries(3)
    entries.reverse()

    with pytest.raises(CorruptedError, match="ascending"):
        parse_page(build_page(0, entries))


def test_route_picks_first_key_greater_than_target() -> None:
    entries = [(0x100, 1), (0x200, 2), (KEY_SENTINEL, 3)]

    assert route(entries, 0x50) == 0
    assert route(entries, 0x100) == 1
    assert route(entries, 0x1FF) == 1
    assert route(entries, 0x200) == 2
    assert route(entries, KEY_SENTINEL) == 2


def test_split_and_separator_for_leaves() -> None:
    left, right = split_entries(_leaf_entries(22))

    assert len(left) == 11 and len(right) == 11
    assert separator(0, left, right) == right[0].node_id


def test_separator_for_internal_pages_is_left_bound() -> None:
    left, right = [(1, 10), (5, 11)], [(9, 12), (20, 13)]

    assert separator(1, left, right) == 5


def test_page_numbers() -> None:
    assert page_number(0x4400) == 0x22
    assert page_offset(0x22) == 0x4400
    with pytest.raises(ValueError):
        page_number(0x4401)
