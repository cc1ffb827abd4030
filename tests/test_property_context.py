"""Tests for PropertyContext and the property payload codec."""

import struct
from datetime import datetime, timedelta, timezone

import pytest

from pstndb.config import DEFAULT_CONFIG
from pstndb.errors import AccessDeniedError
from pstndb.ltp.pc import PC_SIGNATURE, PropertyContext, default_properties, parse, serialize
from pstndb.ltp.values import PropertyKind, PropertyValue
from pstndb.mapi.properties import (
    PID_ATTACH_FILENAME, PID_ATTACH_METHOD, PID_CONTAINER_CLASS, PID_CONTENT_COUNT,
    PID_CREATION_TIME, PID_DISPLAY_NAME, PID_HASATTACH, PID_MESSAGE_CLASS,
    PID_MESSAGE_DELIVERY_TIME, PID_MESSAGE_SIZE, PID_SENDER_EMAIL_ADDRESS,
    PID_SENDER_NAME, PID_SUBJECT, PT_BINARY, PT_BOOLEAN, PT_DOUBLE, PT_LONG,
    PT_LONGLONG, PT_STRING8, PT_SYSTIME, PT_UNICODE, prop_key,
)
from pstndb.ndb.directory import NodeDirectory
from pstndb.ndb.entry import NodeEntry
from pstndb.ndb.nid import (
    NODE_TYPE_ATTACHMENT, NODE_TYPE_FOLDER, NODE_TYPE_MESSAGE, PstFormat,
    hierarchy_table_id,
)
from pstndb.ndb.store import MemoryBackingStore

ROOT = 0x42
SENT = datetime(2024, 2, 29, 23, 59, 58, 654321, tzinfo=timezone.utc)


def _node(directory: NodeDirectory, node_type: int, payload: bytes = b"", **fields) -> NodeEntry:
    nid = directory.allocate_node_id(node_type)
    parent = directory.root_folder_id
    return directory.add(NodeEntry(node_id=nid, parent_id=parent, **fields), payload)


VARIANTS = [
    (0x6001, PT_BOOLEAN, True, "get_bool"),
    (0x6002, PT_LONG, -123456, "get_int32"),
    (0x6003, PT_LONGLONG, 2 ** 50 + 3, "get_int64"),
    (0x6004, PT_DOUBLE, 2.5e-7, "get_double"),
    (0x6005, PT_SYSTIME, SENT, "get_datetime"),
    (0x6006, PT_UNICODE, "Grüße 📬", "get_string"),
    (0x6007, PT_STRING8, "plain ascii", "get_string"),
    (0x6008, PT_BINARY, bytes(range(256)), "get_binary"),
]


@pytest.mark.parametrize(("prop_id", "prop_type", "value", "getter"), VARIANTS)
def test_set_then_get_returns_value(directory: NodeDirectory, prop_id, prop_type,
                                    value, getter) -> None:
    pc = PropertyContext(directory, _node(directory, NODE_TYPE_FOLDER))

    pc.set(prop_id, prop_type, value)

    assert getattr(pc, getter)(prop_id) == value


@pytest.mark.parametrize(("prop_id", "prop_type", "value", "getter"), VARIANTS)
def test_saved_value_survives_reload(directory: NodeDirectory, prop_id, prop_type,
                                     value, getter) -> None:
    entry = _node(directory, NODE_TYPE_FOLDER)
    pc = PropertyContext(directory, entry)
    pc.set(prop_id, prop_type, value)
    pc.save()

    fresh = PropertyContext(directory, directory.find(entry.node_id))

    assert fresh.load() is True
    assert getattr(fresh, getter)(prop_id) == value


def test_tags_with_same_id_and_different_types_are_distinct(directory: NodeDirectory) -> None:
    pc = PropertyContext(directory, _node(directory, NODE_TYPE_FOLDER))

    pc.set(0x6100, PT_LONG, 5)
    pc.set(0x6100, PT_UNICODE, "five")

    assert pc.get_int32(0x6100) == 5
    assert pc.get_string(0x6100) == "five"
    assert pc.get_int64(0x6100) is None


def test_set_rejects_value_of_wrong_kind(directory: NodeDirectory) -> None:
    pc = PropertyContext(directory, _node(directory, NODE_TYPE_FOLDER))

    with pytest.raises(TypeError):
        pc.set(0x6100, PT_LONG, "not a number")
    with pytest.raises(ValueError):
        pc.set(0x6100, PT_LONG, 2 ** 40)


def test_naive_datetimes_are_rejected(directory: NodeDirectory) -> None:
    pc = PropertyContext(directory, _node(directory, NODE_TYPE_FOLDER))

    with pytest.raises(TypeError):
        pc.set(PID_CREATION_TIME, PT_SYSTIME, datetime(2020, 1, 1, 12, 0))

    assert pc.dirty is False


def test_offset_datetime_comes_back_equal(directory: NodeDirectory) -> None:
    pc = PropertyContext(directory, _node(directory, NODE_TYPE_FOLDER))
    when = datetime(2020, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=5)))

    pc.set(PID_CREATION_TIME, PT_SYSTIME, when)
    pc.save()
    pc.load()

    assert pc.get_datetime(PID_CREATION_TIME) == when


def test_delete_marks_dirty_only_when_something_was_removed(directory: NodeDirectory) -> None:
    pc = PropertyContext(directory, _node(directory, NODE_TYPE_FOLDER, display_name="Box"))
    pc.load()

    assert pc.delete(0x6100, PT_LONG) is False
    assert pc.dirty is False
    assert pc.delete(PID_DISPLAY_NAME, PT_UNICODE) is True
    assert pc.dirty is True


def test_second_save_is_a_no_op(directory: NodeDirectory) -> None:
    entry = _node(directory, NODE_TYPE_MESSAGE, b"")
    pc = PropertyContext(directory, entry)
    pc.set(PID_SUBJECT, PT_UNICODE, "Hello")

    assert pc.save() is True
    snapshot = directory.store.getvalue()
    stored = directory.find(entry.node_id)

    assert pc.save() is False
    assert directory.store.getvalue() == snapshot
    assert directory.find(entry.node_id) == stored


def test_save_refreshes_cached_summary_fields(directory: NodeDirectory) -> None:
    entry = _node(directory, NODE_TYPE_MESSAGE)
    pc = PropertyContext(directory, entry)
    pc.set(PID_SUBJECT, PT_UNICODE, "Budget")
    pc.set(PID_SENDER_NAME, PT_UNICODE, "Alex Moreau")
    pc.set(PID_SENDER_EMAIL_ADDRESS, PT_UNICODE, "alex@example.org")
    pc.set(PID_MESSAGE_DELIVERY_TIME, PT_SYSTIME, SENT)
    pc.set(PID_MESSAGE_SIZE, PT_LONG, 4096)
    pc.set(PID_HASATTACH, PT_BOOLEAN, False)
    pc.save()

    found = directory.find(entry.node_id)

    assert found.subject == "Budget"
    assert found.sender_name == "Alex Moreau"
    assert found.sender_email == "alex@example.org"
    assert found.sent_date == SENT
    assert found.message_size == 4096
    assert found.has_attachment is False
    assert found.data_size == pc.entry.data_size > 0


def test_save_rewrites_in_place_when_payload_shrinks(directory: NodeDirectory) -> None:
    entry = _node(directory, NODE_TYPE_FOLDER)
    pc = PropertyContext(directory, entry)
    pc.set(PID_DISPLAY_NAME, PT_UNICODE, "A much longer folder name")
    pc.save()
    first = directory.find(entry.node_id)

    pc.set(PID_DISPLAY_NAME, PT_UNICODE, "Short")
    pc.save()
    second = directory.find(entry.node_id)

    assert second.data_offset == first.data_offset
    assert second.data_size < first.data_size
    assert second.display_name == "Short"


def test_unicode_payload_has_signature_and_ansi_does_not() -> None:
    props = {prop_key(PID_CONTENT_COUNT, PT_LONG): PropertyValue.of(PT_LONG, 3)}

    wide = serialize(props, PstFormat.UNICODE)
    narrow = serialize(props, PstFormat.ANSI)

    assert struct.unpack_from("<Ii", wide) == (PC_SIGNATURE, 1)
    assert struct.unpack_from("<I", narrow) == (1,)
    assert parse(wide, DEFAULT_CONFIG) == (props, True)
    assert parse(narrow, DEFAULT_CONFIG) == (props, True)


def test_ansi_container_round_trips_string8(ansi_directory: NodeDirectory) -> None:
    entry = _node(ansi_directory, NODE_TYPE_FOLDER)
    pc = PropertyContext(ansi_directory, entry)
    pc.set(PID_DISPLAY_NAME, PT_STRING8, "Café")
    pc.save()

    fresh = PropertyContext(ansi_directory, ansi_directory.find(entry.node_id))

    assert fresh.get_string(PID_DISPLAY_NAME) == "Café"
    assert struct.unpack_from("<I", ansi_directory.read_payload(entry.node_id)) == (len(fresh),)


def test_out_of_range_count_does_not_raise(directory: NodeDirectory) -> None:
    entry = _node(directory, NODE_TYPE_FOLDER, b"\xff\xff\xff\xff" + b"\x13" * 40,
                  display_name="Damaged")
    pc = PropertyContext(directory, entry)

    assert pc.load() is False
    assert pc.get_string(PID_DISPLAY_NAME) == "Damaged"
    assert pc.dirty is False


def test_recovery_finds_records_after_junk(directory: NodeDirectory) -> None:
    payload = b"\xff\xff\xff\xff" + b"\xab\xcd\xef" + struct.pack("<HHi", PID_CONTENT_COUNT, PT_LONG, 17)
    pc = PropertyContext(directory, _node(directory, NODE_TYPE_FOLDER, payload))

    assert pc.load() is False
    assert pc.get_int32(PID_CONTENT_COUNT) == 17
    assert len(pc) == 1


def test_malformed_record_falls_back_to_recovery() -> None:
    payload = (struct.pack("<I", 2) + struct.pack("<HHi", PID_DISPLAY_NAME, PT_STRING8, 3)
               + b"abc" + b"\x01\x00\xee\xee")

    props, clean = parse(payload, DEFAULT_CONFIG)

    assert clean is False
    assert props == {prop_key(PID_DISPLAY_NAME, PT_STRING8): PropertyValue(PropertyKind.STRING, "abc")}


def test_folder_defaults(directory: NodeDirectory) -> None:
    pc = PropertyContext(directory, _node(directory, NODE_TYPE_FOLDER))

    assert pc.load() is True
    assert pc.get(PID_DISPLAY_NAME, PT_UNICODE).value == "Unnamed Folder"
    assert pc.get_string(PID_CONTAINER_CLASS) == "IPF.Note"
    assert pc.get_int32(PID_CONTENT_COUNT) == 0
    assert pc.dirty is False


def test_message_defaults(ansi_directory: NodeDirectory) -> None:
    pc = PropertyContext(ansi_directory, _node(ansi_directory, NODE_TYPE_MESSAGE, subject="Hi"))

    assert pc.get(PID_SUBJECT, PT_STRING8).value == "Hi"
    assert pc.get_string(PID_MESSAGE_CLASS) == "IPM.Note"
    assert pc.get_datetime(PID_CREATION_TIME).tzinfo is not None


def test_attachment_defaults(directory: NodeDirectory) -> None:
    message = _node(directory, NODE_TYPE_MESSAGE)
    nid = directory.allocate_node_id(NODE_TYPE_ATTACHMENT)
    attachment = directory.add(NodeEntry(node_id=nid, parent_id=message.node_id), b"")
    pc = PropertyContext(directory, attachment)

    assert pc.get_string(PID_ATTACH_FILENAME) == "attachment"
    assert pc.get_int32(PID_ATTACH_METHOD) == 1


def test_tables_get_no_defaults() -> None:
    table = NodeEntry(node_id=hierarchy_table_id(ROOT))

    assert default_properties(table, PstFormat.UNICODE) == {}


def test_read_only_container_rejects_mutation(memory_store: MemoryBackingStore) -> None:
    directory = NodeDirectory.create(memory_store, PstFormat.UNICODE)
    entry = _node(directory, NODE_TYPE_FOLDER)
    view = NodeDirectory.open(MemoryBackingStore(memory_store.getvalue(), read_only=True),
                              directory.root_page_offset)
    pc = PropertyContext(view, view.find(entry.node_id))

    with pytest.raises(AccessDeniedError):
        pc.set(PID_DISPLAY_NAME, PT_UNICODE, "nope")
    with pytest.raises(AccessDeniedError):
        pc.delete(PID_DISPLAY_NAME, PT_UNICODE)
    assert pc.get_string(PID_DISPLAY_NAME) == "Unnamed Folder"
