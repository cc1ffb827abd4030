"""Property Context (PC): the typed property set stored in a node's payload.

Payload layout:

    Unicode:  signature:u32 (0x4E425001) count:i32 records...
    ANSI:     count:u32 records...
    record:   property_id:u16 property_type:u16 value

Fixed-width values follow the tag directly; strings and binaries are
``{size:i32}{bytes}``. Readers accept either header shape regardless of the
container format. Payloads the structured reader rejects go through the
recovery scanner instead of failing.
"""

import struct

from ..binary import BinaryCursor
from ..errors import AccessDeniedError, CorruptedError, ShortReadError
from ..logging_config import component_logger
from ..mapi.properties import (
    ATTACH_BY_VALUE, KNOWN_TYPES, PID_ATTACH_FILENAME, PID_ATTACH_LONG_FILENAME,
    PID_ATTACH_METHOD, PID_ATTACH_MIME_TAG, PID_ATTACH_SIZE, PID_CLIENT_SUBMIT_TIME,
    PID_CONTAINER_CLASS, PID_CONTENT_COUNT, PID_CONTENT_UNREAD_COUNT,
    PID_CREATION_TIME, PID_DISPLAY_NAME, PID_HASATTACH, PID_LAST_MODIFICATION_TIME,
    PID_MESSAGE_CLASS, PID_MESSAGE_DELIVERY_TIME, PID_MESSAGE_FLAGS, PID_MESSAGE_SIZE,
    PID_SENDER_EMAIL_ADDRESS, PID_SENDER_NAME, PID_SUBFOLDERS, PID_SUBJECT,
    PT_BINARY, PT_BOOLEAN, PT_DOUBLE, PT_LONG, PT_LONGLONG, PT_STRING8, PT_SYSTIME,
    PT_UNICODE, key_id, key_type, prop_key,
)
from ..ndb.nid import is_attachment, is_folder, is_message
from ..utils import utc_now
from .recovery import scan_properties
from .values import PropertyValue, decode_value, encode_value

PC_SIGNATURE = 0x4E425001

_U32 = struct.Struct('<I')
_I32 = struct.Struct('<i')


def string_type(fmt):
    """Wire type used for strings written to a container of format ``fmt``."""
    return PT_STRING8 if fmt.is_ansi else PT_UNICODE


def serialize(properties, fmt):
    """Encode ``{combined_key: PropertyValue}`` as a payload for ``fmt``."""
    cursor = BinaryCursor()
    if not fmt.is_ansi:
        cursor.write_u32(PC_SIGNATURE)
    count_pos = cursor.tell()
    cursor.write_u32(0)

    count = 0
    for key in sorted(properties, key=lambda k: (key_id(k), key_type(k))):
        prop_type = key_type(key)
        cursor.write_u16(key_id(key))
        cursor.write_u16(prop_type)
        encode_value(cursor, prop_type, properties[key])
        count += 1

    with cursor.at(count_pos):
        if fmt.is_ansi:
            cursor.write_u32(count)
        else:
            cursor.write_i32(count)
    return cursor.getvalue()


def _read_header(payload):
    """Return ``(count, records_start)``; count is None if the header is truncated."""
    if len(payload) < 4:
        return None, 0
    (first,) = _U32.unpack_from(payload, 0)
    if first == PC_SIGNATURE:
        if len(payload) < 8:
            return None, 4
        (count,) = _I32.unpack_from(payload, 4)
        return count, 8
    return first, 4


def parse(payload, config, log=None):
    """Decode a payload.

    Returns ``(properties, clean)``. ``clean`` is False when the recovery
    scanner had to be used. Never raises.
    """
    log = component_logger("properties", log)
    payload = bytes(payload)
    if not payload:
        return {}, True

    count, start = _read_header(payload)
    if count is None or not 0 <= count <= config.max_property_count:
        log.warning(f"Implausible property count {count}, scanning for properties")
        return scan_properties(payload, start, config, log), False

    cursor = BinaryCursor.from_bytes(payload)
    cursor.seek(start)
    properties = {}
    try:
        for _ in range(count):
            prop_id = cursor.read_u16()
            prop_type = cursor.read_u16()
            if prop_type not in KNOWN_TYPES:
                raise CorruptedError(f"unknown property type 0x{prop_type:04X} "
                                     f"at offset {cursor.tell() - 2}", operation="parse")
            value = decode_value(cursor, prop_type, limit=len(payload))
            if value is not None:
                properties[prop_key(prop_id, prop_type)] = value
    except (CorruptedError, ShortReadError, ValueError) as exc:
        log.warning(f"Property payload malformed ({exc}), scanning for properties")
        return scan_properties(payload, start, config, log), False
    return properties, True


def default_properties(entry, fmt):
    """Baseline properties for folder, message and attachment nodes.

    Other node kinds get an empty dict.
    """
    text = string_type(fmt)

    def value(prop_type, raw):
        return PropertyValue.of(prop_type, raw)

    if is_folder(entry.node_id):
        return {
            prop_key(PID_DISPLAY_NAME, text): value(text, entry.display_name or "Unnamed Folder"),
            prop_key(PID_CONTAINER_CLASS, text): value(text, "IPF.Note"),
            prop_key(PID_CONTENT_COUNT, PT_LONG): value(PT_LONG, 0),
            prop_key(PID_CONTENT_UNREAD_COUNT, PT_LONG): value(PT_LONG, 0),
            prop_key(PID_SUBFOLDERS, PT_BOOLEAN): value(PT_BOOLEAN, False),
        }
    if is_message(entry.node_id):
        now = utc_now()
        subject = entry.subject or entry.display_name or "Unnamed Message"
        return {
            prop_key(PID_SUBJECT, text): value(text, subject),
            prop_key(PID_MESSAGE_CLASS, text): value(text, "IPM.Note"),
            prop_key(PID_CREATION_TIME, PT_SYSTIME): value(PT_SYSTIME, now),
            prop_key(PID_LAST_MODIFICATION_TIME, PT_SYSTIME): value(PT_SYSTIME, now),
            prop_key(PID_MESSAGE_SIZE, PT_LONG): value(PT_LONG, 0),
            prop_key(PID_MESSAGE_FLAGS, PT_LONG): value(PT_LONG, 0),
        }
    if is_attachment(entry.node_id):
        return {
            prop_key(PID_ATTACH_FILENAME, text): value(text, "attachment"),
            prop_key(PID_ATTACH_LONG_FILENAME, text): value(text, "attachment"),
            prop_key(PID_ATTACH_METHOD, PT_LONG): value(PT_LONG, ATTACH_BY_VALUE),
            prop_key(PID_ATTACH_SIZE, PT_LONG): value(PT_LONG, 0),
            prop_key(PID_ATTACH_MIME_TAG, text): value(text, "application/octet-stream"),
        }
    return {}


class PropertyContext:
    """Typed properties of one node.

    Properties load lazily on first access. Mutations stay in memory until
    ``save()``.

    Usage:
        pc = PropertyContext(directory, directory.find(folder_id))
        pc.set(PID_DISPLAY_NAME, PT_UNICODE, "Projects")
        pc.save()
    """

    def __init__(self, directory, entry, config=None, log=None):
        if entry is None:
            raise ValueError("PropertyContext needs a node entry")
        self._directory = directory
        self._entry = entry.copy()
        self.config = config if config is not None else directory.config
        self._log = component_logger("properties", log)
        self._properties = None
        self._dirty = False

    @property
    def entry(self):
        return self._entry.copy()

    @property
    def node_id(self):
        return self._entry.node_id

    @property
    def dirty(self):
        return self._dirty

    # --- loading ---

    def load(self):
        """(Re)load properties from the node's payload.

        Returns True only if the payload parsed cleanly. Unsaved changes are
        discarded.
        """
        try:
            payload = self._directory.read_payload(self._entry)
        except CorruptedError as exc:
            self._log.warning(f"Cannot read payload of 0x{self.node_id:X}: {exc}")
            payload, clean = b'', False
        else:
            payload = payload or b''
            clean = True

        properties, parsed_clean = parse(payload, self.config, self._log)
        clean = clean and parsed_clean
        if not properties:
            properties = default_properties(self._entry, self._directory.fmt)
            if properties:
                self._log.debug(f"Using default properties for 0x{self.node_id:X}")
        self._properties = properties
        self._dirty = False
        return clean

    def _ensure_loaded(self):
        if self._properties is None:
            self.load()
        return self._properties

    # --- typed getters ---

    def get(self, property_id, property_type):
        return self._ensure_loaded().get(prop_key(property_id, property_type))

    def _get_raw(self, property_id, property_type):
        value = self.get(property_id, property_type)
        return None if value is None else value.value

    def get_string(self, property_id):
        native = string_type(self._directory.fmt)
        other = PT_STRING8 if native == PT_UNICODE else PT_UNICODE
        for prop_type in (native, other):
            value = self._get_raw(property_id, prop_type)
            if value is not None:
                return value
        return None

    def get_int32(self, property_id):
        return self._get_raw(property_id, PT_LONG)

    def get_int64(self, property_id):
        return self._get_raw(property_id, PT_LONGLONG)

    def get_double(self, property_id):
        return self._get_raw(property_id, PT_DOUBLE)

    def get_datetime(self, property_id):
        return self._get_raw(property_id, PT_SYSTIME)

    def get_bool(self, property_id):
        return self._get_raw(property_id, PT_BOOLEAN)

    def get_binary(self, property_id):
        return self._get_raw(property_id, PT_BINARY)

    def get_all(self):
        return dict(self._ensure_loaded())

    def __contains__(self, key):
        return key in self._ensure_loaded()

    def __len__(self):
        return len(self._ensure_loaded())

    # --- mutation ---

    def _ensure_writable(self, operation):
        if self._directory.read_only:
            raise AccessDeniedError("Container is opened read-only",
                                    node_id=self.node_id, operation=operation)

    def set(self, property_id, property_type, value):
        self._ensure_writable("set")
        properties = self._ensure_loaded()
        properties[prop_key(property_id, property_type)] = PropertyValue.of(property_type, value)
        self._dirty = True

    def delete(self, property_id, property_type):
        """Remove one property. Returns False if it was not set."""
        self._ensure_writable("delete")
        properties = self._ensure_loaded()
        if properties.pop(prop_key(property_id, property_type), None) is None:
            return False
        self._dirty = True
        return True

    def save(self):
        """Write pending changes. Returns False when there was nothing to write."""
        if not self._dirty:
            return False
        self._ensure_writable("save")
        payload = serialize(self._properties, self._directory.fmt)
        updated = self._directory.update_payload(self._entry, payload)
        if updated is None:
            raise ValueError(f"node 0x{self.node_id:X} is no longer in the index")
        self._summarize(updated)
        self._directory.update(updated)
        self._entry = updated
        self._dirty = False
        self._log.debug(f"Saved {len(self._properties)} properties for 0x{self.node_id:X} "
                        f"({len(payload)} bytes)")
        return True

    def _summarize(self, entry):
        """Copy summary fields from the properties onto ``entry``."""
        name = self.get_string(PID_DISPLAY_NAME)
        if name is None and entry.is_attachment:
            name = (self.get_string(PID_ATTACH_LONG_FILENAME)
                    or self.get_string(PID_ATTACH_FILENAME))
        if name is not None:
            entry.display_name = name
        if not entry.is_message:
            return
        fields = {
            "subject": self.get_string(PID_SUBJECT),
            "sender_name": self.get_string(PID_SENDER_NAME),
            "sender_email": self.get_string(PID_SENDER_EMAIL_ADDRESS),
            "sent_date": (self.get_datetime(PID_CLIENT_SUBMIT_TIME)
                          or self.get_datetime(PID_MESSAGE_DELIVERY_TIME)),
            "message_size": self.get_int32(PID_MESSAGE_SIZE),
            "has_attachment": self.get_bool(PID_HASATTACH),
        }
        for name, value in fields.items():
            if value is not None:
                setattr(entry, name, value)
