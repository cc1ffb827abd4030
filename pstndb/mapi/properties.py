"""Property ids, wire types, and combined tag helpers for property payloads.

A property slot is identified by (property id, property type). The two are
combined into one 32-bit key as ``type << 16 | id``, so the same id may exist
once per type.
"""

# --- Property Types (wire codes) ---
PT_UNSPECIFIED = 0x0000
PT_LONG = 0x0003  # 32-bit signed integer
PT_DOUBLE = 0x0005  # IEEE 754 double
PT_BOOLEAN = 0x000B  # 1-byte boolean
PT_OBJECT = 0x000D  # embedded object, skipped on read
PT_LONGLONG = 0x0014  # 64-bit signed integer
PT_STRING8 = 0x001E  # 8-bit string (UTF-8)
PT_UNICODE = 0x001F  # UTF-16LE string
PT_SYSTIME = 0x0040  # FILETIME (8 bytes)
PT_BINARY = 0x0102  # Binary blob

# Fixed-size property data lengths
PROP_TYPE_SIZES = {
    PT_BOOLEAN: 1,
    PT_LONG: 4,
    PT_LONGLONG: 8,
    PT_DOUBLE: 8,
    PT_SYSTIME: 8,
}

VARIABLE_TYPES = frozenset((PT_STRING8, PT_UNICODE, PT_BINARY, PT_OBJECT))

# Every type code a well-formed payload can carry. Anything else in a record
# header means the reader is out of sync.
KNOWN_TYPES = frozenset(PROP_TYPE_SIZES) | VARIABLE_TYPES

STRING_ENCODINGS = {
    PT_STRING8: 'utf-8',
    PT_UNICODE: 'utf-16-le',
}


def prop_key(prop_id, prop_type):
    return ((prop_type & 0xFFFF) << 16) | (prop_id & 0xFFFF)


def key_id(key):
    return key & 0xFFFF


def key_type(key):
    return (key >> 16) & 0xFFFF


# --- Common Properties ---
PID_DISPLAY_NAME = 0x3001
PID_SUBJECT = 0x0037
PID_MESSAGE_CLASS = 0x001A
PID_CREATION_TIME = 0x3007
PID_LAST_MODIFICATION_TIME = 0x3008

# --- Folder Properties ---
PID_CONTENT_COUNT = 0x3602
PID_CONTENT_UNREAD_COUNT = 0x3603
PID_SUBFOLDERS = 0x360A
PID_CONTAINER_CLASS = 0x3613

# --- Message Properties ---
PID_SENDER_NAME = 0x0C1A
PID_SENDER_EMAIL_ADDRESS = 0x0C1F
PID_CLIENT_SUBMIT_TIME = 0x0039
PID_MESSAGE_DELIVERY_TIME = 0x0E06
PID_MESSAGE_FLAGS = 0x0E07
PID_MESSAGE_SIZE = 0x0E08
PID_HASATTACH = 0x0E1B

# --- Attachment Properties ---
PID_ATTACH_SIZE = 0x0E20
PID_ATTACH_FILENAME = 0x3704
PID_ATTACH_METHOD = 0x3705
PID_ATTACH_LONG_FILENAME = 0x3707
PID_ATTACH_MIME_TAG = 0x370E

# Attachment methods
ATTACH_BY_VALUE = 1
