"""Node id (NID) layout, node types, and well-known ids.

NID layout (32-bit):
- bits 0-4: low 5 bits of the index
- bits 5-9: node type
- bits 10-31: remaining index bits

The node type is always derived from the id, never stored.
"""

from enum import Enum

NID_TYPE_SHIFT = 5
NID_TYPE_MASK = 0x1F << NID_TYPE_SHIFT
NID_LOW_INDEX_MASK = 0x1F
NID_HIGH_INDEX_SHIFT = 10
MAX_NID_INDEX = (1 << 27) - 1

# --- Node Types ---
NODE_TYPE_INTERNAL = 0x00
NODE_TYPE_FOLDER = 0x01
NODE_TYPE_SEARCH_FOLDER = 0x02
NODE_TYPE_MESSAGE_STORE = 0x03
NODE_TYPE_MESSAGE = 0x04
NODE_TYPE_ATTACHMENT = 0x05
NODE_TYPE_CONTENTS_TABLE = 0x06
NODE_TYPE_RECIPIENT_TABLE = 0x07
NODE_TYPE_SEARCH_CRITERIA = 0x08
NODE_TYPE_ATTACHMENT_TABLE = 0x09
NODE_TYPE_HIERARCHY_TABLE = 0x0A
NODE_TYPE_CONTENTS = 0x0B
NODE_TYPE_ASSOCIATED_CONTENTS = 0x0C
NODE_TYPE_SEARCH_CONTENTS_TABLE = 0x0D

FOLDER_TYPES = frozenset((NODE_TYPE_FOLDER, NODE_TYPE_SEARCH_FOLDER))


class PstFormat(Enum):
    """Container header shape. Decides root id and string/payload layout."""

    ANSI = "ansi"
    UNICODE = "unicode"

    @property
    def is_ansi(self):
        return self is PstFormat.ANSI


# --- Special NIDs ---
NID_ROOT_FOLDER_ANSI = 0x21  # type=FOLDER, index=1
NID_ROOT_FOLDER_UNICODE = 0x42  # type=SEARCH_FOLDER, index=2


def root_folder_id(fmt: PstFormat) -> int:
    return NID_ROOT_FOLDER_ANSI if fmt.is_ansi else NID_ROOT_FOLDER_UNICODE


def make_nid(node_type, index):
    """Build a NID from a node type and index."""
    if not 0 <= index <= MAX_NID_INDEX:
        raise ValueError(f"NID index out of range: {index}")
    return (((index >> 5) << NID_HIGH_INDEX_SHIFT)
            | ((node_type & 0x1F) << NID_TYPE_SHIFT)
            | (index & NID_LOW_INDEX_MASK))


def classify(nid):
    """Node type of a NID."""
    return (nid >> NID_TYPE_SHIFT) & 0x1F


def nid_index(nid):
    return (nid & NID_LOW_INDEX_MASK) | ((nid >> NID_HIGH_INDEX_SHIFT) << 5)


def is_folder(nid):
    return classify(nid) in FOLDER_TYPES


def is_message(nid):
    return classify(nid) == NODE_TYPE_MESSAGE


def is_attachment(nid):
    return classify(nid) == NODE_TYPE_ATTACHMENT


def companion_id(owner_nid, table_type):
    """NID of a companion table node for ``owner_nid``.

    Swaps the owner's type bits for ``table_type``; for a given owner kind this
    is a fixed offset per table kind.
    """
    return (owner_nid & ~NID_TYPE_MASK) | ((table_type & 0x1F) << NID_TYPE_SHIFT)


def hierarchy_table_id(folder_nid):
    """Companion listing a folder's child folders."""
    return companion_id(folder_nid, NODE_TYPE_HIERARCHY_TABLE)


def contents_table_id(folder_nid):
    """Companion listing a folder's messages."""
    return companion_id(folder_nid, NODE_TYPE_CONTENTS_TABLE)


def attachment_table_id(message_nid):
    """Companion listing a message's attachments."""
    return companion_id(message_nid, NODE_TYPE_ATTACHMENT_TABLE)


def companion_ids(nid):
    """All companion table ids an owner of this kind can have."""
    if is_folder(nid):
        return [hierarchy_table_id(nid), contents_table_id(nid)]
    if is_message(nid):
        return [attachment_table_id(nid)]
    return []


def owning_table_id(parent_nid, child_nid):
    """The parent's companion table that lists ``child_nid``, or None."""
    if is_folder(parent_nid):
        if is_folder(child_nid):
            return hierarchy_table_id(parent_nid)
        if is_message(child_nid):
            return contents_table_id(parent_nid)
    elif is_message(parent_nid) and is_attachment(child_nid):
        return attachment_table_id(parent_nid)
    return None


# Well-known top-level folders, rebuilt from scratch when pages are unreadable.
SYSTEM_FOLDER_NAMES = {
    make_nid(NODE_TYPE_FOLDER, 3): "Inbox",
    make_nid(NODE_TYPE_FOLDER, 4): "Sent Items",
    make_nid(NODE_TYPE_FOLDER, 5): "Deleted Items",
    make_nid(NODE_TYPE_FOLDER, 6): "Outbox",
    make_nid(NODE_TYPE_FOLDER, 7): "Drafts",
}

ROOT_FOLDER_NAME = "Root Folder"


def system_folder_name(nid, fmt: PstFormat):
    """Display name of a well-known folder, or None if ``nid`` is not one."""
    if nid == root_folder_id(fmt):
        return ROOT_FOLDER_NAME
    return SYSTEM_FOLDER_NAMES.get(nid)
