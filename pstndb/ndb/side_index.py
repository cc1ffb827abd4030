"""Side index: a CSV snapshot of resolved entries kept next to the container.

One row per entry:

    node_id,data_id,parent_id,data_offset,data_size,display_name[,KEY=value...]

Message rows carry SUBJECT, SENDER_NAME, SENDER_EMAIL, SENT_DATE (ISO 8601),
MESSAGE_SIZE and HAS_ATTACHMENT; any other ``KEY=value`` cell is metadata.
The file is a cache only. The index pages stay authoritative.
"""

import csv
import os
from datetime import datetime
from pathlib import Path

from ..errors import CorruptedError
from .entry import NodeEntry

_BASE_COLUMNS = 6

_TEXT_FIELDS = {
    "SUBJECT": "subject",
    "SENDER_NAME": "sender_name",
    "SENDER_EMAIL": "sender_email",
}


def side_index_path(container_path, suffix=".nodes"):
    container_path = Path(container_path)
    return container_path.with_name(container_path.name + suffix)


def _message_cells(entry):
    sent = entry.sent_date.isoformat() if entry.sent_date else ""
    size = "" if entry.message_size is None else str(entry.message_size)
    if entry.has_attachment is None:
        attach = ""
    else:
        attach = "1" if entry.has_attachment else "0"
    return [
        f"SUBJECT={entry.subject or ''}",
        f"SENDER_NAME={entry.sender_name or ''}",
        f"SENDER_EMAIL={entry.sender_email or ''}",
        f"SENT_DATE={sent}",
        f"MESSAGE_SIZE={size}",
        f"HAS_ATTACHMENT={attach}",
    ]


def entry_to_row(entry):
    row = [str(entry.node_id), str(entry.data_id), str(entry.parent_id),
           str(entry.data_offset), str(entry.data_size), entry.display_name or ""]
    if entry.is_message:
        row.extend(_message_cells(entry))
    row.extend(f"{key}={value}" for key, value in entry.metadata.items())
    return row


def _apply_cell(entry, key, value):
    if key in _TEXT_FIELDS:
        setattr(entry, _TEXT_FIELDS[key], value or None)
    elif key == "SENT_DATE":
        entry.sent_date = datetime.fromisoformat(value) if value else None
    elif key == "MESSAGE_SIZE":
        entry.message_size = int(value) if value else None
    elif key == "HAS_ATTACHMENT":
        entry.has_attachment = (value == "1") if value else None
    else:
        entry.metadata[key] = value


def row_to_entry(row):
    """Parse one row. Raises ValueError on malformed input."""
    if len(row) < _BASE_COLUMNS - 1:
        raise ValueError(f"expected at least {_BASE_COLUMNS - 1} columns, got {len(row)}")
    entry = NodeEntry(node_id=int(row[0]), data_id=int(row[1]), parent_id=int(row[2]),
                      data_offset=int(row[3]), data_size=int(row[4]))
    if len(row) > 5 and row[5]:
        entry.display_name = row[5]
    for cell in row[_BASE_COLUMNS:]:
        key, sep, value = cell.partition("=")
        if not sep:
            continue
        _apply_cell(entry, key, value)
    return entry


def read_side_index(path):
    """Load a side index into ``{node_id: NodeEntry}``.

    Raises CorruptedError when a row cannot be parsed; OSError propagates.
    """
    entries = {}
    with open(path, newline="", encoding="utf-8") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            if not row:
                continue
            try:
                entry = row_to_entry(row)
            except ValueError as exc:
                raise CorruptedError(f"{path}:{line_no}: {exc}",
                                     operation="read_side_index") from exc
            entries[entry.node_id] = entry
    return entries


def write_side_index(path, entries):
    """Rewrite the side index atomically."""
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        for entry in entries:
            writer.writerow(entry_to_row(entry))
    os.replace(tmp, path)
