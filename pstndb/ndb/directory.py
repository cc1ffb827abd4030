"""Node directory: the B-tree index from node id to NodeEntry.

The directory owns every NodeEntry it has loaded. Callers always receive
copies, so mutating a returned entry has no effect until it is passed back
through ``update`` / ``update_payload``.

Writes follow one path: the heap reserves space, the payload is written, the
entry goes into the cache, the leaf record goes into the index pages, the
parent's companion table is updated, and the side index is rewritten.
"""

from bisect import bisect_left
from collections import defaultdict
from pathlib import Path

from ..config import DEFAULT_CONFIG
from ..errors import AccessDeniedError, CorruptedError
from ..logging_config import component_logger
from .btree import (
    KEY_SENTINEL, MAX_LEVEL, PAGE_SIZE, build_page, max_entries, min_entries,
    page_number, page_offset, parse_page, route, separator, split_entries,
)
from .entry import NodeEntry
from .heap import HeapAllocator
from .nid import (
    ROOT_FOLDER_NAME, PstFormat, classify, companion_ids, make_nid, nid_index,
    owning_table_id, root_folder_id, system_folder_name,
)
from .side_index import read_side_index, side_index_path, write_side_index
from .tables import decode_table, encode_table

# Indices below this are reserved for the root and well-known folders.
FIRST_FREE_INDEX = 32


class NodeDirectory:
    """B-tree node index over a backing store.

    Use ``create`` for a new container and ``open`` for an existing one, or
    ``open_directory`` to pick between them.

    Usage:
        directory = NodeDirectory.create(store, PstFormat.UNICODE)
        inbox = directory.add(NodeEntry(0x23, parent_id=directory.root_folder_id), b'')
    """

    def __init__(self, store, root_page_offset, fmt=PstFormat.UNICODE,
                 config=DEFAULT_CONFIG, side_index_path=None, log=None):
        self._store = store
        self._root_offset = root_page_offset
        self._fmt = fmt
        self.config = config
        self._log = component_logger("directory", log)
        self._heap = HeapAllocator(store, self._extents, config, log=log)
        self._cache = {}
        self._pages = set() if root_page_offset is None else {root_page_offset}
        self._fully_loaded = False
        self._next_index = None
        self._side_path = self._resolve_side_path(side_index_path)
        self._side_entries = {}

    # --- construction ---

    @classmethod
    def create(cls, store, fmt=PstFormat.UNICODE, config=DEFAULT_CONFIG,
               side_index_path=None, log=None):
        """Build an empty index holding only the root folder."""
        if store.is_read_only():
            raise AccessDeniedError("Cannot create an index in a read-only container",
                                    operation="create")
        directory = cls(store, None, fmt, config, side_index_path, log)
        offset = directory._new_page()
        directory._root_offset = offset
        directory._write_page(offset, 0, [])
        directory._fully_loaded = True
        directory._next_index = FIRST_FREE_INDEX

        root = NodeEntry(node_id=root_folder_id(fmt), parent_id=0,
                         data_offset=config.heap_start, display_name=ROOT_FOLDER_NAME)
        directory._cache[root.node_id] = root
        directory._btree_insert(root)
        directory.flush()
        directory._log.info(f"Created node index at 0x{offset:X} ({fmt.value})")
        return directory

    @classmethod
    def open(cls, store, root_page_offset, fmt=PstFormat.UNICODE,
             config=DEFAULT_CONFIG, side_index_path=None, log=None):
        """Open an existing index. Raises CorruptedError if the root page is unreadable."""
        directory = cls(store, root_page_offset, fmt, config, side_index_path, log)
        try:
            directory._read_page(root_page_offset)
        except CorruptedError as exc:
            directory._log.error(f"Root index page unreadable: {exc}")
            raise
        directory._load_side_index()
        return directory

    def _resolve_side_path(self, explicit):
        if explicit is not None:
            return Path(explicit)
        if not self.config.side_index:
            return None
        container = getattr(self._store, "path", None)
        if container is None:
            return None
        return side_index_path(container, self.config.side_index_suffix)

    def _load_side_index(self):
        if self._side_path is None or not self._side_path.exists():
            return
        try:
            self._side_entries = read_side_index(self._side_path)
        except (CorruptedError, OSError, UnicodeDecodeError) as exc:
            self._log.warning(f"Ignoring unreadable side index {self._side_path}: {exc}")
            self._side_entries = {}
            return
        self._log.debug(f"Loaded {len(self._side_entries)} rows from {self._side_path}")

    # --- properties ---

    @property
    def fmt(self):
        return self._fmt

    @property
    def root_folder_id(self):
        return root_folder_id(self._fmt)

    @property
    def root_page_offset(self):
        return self._root_offset

    @property
    def read_only(self):
        return self._store.is_read_only()

    @property
    def store(self):
        return self._store

    @property
    def heap(self):
        return self._heap

    # --- lookups ---

    def find(self, node_id):
        """Entry for ``node_id``, or None if the id is not in the index.

        When the index pages cannot be read, the root and well-known system
        folders are synthesized; any other id raises CorruptedError.
        """
        try:
            entry = self._lookup(node_id)
        except CorruptedError as exc:
            synthesized = self._synthesize(node_id)
            if synthesized is None:
                self._log.error(f"Lookup of 0x{node_id:X} failed: {exc}")
                raise
            self._log.warning(
                f"Index unreadable, using default entry for {synthesized.display_name!r}: {exc}")
            return synthesized
        return None if entry is None else entry.copy()

    def get_all(self):
        """Every entry in the index, ordered by node id. The root is always included."""
        self._load_for_listing()
        entries = [self._cache[nid].copy() for nid in sorted(self._cache)]
        if self.root_folder_id not in self._cache:
            entries.insert(0, self._synthesize(self.root_folder_id))
        return entries

    def children(self, parent_id, node_type=None):
        """Entries whose parent is ``parent_id``, optionally of one node type."""
        self._load_for_listing()
        return [e.copy() for nid, e in sorted(self._cache.items())
                if e.parent_id == parent_id
                and (node_type is None or classify(nid) == node_type)]

    def read_payload(self, node):
        """Payload bytes for a node id or entry, or None if the node is unknown."""
        node_id = node.node_id if isinstance(node, NodeEntry) else node
        entry = self._lookup(node_id)
        if entry is None:
            if not isinstance(node, NodeEntry):
                return None
            entry = node
        try:
            return entry.read_data(self._store)
        except OSError as exc:
            raise CorruptedError(f"cannot read payload: {exc}", node_id=node_id,
                                 operation="read_payload") from exc

    def allocate_node_id(self, node_type):
        """A fresh node id of ``node_type``. Indices are unique across types."""
        if self._next_index is None:
            self._ensure_loaded()
            highest = max((nid_index(nid) for nid in self._cache), default=0)
            self._next_index = max(highest + 1, FIRST_FREE_INDEX)
        while True:
            node_id = make_nid(node_type, self._next_index)
            self._next_index += 1
            if node_id not in self._cache:
                return node_id

    # --- mutations ---

    def add(self, entry, payload=b''):
        """Store ``entry`` with ``payload``. An existing id is updated in place.

        The parent (unless 0) must already exist; otherwise ValueError.
        Returns a copy of the stored entry.
        """
        self._ensure_writable("add", entry.node_id)
        payload = bytes(payload)
        self._ensure_loaded()
        self._check_parent(entry.node_id, entry.parent_id)

        live = self._cache.get(entry.node_id)
        if live is not None:
            old_parent = live.parent_id
            self._copy_fields(entry, live)
            self._rewrite_payload(live, payload)
            self._relink(live, old_parent)
            self.flush()
            return live.copy()

        live = entry.copy()
        live.data_offset = self._heap.allocate(len(payload))
        live.data_size = len(payload)
        if payload:
            self._heap.write(live.data_offset, payload)
        self._commit_new(live)
        self._register_child(live)
        self.flush()
        self._log.debug(f"Added {live!r}")
        return live.copy()

    def update(self, entry):
        """Overwrite an entry's ids, summary fields and metadata. Payload is untouched."""
        self._ensure_writable("update", entry.node_id)
        live = self._lookup(entry.node_id)
        if live is None:
            return False
        self._ensure_loaded()
        self._check_parent(entry.node_id, entry.parent_id)
        old_parent = live.parent_id
        self._copy_fields(entry, live)
        self._btree_insert(live)
        self._relink(live, old_parent)
        self.flush()
        return True

    def update_payload(self, entry, payload):
        """Replace a node's payload. Returns the updated entry, or None if unknown.

        The payload is rewritten in place when it fits the current range;
        otherwise fresh space is allocated and the old range is abandoned.
        """
        self._ensure_writable("update_payload", entry.node_id)
        live = self._lookup(entry.node_id)
        if live is None:
            return None
        self._ensure_loaded()
        self._rewrite_payload(live, bytes(payload))
        self.flush()
        return live.copy()

    def remove(self, node_id):
        """Remove a node, its companion tables and every descendant.

        Returns False if the node is not in the index.
        """
        self._ensure_writable("remove", node_id)
        if node_id == self.root_folder_id:
            raise ValueError("The root folder cannot be removed")
        self._ensure_loaded()
        target = self._cache.get(node_id)
        if target is None:
            return False

        by_parent = defaultdict(list)
        for nid, e in self._cache.items():
            by_parent[e.parent_id].append(nid)

        doomed = []
        seen = set()
        pending = [node_id]
        while pending:
            current = pending.pop()
            if current in seen or current not in self._cache:
                continue
            seen.add(current)
            doomed.append(current)
            pending.extend(by_parent.get(current, ()))
            pending.extend(companion_ids(current))

        for nid in doomed:
            gone = self._cache.pop(nid)
            self._heap.free(gone.data_offset, gone.data_size)
            self._btree_delete(nid)
        self._log.debug(f"Removed 0x{node_id:X} and {len(doomed) - 1} dependent nodes")

        if target.parent_id not in seen:
            self._unregister_child(target.parent_id, node_id)
        self.flush()
        return True

    def flush(self):
        """Rewrite the side index from the cache."""
        if self._side_path is None or self.read_only:
            return
        self._load_for_listing()
        entries = [self._cache[nid] for nid in sorted(self._cache)]
        try:
            write_side_index(self._side_path, entries)
        except OSError as exc:
            self._log.warning(f"Could not write side index {self._side_path}: {exc}")

    def check(self):
        """Verify the page tree. Returns a list of problems, empty when sound."""
        problems = []
        stack = [(self._root_offset, None, 0, 1 << 32, True)]
        visited = set()
        while stack:
            offset, level, lower, upper, is_root = stack.pop()
            if offset in visited:
                problems.append(f"page 0x{offset:X} is referenced twice")
                continue
            visited.add(offset)
            try:
                page = self._read_page(offset)
            except CorruptedError as exc:
                problems.append(str(exc))
                continue
            where = f"page 0x{offset:X}"
            if level is not None and page.level != level:
                problems.append(f"{where} has level {page.level}, expected {level}")
            if not is_root and len(page.entries) < min_entries(page.level):
                problems.append(f"{where} holds {len(page.entries)} entries, below minimum")
            if page.is_leaf:
                for e in page.entries:
                    if not lower <= e.node_id < upper:
                        problems.append(f"{where} holds 0x{e.node_id:X} outside "
                                        f"[0x{lower:X}, 0x{upper:X})")
                continue
            if not page.entries:
                problems.append(f"{where} is an empty internal page")
                continue
            low = lower
            for i, (key, child) in enumerate(page.entries):
                last = i == len(page.entries) - 1
                high = upper if last else key
                if not last and not lower < key < upper:
                    problems.append(f"{where} key 0x{key:X} outside its bounds")
                stack.append((page_offset(child), page.level - 1, low, high, False))
                low = key
        return problems

    # --- internals: cache and bookkeeping ---

    def _ensure_writable(self, operation, node_id=None):
        if self.read_only:
            raise AccessDeniedError("Container is opened read-only",
                                    node_id=node_id, operation=operation)

    def _ensure_loaded(self):
        if not self._fully_loaded:
            self._load_all()

    def _load_for_listing(self):
        if self._fully_loaded or len(self._cache) > self.config.full_load_threshold:
            return
        try:
            self._load_all()
        except CorruptedError as exc:
            self._log.warning(f"Full index traversal failed, returning cached entries: {exc}")

    def _extents(self):
        for entry in self._cache.values():
            yield entry.data_range
        for offset in self._pages:
            yield offset, offset + PAGE_SIZE

    def _lookup(self, node_id):
        entry = self._cache.get(node_id)
        if entry is not None or self._fully_loaded:
            return entry
        record = self._search(node_id)
        if record is None:
            return None
        return self._remember(record)

    def _remember(self, record):
        existing = self._cache.get(record.node_id)
        if existing is not None:
            return existing
        side = self._side_entries.get(record.node_id)
        if side is not None and (side.data_id, side.parent_id, side.data_offset,
                                 side.data_size) == (record.data_id, record.parent_id,
                                                     record.data_offset, record.data_size):
            record.merge_summary(side)
        self._cache[record.node_id] = record
        return record

    def _synthesize(self, node_id):
        name = system_folder_name(node_id, self._fmt)
        if name is None:
            return None
        parent = 0 if node_id == self.root_folder_id else self.root_folder_id
        return NodeEntry(node_id=node_id, parent_id=parent,
                         data_offset=self.config.heap_start, display_name=name)

    def _check_parent(self, node_id, parent_id):
        if parent_id == 0:
            return
        if parent_id == node_id:
            raise ValueError(f"node 0x{node_id:X} cannot be its own parent")
        if self._lookup(parent_id) is None:
            raise ValueError(f"parent 0x{parent_id:X} of node 0x{node_id:X} does not exist")

        seen = set()
        ancestor = parent_id
        while ancestor and ancestor not in seen:
            if ancestor == node_id:
                raise ValueError(f"parent 0x{parent_id:X} is a descendant of node 0x{node_id:X}")
            seen.add(ancestor)
            record = self._cache.get(ancestor)
            ancestor = record.parent_id if record is not None else 0

    @staticmethod
    def _copy_fields(source, live):
        live.data_id = source.data_id
        live.parent_id = source.parent_id
        live.display_name = source.display_name
        live.subject = source.subject
        live.sender_name = source.sender_name
        live.sender_email = source.sender_email
        live.sent_date = source.sent_date
        live.message_size = source.message_size
        live.has_attachment = source.has_attachment
        live.metadata = dict(source.metadata)

    def _commit_new(self, live):
        self._cache[live.node_id] = live
        try:
            self._btree_insert(live)
        except Exception:
            del self._cache[live.node_id]
            raise
        if self._next_index is not None and nid_index(live.node_id) >= self._next_index:
            self._next_index = nid_index(live.node_id) + 1

    def _rewrite_payload(self, live, payload):
        if live.data_size and len(payload) <= live.data_size:
            if payload:
                self._heap.write(live.data_offset, payload)
            live.data_size = len(payload)
        else:
            self._heap.free(live.data_offset, live.data_size)
            live.data_offset = self._heap.allocate(len(payload))
            live.data_size = len(payload)
            if payload:
                self._heap.write(live.data_offset, payload)
        self._btree_insert(live)

    def _relink(self, live, old_parent):
        if live.parent_id == old_parent:
            return
        self._unregister_child(old_parent, live.node_id)
        self._register_child(live)

    def _table_rows(self, table, parent_id):
        try:
            return decode_table(self.read_payload(table), node_id=table.node_id)
        except CorruptedError as exc:
            self._log.warning(f"Rebuilding table 0x{table.node_id:X} from the index: {exc}")
            return [nid for nid, e in sorted(self._cache.items())
                    if e.parent_id == parent_id
                    and owning_table_id(parent_id, nid) == table.node_id]

    def _register_child(self, child):
        table_id = owning_table_id(child.parent_id, child.node_id)
        if table_id is None:
            return
        table = self._cache.get(table_id)
        if table is None:
            payload = encode_table([child.node_id])
            table = NodeEntry(node_id=table_id, parent_id=child.parent_id)
            table.data_offset = self._heap.allocate(len(payload))
            table.data_size = len(payload)
            self._heap.write(table.data_offset, payload)
            self._commit_new(table)
            self._log.debug(f"Created companion table 0x{table_id:X}")
            return
        rows = self._table_rows(table, child.parent_id)
        if child.node_id not in rows:
            rows.append(child.node_id)
            self._rewrite_payload(table, encode_table(rows))

    def _unregister_child(self, parent_id, child_id):
        table_id = owning_table_id(parent_id, child_id)
        table = self._cache.get(table_id) if table_id is not None else None
        if table is None:
            return
        rows = self._table_rows(table, parent_id)
        if child_id in rows:
            rows.remove(child_id)
        self._rewrite_payload(table, encode_table(rows))

    # --- internals: pages ---

    def _read_page(self, offset):
        try:
            data = self._store.read_range(offset, PAGE_SIZE)
        except OSError as exc:
            raise CorruptedError(f"cannot read index page at 0x{offset:X}: {exc}",
                                 operation="read_page") from exc
        return parse_page(data, offset)

    def _write_page(self, offset, level, entries):
        self._heap.write(offset, build_page(level, entries))

    def _new_page(self):
        offset = self._heap.allocate(PAGE_SIZE)
        self._pages.add(offset)
        return offset

    def _drop_page(self, offset):
        self._pages.discard(offset)
        self._heap.free(offset, PAGE_SIZE)

    def _search(self, node_id):
        page = self._read_page(self._root_offset)
        while not page.is_leaf:
            if not page.entries:
                raise CorruptedError(f"empty internal page at 0x{page.offset:X}",
                                     operation="search")
            _, child = page.entries[route(page.entries, node_id)]
            page = self._read_child(page, child)
        for record in page.entries:
            if record.node_id == node_id:
                return record
        return None

    def _read_child(self, parent, child_number):
        child = self._read_page(page_offset(child_number))
        if child.level != parent.level - 1:
            raise CorruptedError(
                f"page 0x{child.offset:X} has level {child.level} under a "
                f"level {parent.level} page", operation="read_page")
        return child

    def _load_all(self):
        records = []
        pages = set()
        stack = [(self._root_offset, None)]
        while stack:
            offset, level = stack.pop()
            if offset in pages:
                raise CorruptedError(f"index page 0x{offset:X} is referenced twice",
                                     operation="load_all")
            pages.add(offset)
            page = self._read_page(offset)
            if level is not None and page.level != level:
                raise CorruptedError(f"page 0x{offset:X} has level {page.level}, "
                                     f"expected {level}", operation="load_all")
            if page.is_leaf:
                records.extend(page.entries)
                continue
            stack.extend((page_offset(child), page.level - 1) for _, child in page.entries)
        for record in records:
            self._remember(record)
        self._pages = pages
        self._fully_loaded = True
        self._log.debug(f"Loaded {len(records)} entries from {len(pages)} index pages")

    def _descend(self, node_id):
        """Root-to-leaf path as ``[page, child_index]`` pairs."""
        path = []
        page = self._read_page(self._root_offset)
        while not page.is_leaf:
            if not page.entries or len(path) > MAX_LEVEL:
                raise CorruptedError(f"malformed internal page at 0x{page.offset:X}",
                                     operation="descend")
            idx = route(page.entries, node_id)
            path.append([page, idx])
            page = self._read_child(page, page.entries[idx][1])
        path.append([page, None])
        return path

    def _btree_insert(self, record):
        path = self._descend(record.node_id)
        leaf = path[-1][0]
        keys = leaf.keys
        pos = bisect_left(keys, record.node_id)
        if pos < len(keys) and keys[pos] == record.node_id:
            leaf.entries[pos] = record
        else:
            leaf.entries.insert(pos, record)
        self._store_path(path)

    def _store_path(self, path):
        """Write a modified path bottom-up, splitting overfull pages."""
        for depth in range(len(path) - 1, -1, -1):
            page = path[depth][0]
            if len(page.entries) <= max_entries(page.level):
                self._write_page(page.offset, page.level, page.entries)
                return
            left, right = split_entries(page.entries)
            sep = separator(page.level, left, right)
            if depth == 0:
                self._split_root(page, left, right, sep)
                return
            sibling = self._new_page()
            self._write_page(page.offset, page.level, left)
            self._write_page(sibling, page.level, right)
            parent, idx = path[depth - 1]
            bound = parent.entries[idx][0]
            parent.entries[idx] = (sep, page_number(page.offset))
            parent.entries.insert(idx + 1, (bound, page_number(sibling)))
            self._log.debug(f"Split level {page.level} page 0x{page.offset:X} at 0x{sep:X}")

    def _split_root(self, root, left, right, sep):
        low = self._new_page()
        high = self._new_page()
        self._write_page(low, root.level, left)
        self._write_page(high, root.level, right)
        root.level += 1
        root.entries = [(sep, page_number(low)), (KEY_SENTINEL, page_number(high))]
        self._write_page(root.offset, root.level, root.entries)
        self._log.debug(f"Root split, tree is now {root.level + 1} levels deep")

    def _btree_delete(self, node_id):
        path = self._descend(node_id)
        leaf = path[-1][0]
        keys = leaf.keys
        pos = bisect_left(keys, node_id)
        if pos == len(keys) or keys[pos] != node_id:
            self._log.warning(f"Node 0x{node_id:X} missing from index pages")
            return False
        del leaf.entries[pos]
        self._rebalance(path)
        return True

    def _rebalance(self, path):
        """Write a shrunken path bottom-up, fixing underflow by borrow or merge."""
        for depth in range(len(path) - 1, 0, -1):
            page = path[depth][0]
            parent, idx = path[depth - 1]
            if len(page.entries) >= min_entries(page.level) or len(parent.entries) < 2:
                self._write_page(page.offset, page.level, page.entries)
                return
            sibling_idx = idx + 1 if idx + 1 < len(parent.entries) else idx - 1
            sibling = self._read_child(parent, parent.entries[sibling_idx][1])
            left_idx = min(idx, sibling_idx)
            left, right = (page, sibling) if idx < sibling_idx else (sibling, page)
            combined = left.entries + right.entries

            if len(combined) <= max_entries(page.level):
                self._write_page(left.offset, left.level, combined)
                bound = parent.entries[left_idx + 1][0]
                parent.entries[left_idx] = (bound, page_number(left.offset))
                del parent.entries[left_idx + 1]
                self._drop_page(right.offset)
                self._log.debug(f"Merged page 0x{right.offset:X} into 0x{left.offset:X}")
            else:
                left.entries, right.entries = split_entries(combined)
                self._write_page(left.offset, left.level, left.entries)
                self._write_page(right.offset, right.level, right.entries)
                sep = separator(page.level, left.entries, right.entries)
                parent.entries[left_idx] = (sep, page_number(left.offset))
                self._log.debug(f"Rebalanced pages 0x{left.offset:X} and 0x{right.offset:X}")

        root = path[0][0]
        while not root.is_leaf and len(root.entries) == 1:
            child = self._read_child(root, root.entries[0][1])
            root.level = child.level
            root.entries = child.entries
            if not root.is_leaf:
                root.entries[-1] = (KEY_SENTINEL, root.entries[-1][1])
            self._drop_page(child.offset)
            self._log.debug(f"Root collapsed to {root.level + 1} levels")
        self._write_page(root.offset, root.level, root.entries)


def open_directory(store, root_page_offset=None, fmt=PstFormat.UNICODE,
                   config=DEFAULT_CONFIG, side_index_path=None, log=None):
    """Open the index at ``root_page_offset``, creating one when none exists yet.

    A container with no root page (no offset, or a file too short to hold
    one) gets a fresh index when writable. Read-only containers without an
    index raise CorruptedError.
    """
    missing = (root_page_offset is None
               or root_page_offset + PAGE_SIZE > store.file_length())
    if missing:
        if store.is_read_only():
            raise CorruptedError("Container has no node index", operation="open")
        return NodeDirectory.create(store, fmt, config, side_index_path, log)
    return NodeDirectory.open(store, root_page_offset, fmt, config, side_index_path, log)
