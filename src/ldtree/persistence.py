"""Binary storage for training tables and trained trees.

All integers are little-endian. Strings and integer arrays are prefixed with
their int32 length.

Table layout::

    int32 total_rows
    int32 n, then n column names            (declaration order)
    int32 n, then n x (name, int32 array)   (column data)
    int32 array                             (duplicate count per physical row)

Tree layout::

    int32 count (0 = no tree, 1 = root follows)
    node := uint8 tag, then
        DECISION: int32 column, int32 array states, int32 child count, child nodes
        ACTION:   int32 array states, int32 array weights

Tag ``TABLE`` is reserved for unfinished build nodes and is never written;
reading one is an error.
"""

from __future__ import annotations

import struct
from collections import deque
from enum import IntEnum
from pathlib import Path

from loguru import logger

from ldtree.exceptions import PersistenceError
from ldtree.nodes import ActionNode, DecisionNode, DecisionTree
from ldtree.table import Table

TABLE_SUFFIX = ".dat"
TREE_SUFFIX = ".tree"

_INT32 = struct.Struct("<i")
_UINT8 = struct.Struct("<B")


class NodeTag(IntEnum):
    """One-byte node type marker."""

    NULL = 0
    TABLE = 1
    DECISION = 2
    ACTION = 3


class _Writer:
    """Append-only little-endian encoder."""

    def __init__(self) -> None:
        """Start with an empty buffer."""
        self._buffer = bytearray()

    def int32(self, value: int) -> None:
        """Append a signed 32-bit integer.

        Args:
            value (int): Value to encode.

        Raises:
            PersistenceError: If ``value`` is outside the int32 range.
        """
        try:
            self._buffer += _INT32.pack(value)
        except struct.error as exc:
            raise PersistenceError(f"Value {value} does not fit in int32") from exc

    def tag(self, tag: NodeTag) -> None:
        """Append a one-byte node tag.

        Args:
            tag (NodeTag): Tag to encode.
        """
        self._buffer += _UINT8.pack(tag)

    def string(self, text: str) -> None:
        """Append a length-prefixed UTF-8 string.

        Args:
            text (str): Text to encode.
        """
        encoded = text.encode("utf-8")
        self.int32(len(encoded))
        self._buffer += encoded

    def int_array(self, values: list[int] | tuple[int, ...]) -> None:
        """Append a length-prefixed int32 array.

        Args:
            values (list[int] | tuple[int, ...]): Values to encode.
        """
        self.int32(len(values))
        for value in values:
            self.int32(value)

    def getvalue(self) -> bytes:
        """Return the encoded bytes.

        Returns:
            bytes: Everything written so far.
        """
        return bytes(self._buffer)


class _Reader:
    """Sequential little-endian decoder that reports failures with byte offsets."""

    def __init__(self, data: bytes) -> None:
        """Start reading at the beginning of ``data``.

        Args:
            data (bytes): Encoded input.
        """
        self._data = memoryview(data)
        self._offset = 0

    @property
    def offset(self) -> int:
        """int: Position of the next unread byte."""
        return self._offset

    def _take(self, size: int) -> memoryview:
        """Consume ``size`` bytes.

        Args:
            size (int): Number of bytes to consume.

        Returns:
            memoryview: The consumed bytes.

        Raises:
            PersistenceError: If fewer than ``size`` bytes remain.
        """
        end = self._offset + size
        if end > len(self._data):
            raise PersistenceError(
                f"Unexpected end of data: needed {size} bytes, {len(self._data) - self._offset} left",
                offset=self._offset,
            )
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def int32(self) -> int:
        """Read a signed 32-bit integer.

        Returns:
            int: The decoded value.
        """
        return _INT32.unpack(self._take(_INT32.size))[0]

    def length(self) -> int:
        """Read an int32 length prefix.

        Returns:
            int: The decoded length.

        Raises:
            PersistenceError: If the stored length is negative.
        """
        offset = self._offset
        value = self.int32()
        if value < 0:
            raise PersistenceError(f"Negative length {value}", offset=offset)
        return value

    def tag(self) -> NodeTag:
        """Read a one-byte node tag.

        Returns:
            NodeTag: The decoded tag.

        Raises:
            PersistenceError: If the byte is not a known tag.
        """
        offset = self._offset
        raw = _UINT8.unpack(self._take(_UINT8.size))[0]
        try:
            return NodeTag(raw)
        except ValueError as exc:
            raise PersistenceError(f"Unknown node tag {raw}", offset=offset) from exc

    def string(self) -> str:
        """Read a length-prefixed UTF-8 string.

        Returns:
            str: The decoded text.

        Raises:
            PersistenceError: If the bytes are not valid UTF-8.
        """
        offset = self._offset
        raw = self._take(self.length())
        try:
            return bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PersistenceError("Column name is not valid UTF-8", offset=offset) from exc

    def int_array(self) -> list[int]:
        """Read a length-prefixed int32 array.

        Returns:
            list[int]: The decoded values.
        """
        return [self.int32() for _ in range(self.length())]

    def finish(self) -> None:
        """Check that the whole input was consumed.

        Raises:
            PersistenceError: If unread bytes remain.
        """
        if self._offset != len(self._data):
            raise PersistenceError(f"{len(self._data) - self._offset} trailing bytes", offset=self._offset)


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------


def dump_table(table: Table) -> bytes:
    """Serialize a table.

    Args:
        table (Table): Table to encode.

    Returns:
        bytes: The encoded table.

    Raises:
        PersistenceError: If a value does not fit in int32.
    """
    writer = _Writer()
    writer.int32(table.get_total_row_count())
    writer.int32(table.column_count)
    for name in table.column_names:
        writer.string(name)
    writer.int32(table.column_count)
    for name in table.column_names:
        writer.string(name)
        writer.int_array(table.get_column(name))
    writer.int_array(table.duplicate_counts)
    return writer.getvalue()


def load_table(data: bytes, *, max_unique_rows: int = 0) -> Table:
    """Deserialize a table written by ``dump_table``.

    Args:
        data (bytes): Encoded table.
        max_unique_rows (int): Physical row cap of the returned table.

    Returns:
        Table: The decoded table, with its stored physical layout.

    Raises:
        PersistenceError: If the data is truncated, inconsistent, or breaks
            a table invariant.
    """
    reader = _Reader(data)
    total_rows = reader.int32()
    names = [reader.string() for _ in range(reader.length())]
    if len(set(names)) != len(names):
        raise PersistenceError(f"Duplicate column names {names}")

    columns: dict[str, list[int]] = {}
    for _ in range(reader.length()):
        name = reader.string()
        if name in columns:
            raise PersistenceError(f"Column '{name}' stored twice")
        columns[name] = reader.int_array()
    duplicates = reader.int_array()
    reader.finish()

    if set(columns) != set(names):
        raise PersistenceError(f"Column data {sorted(columns)} does not match column names {names}")
    try:
        table = Table.from_columns(
            {name: columns[name] for name in names},
            duplicates,
            total_rows=total_rows,
            max_unique_rows=max_unique_rows,
        )
    except ValueError as exc:
        raise PersistenceError(str(exc)) from exc
    if len(set(table.rows())) != table.get_table_row_count():
        raise PersistenceError("Stored table holds identical physical rows")
    return table


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


def dump_tree(tree: DecisionTree | None) -> bytes:
    """Serialize a tree; ``None`` is stored as an empty root container.

    Args:
        tree (DecisionTree | None): Tree to encode.

    Returns:
        bytes: The encoded tree.
    """
    writer = _Writer()
    if tree is None:
        writer.int32(0)
    else:
        writer.int32(1)
        _write_node(writer, tree, 0)
    return writer.getvalue()


def _write_node(writer: _Writer, tree: DecisionTree, slot: int) -> None:
    """Encode the subtree at ``slot`` in preorder.

    Args:
        writer (_Writer): Destination buffer.
        tree (DecisionTree): Tree being encoded.
        slot (int): Slot of the subtree root.
    """
    stack = [slot]
    while stack:
        match tree.nodes[stack.pop()]:
            case DecisionNode(column=column, states=states, children=children):
                writer.tag(NodeTag.DECISION)
                writer.int32(column)
                writer.int_array(states)
                writer.int32(len(children))
                stack.extend(reversed(children))
            case ActionNode(states=states, weights=weights):
                writer.tag(NodeTag.ACTION)
                writer.int_array(states)
                writer.int_array(weights)


def load_tree(data: bytes) -> DecisionTree | None:
    """Deserialize a tree written by ``dump_tree``.

    Args:
        data (bytes): Encoded tree.

    Returns:
        DecisionTree | None: The tree, or None for an empty container or a
            null root.

    Raises:
        PersistenceError: If the data is truncated, holds a table node or a
            null child, or describes an invalid tree.
    """
    reader = _Reader(data)
    count = reader.int32()
    if count == 0:
        reader.finish()
        return None
    if count != 1:
        raise PersistenceError(f"Root container must hold 0 or 1 nodes, got {count}", offset=0)

    try:
        nodes = _read_nodes(reader)
        reader.finish()
        if nodes is None:
            return None
        return DecisionTree(nodes=_breadth_first(nodes))  # type: ignore[arg-type]
    except PersistenceError:
        raise
    except ValueError as exc:
        raise PersistenceError(f"Stored tree is invalid: {exc}") from exc


def _read_nodes(reader: _Reader) -> list[DecisionNode | ActionNode] | None:
    """Decode a preorder node sequence into an arena in preorder slot order.

    Nesting is tracked on an explicit stack, so arbitrarily deep trees decode
    without recursion.

    Args:
        reader (_Reader): Reader positioned at the root tag.

    Returns:
        list[DecisionNode | ActionNode] | None: Nodes in preorder, or None for
            a null root.

    Raises:
        PersistenceError: On a null child, a table node, or truncated data.
    """
    nodes: list[DecisionNode | ActionNode | None] = []
    # Open decision nodes: slot, column, states, children read so far, children still expected.
    open_decisions: list[tuple[int, int, list[int], list[int], int]] = []
    while True:
        offset = reader.offset
        tag = reader.tag()
        if tag is NodeTag.NULL:
            if nodes:
                raise PersistenceError("Null child node", offset=offset)
            return None
        if tag is NodeTag.TABLE:
            raise PersistenceError("Table nodes belong to unfinished trees and cannot be loaded", offset=offset)

        slot = len(nodes)
        nodes.append(None)
        if open_decisions:
            open_decisions[-1][3].append(slot)

        if tag is NodeTag.ACTION:
            states = reader.int_array()
            nodes[slot] = ActionNode(states=states, weights=reader.int_array())
        else:
            column = reader.int32()
            states = reader.int_array()
            open_decisions.append((slot, column, states, [], reader.length()))

        while open_decisions and len(open_decisions[-1][3]) == open_decisions[-1][4]:
            done, column, states, children, _ = open_decisions.pop()
            nodes[done] = DecisionNode(column=column, states=states, children=children)
        if not open_decisions:
            return nodes  # type: ignore[return-value]


def _breadth_first(nodes: list[DecisionNode | ActionNode]) -> list[DecisionNode | ActionNode]:
    """Renumber a preorder arena into breadth-first slot order, the layout ``train`` produces."""
    order: list[int] = []
    queue: deque[int] = deque([0])
    while queue:
        slot = queue.popleft()
        order.append(slot)
        node = nodes[slot]
        if isinstance(node, DecisionNode):
            queue.extend(node.children)

    renumbered = {old: new for new, old in enumerate(order)}
    return [
        node.model_copy(update={"children": [renumbered[child] for child in node.children]})
        if isinstance(node, DecisionNode)
        else node
        for node in (nodes[old] for old in order)
    ]


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def table_path(folder: str | Path, name: str) -> Path:
    """Return the file a table named ``name`` is stored in."""
    return Path(folder) / f"{name}{TABLE_SUFFIX}"


def tree_path(folder: str | Path, name: str) -> Path:
    """Return the file a tree named ``name`` is stored in."""
    return Path(folder) / f"{name}{TREE_SUFFIX}"


def save_table(table: Table, folder: str | Path, name: str) -> Path:
    """Write ``table`` to ``<folder>/<name>.dat``, creating ``folder`` if needed.

    Returns:
        Path: The written file.
    """
    path = table_path(folder, name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(dump_table(table))
    logger.debug("Table saved", path=str(path), physical_rows=table.get_table_row_count())
    return path


def read_table(folder: str | Path, name: str, *, max_unique_rows: int = 0) -> Table:
    """Read the table stored in ``<folder>/<name>.dat``.

    Raises:
        FileNotFoundError: If the file does not exist.
        PersistenceError: If the file is malformed.
    """
    path = table_path(folder, name)
    table = load_table(path.read_bytes(), max_unique_rows=max_unique_rows)
    logger.debug("Table loaded", path=str(path), physical_rows=table.get_table_row_count())
    return table


def save_tree(tree: DecisionTree | None, folder: str | Path, name: str) -> Path:
    """Write ``tree`` to ``<folder>/<name>.tree``, creating ``folder`` if needed.

    Returns:
        Path: The written file.
    """
    path = tree_path(folder, name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(dump_tree(tree))
    logger.debug("Tree saved", path=str(path), node_count=tree.node_count if tree else 0)
    return path


def read_tree(folder: str | Path, name: str) -> DecisionTree | None:
    """Read the tree stored in ``<folder>/<name>.tree``.

    Raises:
        FileNotFoundError: If the file does not exist.
        PersistenceError: If the file is malformed.
    """
    path = tree_path(folder, name)
    tree = load_tree(path.read_bytes())
    logger.debug("Tree loaded", path=str(path), node_count=tree.node_count if tree else 0)
    return tree
