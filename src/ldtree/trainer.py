"""Breadth-first ID3 tree construction.

The trainer seeds an arena with one ``TableNode`` holding the whole training
table and explodes queued slots until none are left. Exploding a slot either
turns it into an ``ActionNode`` (the action column is pure, no feature column
is left, or no split gains information) or into a ``DecisionNode`` whose
children are new ``TableNode`` slots, one per state of the best column, each
holding the rows with that state minus the split column. Every split consumes
a feature column, so the depth of the tree never exceeds the feature count.

Examples:
    >>> table = Table()
    >>> for name in ("a", "b", "action"):
    ...     _ = table.add_column(name)
    >>> _ = table.add_row([0, 0, 0], count=2)
    >>> for row in ([0, 1, 1], [1, 0, 1], [1, 1, 0]):
    ...     _ = table.add_row(row)
    >>> tree = train(table)
    >>> tree.depth, tree.leaf_count
    (2, 4)
"""

from __future__ import annotations

from collections import deque

from loguru import logger

from ldtree.entropy import NO_SPLIT, column_entropy, index_best_info_gain_column
from ldtree.exceptions import InsufficientSchemaError
from ldtree.nodes import ActionNode, BuildNode, DecisionNode, DecisionTree, TableNode
from ldtree.table import Table

MIN_COLUMNS = 2
"""At least one feature column plus the action column."""


def train(table: Table) -> DecisionTree:
    """Build a decision tree from ``table``.

    The table is only read, never modified, so callers training off-thread
    should pass a snapshot (``Table.copy()``).

    Args:
        table (Table): Training data; its last column is the action column.

    Returns:
        DecisionTree: The finished tree. A table without rows yields a single
            empty ``ActionNode``, which evaluates to no action.

    Raises:
        InsufficientSchemaError: If the table has fewer than two columns.
        IncompleteTreeError: If a slot was left unexploded.
    """
    if table.column_count < MIN_COLUMNS:
        raise InsufficientSchemaError(list(table.column_names))

    arena: list[BuildNode] = [TableNode(table)]
    queue: deque[int] = deque([0])
    while queue:
        slot = queue.popleft()
        queue.extend(_explode(arena, slot))

    tree = DecisionTree.from_arena(arena)
    logger.debug(
        "Tree built",
        node_count=tree.node_count,
        leaf_count=tree.leaf_count,
        depth=tree.depth,
    )
    return tree


def _explode(arena: list[BuildNode], slot: int) -> list[int]:
    """Replace the table node at ``slot`` with its final node.

    Args:
        arena (list[BuildNode]): Arena under construction; grows by one slot
            per child created.
        slot (int): Slot holding the ``TableNode`` to explode.

    Returns:
        list[int]: Slots of the new child table nodes, in state order.
    """
    node = arena[slot]
    if not isinstance(node, TableNode):
        raise TypeError(f"Slot {slot} holds {type(node).__name__}, expected TableNode")
    table = node.table

    if table.feature_count == 0 or column_entropy(table, table.action_index) == 0.0:
        arena[slot] = _leaf(table, slot, reason="pure or exhausted")
        return []

    column = index_best_info_gain_column(table)
    if column == NO_SPLIT:
        arena[slot] = _leaf(table, slot, reason="no informative column")
        return []

    states = table.get_column_states(column)
    children: list[int] = []
    for state in states:
        children.append(len(arena))
        arena.append(TableNode(table.filter_table_by_state(column, state)))

    arena[slot] = DecisionNode(column=column, states=states, children=children)
    logger.debug(
        "Split created",
        slot=slot,
        column=table.get_column_name(column),
        position=column,
        states=states,
        children=children,
    )
    return children


def _leaf(table: Table, slot: int, *, reason: str) -> ActionNode:
    """Summarise the action column of ``table`` as a weighted leaf.

    Args:
        table (Table): Rows that reached the leaf.
        slot (int): Arena slot the leaf will occupy.
        reason (str): Why the slot was not split.

    Returns:
        ActionNode: Each observed action with its duplicate-weighted count.
    """
    action = table.action_index
    states = table.get_column_states(action)
    weights = [table.get_state_count(action, state) for state in states]
    logger.debug("Leaf created", slot=slot, reason=reason, actions=states, weights=weights)
    return ActionNode(states=states, weights=weights)
