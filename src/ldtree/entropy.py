"""Shannon entropy and information gain over duplicate-weighted tables.

All probabilities are computed from duplicate counts, not physical rows, so a
compacted table scores exactly like the expanded sample list it represents.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Final

from ldtree.table import ColumnKey, Table

NO_SPLIT: Final[int] = -1
"""Returned by ``index_best_info_gain_column`` when no column has positive gain."""

_GAIN_EPSILON: Final[float] = 1e-12  # Gains at or below this are round-off, not information.


def column_entropy(table: Table, column: ColumnKey) -> float:
    """Entropy (base 2) of a column's weighted state distribution.

    Args:
        table (Table): Table holding the column.
        column (ColumnKey): Column name or position.

    Returns:
        float: ``-sum(p * log2(p))`` over the column's states; 0.0 for a pure
            column, an unknown column, or an empty table.

    Examples:
        >>> table = Table()
        >>> _ = table.add_column("action")
        >>> _ = table.add_row([0])
        >>> _ = table.add_row([1])
        >>> column_entropy(table, "action")
        1.0
    """
    entropy = 0.0
    for state in table.get_column_states(column):
        probability = table.individual_state_probability(column, state)
        if probability > 0.0:
            entropy -= probability * math.log2(probability)
    return max(entropy, 0.0)


def array_entropy(occurrences: Sequence[int], total: int) -> float:
    """Entropy (base 2) of a vector of state counts.

    Args:
        occurrences (Sequence[int]): Count per state.
        total (int): Sum the counts are normalised by.

    Returns:
        float: The entropy, or 0.0 when ``total`` is not positive.
    """
    if total <= 0:
        return 0.0
    entropy = 0.0
    for count in occurrences:
        probability = count / total
        if probability > 0.0:
            entropy -= probability * math.log2(probability)
    return max(entropy, 0.0)


def info_gain(table: Table, column: ColumnKey) -> float:
    """Reduction in action-column entropy from splitting on ``column``.

    The conditional action distribution for each state ``s`` of ``column`` is
    built by summing duplicate counts of the rows where ``column == s``.

    Args:
        table (Table): Training table; its last column is the action column.
        column (ColumnKey): Feature column name or position.

    Returns:
        float: ``H(action) - sum_s P(column = s) * H(action | column = s)``.
    """
    action_index = table.action_index
    if action_index < 0:
        return 0.0

    gain = column_entropy(table, action_index)
    action_states = table.get_column_states(action_index)
    action_position = {state: position for position, state in enumerate(action_states)}

    feature_values = table.get_column(column)
    action_values = table.get_column(action_index)
    duplicates = table.duplicate_counts

    for state in table.get_column_states(column):
        action_counts = [0] * len(action_states)
        for value, action, count in zip(feature_values, action_values, duplicates, strict=True):
            if value == state:
                action_counts[action_position[action]] += count
        gain -= table.individual_state_probability(column, state) * array_entropy(
            action_counts, table.get_state_count(column, state)
        )
    return gain


def index_best_info_gain_column(table: Table) -> int:
    """Return the feature column whose split gains the most information.

    Feature columns are scanned in declaration order and a column only
    replaces the current best if its gain is strictly greater, so the first
    of several equally good columns wins.

    Args:
        table (Table): Training table; its last column is the action column.

    Returns:
        int: Position of the winning feature column, or ``NO_SPLIT`` if no
            column has a strictly positive gain.

    Examples:
        >>> table = Table()
        >>> for name in ("noise", "signal", "action"):
        ...     _ = table.add_column(name)
        >>> for row in ([0, 0, 0], [0, 1, 1], [1, 0, 0], [1, 1, 1]):
        ...     _ = table.add_row(row)
        >>> index_best_info_gain_column(table)
        1
    """
    best_gain = _GAIN_EPSILON
    best_column = NO_SPLIT
    for column in range(table.feature_count):
        gain = info_gain(table, column)
        if gain > best_gain:
            best_gain = gain
            best_column = column
    return best_column
