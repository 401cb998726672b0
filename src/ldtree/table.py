"""Column-oriented training table with duplicate-row compaction.

A ``Table`` stores integer-coded categorical columns. The last declared column
is the action (label) column; every other column is a feature. Identical rows
are never stored twice: adding a row that matches an existing physical row
bumps that row's duplicate count, so one physical row can stand for many
logical samples. All frequency queries (state counts, probabilities) are
weighted by these duplicate counts.

Examples:
    >>> table = Table()
    >>> table.add_column("enemy_near")
    True
    >>> table.add_column("action")
    True
    >>> for _ in range(3):
    ...     _ = table.add_row([1, 5])
    >>> table.get_table_row_count(), table.get_total_row_count(), table.get_duplicate_count(0)
    (1, 3, 3)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from numbers import Integral
from typing import Self, TypeAlias

import polars as pl
from loguru import logger

from ldtree.exceptions import ColumnsNotFoundError, DuplicateColumnsError
from ldtree.polars_utils import to_markdown_table

ColumnKey: TypeAlias = str | int


def is_integer_row(values: Sequence[object]) -> bool:
    """Return True if every value is an integer (numpy integers included).

    Floats are rejected even when integral-valued, and so are numeric strings.

    Args:
        values (Sequence[object]): Candidate row values.

    Returns:
        bool: True if every value is an ``Integral`` other than ``bool``.
    """
    return all(isinstance(value, Integral) and not isinstance(value, bool) for value in values)


class Table:
    """Frequency-compressed categorical dataset.

    Columns can be addressed by name or by position (0-based, over all
    columns including the trailing action column).

    Invariants:
        - every column holds one value per physical row, and the duplicate
          count list has the same length;
        - ``get_total_row_count()`` equals the sum of the duplicate counts;
        - no two physical rows are equal after ``add_row`` or ``refresh_table``.
    """

    def __init__(self, *, max_unique_rows: int = 0) -> None:
        """Create an empty table.

        Args:
            max_unique_rows (int): Cap on physical rows. When a new distinct
                row would exceed it, the oldest physical row is evicted first.
                0 disables the cap. Defaults to 0.

        Raises:
            ValueError: If ``max_unique_rows`` is negative.
        """
        if max_unique_rows < 0:
            raise ValueError(f"max_unique_rows must be >= 0, got {max_unique_rows}")
        self.max_unique_rows = max_unique_rows
        self._data: dict[str, list[int]] = {}
        self._column_names: list[str] = []
        self._duplicates: list[int] = []
        self._total_rows = 0

    @classmethod
    def from_columns(
        cls,
        columns: Mapping[str, Sequence[int]],
        duplicate_counts: Sequence[int],
        *,
        total_rows: int | None = None,
        max_unique_rows: int = 0,
    ) -> Self:
        """Build a table directly from stored column arrays.

        Rows are taken as given; no compaction pass is applied, so a stored
        table comes back with exactly its saved physical layout.

        Args:
            columns (Mapping[str, Sequence[int]]): Column name to values, in
                declaration order (action column last).
            duplicate_counts (Sequence[int]): Duplicate count per physical row.
            total_rows (int | None): Expected logical row count. Checked
                against the sum of ``duplicate_counts`` when given.
            max_unique_rows (int): Physical row cap for later additions.

        Returns:
            Self: The reconstructed table.

        Raises:
            ValueError: If column lengths disagree with ``duplicate_counts``,
                a duplicate count is below 1, or ``total_rows`` does not match.
        """
        row_count = len(duplicate_counts)
        for name, values in columns.items():
            if len(values) != row_count:
                raise ValueError(
                    f"Column '{name}' has {len(values)} values but there are {row_count} duplicate counts"
                )
        if any(count < 1 for count in duplicate_counts):
            raise ValueError("Duplicate counts must all be at least 1")
        count_sum = sum(duplicate_counts)
        if total_rows is not None and total_rows != count_sum:
            raise ValueError(f"total_rows is {total_rows} but duplicate counts sum to {count_sum}")

        table = cls(max_unique_rows=max_unique_rows)
        table._column_names = list(columns)
        table._data = {name: [int(value) for value in values] for name, values in columns.items()}
        table._duplicates = [int(count) for count in duplicate_counts]
        table._total_rows = count_sum
        return table

    @classmethod
    def from_polars(
        cls,
        dataframe: pl.DataFrame,
        *,
        count_column: str | None = None,
        max_unique_rows: int = 0,
    ) -> Self:
        """Load a table from a Polars DataFrame of integer codes.

        Frame columns become table columns in frame order, so the frame's last
        value column is the action column. Every frame row goes through
        ``add_row``, which compacts duplicates and applies the row cap.

        Args:
            dataframe (pl.DataFrame): Integer-coded observations.
            count_column (str | None): Optional column holding how many
                samples each frame row stands for. It is not stored as a
                table column.
            max_unique_rows (int): Physical row cap of the new table.

        Returns:
            Self: The loaded table.

        Raises:
            ColumnsNotFoundError: If ``count_column`` is not in the frame.
            ValueError: If a count is below 1 or a row is not integer-coded.

        Examples:
            >>> df = pl.DataFrame({"armed": [0, 0, 1], "action": [2, 2, 3]})
            >>> table = Table.from_polars(df)
            >>> table.get_table_row_count(), table.get_total_row_count()
            (2, 3)
        """
        if count_column is not None and count_column not in dataframe.columns:
            raise ColumnsNotFoundError(missing_columns=[count_column], available_columns=dataframe.columns)

        value_columns = [name for name in dataframe.columns if name != count_column]
        table = cls(max_unique_rows=max_unique_rows)
        for name in value_columns:
            table.add_column(name)

        counts = dataframe[count_column].to_list() if count_column is not None else [1] * dataframe.height
        for row, count in zip(dataframe.select(value_columns).iter_rows(), counts, strict=True):
            if count is None or count < 1:
                raise ValueError(f"Row counts must be at least 1, got {count!r} for row {row}")
            if not table.add_row(row, count=count):
                raise ValueError(f"Row {row} must hold one integer per column")
        return table

    def __eq__(self, other: object) -> bool:
        """Compare schema, data, duplicate counts and logical row count.

        The row cap is a policy setting, not data, and is ignored.

        Args:
            other (object): Object to compare against.

        Returns:
            bool: True if both tables hold the same data in the same layout.
        """
        if not isinstance(other, Table):
            return NotImplemented
        return (
            self._column_names == other._column_names
            and self._data == other._data
            and self._duplicates == other._duplicates
            and self._total_rows == other._total_rows
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        """Return repr(self).

        Returns:
            str: Column names and row counts.
        """
        return (
            f"Table(columns={self._column_names!r}, physical_rows={len(self._duplicates)}, "
            f"total_rows={self._total_rows})"
        )

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    @property
    def column_names(self) -> tuple[str, ...]:
        """tuple[str, ...]: Column names in declaration order, action column last."""
        return tuple(self._column_names)

    @property
    def column_count(self) -> int:
        """int: Number of declared columns, action column included."""
        return len(self._column_names)

    @property
    def feature_count(self) -> int:
        """int: Number of feature columns (all but the action column)."""
        return max(0, len(self._column_names) - 1)

    @property
    def feature_columns(self) -> tuple[str, ...]:
        """tuple[str, ...]: Feature column names in declaration order."""
        return tuple(self._column_names[:-1])

    @property
    def action_column(self) -> str | None:
        """str | None: Name of the action column, or None for a table without columns."""
        return self._column_names[-1] if self._column_names else None

    @property
    def action_index(self) -> int:
        """int: Position of the action column, or -1 for a table without columns."""
        return len(self._column_names) - 1

    def get_column_name(self, index: int) -> str | None:
        """Return the name of the column at ``index``.

        Args:
            index (int): Column position.

        Returns:
            str | None: The column name, or None (with a warning) if out of range.
        """
        if 0 <= index < len(self._column_names):
            return self._column_names[index]
        logger.warning("Invalid column index", index=index, column_count=len(self._column_names))
        return None

    def add_column(self, name: str) -> bool:
        """Append a new, empty column.

        Columns must be declared before rows are added; the column added last
        is treated as the action column.

        Args:
            name (str): Unique column name.

        Returns:
            bool: False if the name already exists or the table already holds
                rows, True otherwise.
        """
        if name in self._data:
            logger.warning("Column rejected: name already present", column=name)
            return False
        if self._duplicates:
            logger.warning(
                "Column rejected: columns must be declared before rows",
                column=name,
                physical_rows=len(self._duplicates),
            )
            return False
        self._data[name] = []
        self._column_names.append(name)
        return True

    def remove_column(self, column: ColumnKey) -> bool:
        """Remove a column and merge the rows that become identical.

        Args:
            column (ColumnKey): Column name or position.

        Returns:
            bool: False if the column does not exist.
        """
        name = self._resolve(column)
        if name is None:
            logger.warning("Column removal failed: unknown column", column=column)
            return False
        del self._data[name]
        self._column_names.remove(name)
        self.refresh_table()
        return True

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    def get_table_row_count(self) -> int:
        """Return the number of physical (deduplicated) rows.

        Returns:
            int: Physical row count.
        """
        return len(self._duplicates)

    def get_total_row_count(self) -> int:
        """Return the number of logical samples, duplicates included.

        Returns:
            int: Sum of all duplicate counts.
        """
        return self._total_rows

    def get_duplicate_count(self, index: int) -> int:
        """Return how many samples the physical row at ``index`` stands for.

        Args:
            index (int): Physical row index.

        Returns:
            int: The duplicate count, or 0 if ``index`` is out of range.
        """
        if 0 <= index < len(self._duplicates):
            return self._duplicates[index]
        return 0

    @property
    def duplicate_counts(self) -> tuple[int, ...]:
        """tuple[int, ...]: Duplicate count of every physical row."""
        return tuple(self._duplicates)

    def get_column(self, column: ColumnKey) -> list[int]:
        """Return a copy of a column's values, one per physical row.

        Args:
            column (ColumnKey): Column name or position.

        Returns:
            list[int]: The values, or an empty list for an unknown column.
        """
        name = self._resolve(column)
        return list(self._data[name]) if name is not None else []

    def rows(self) -> list[tuple[int, ...]]:
        """Return every physical row as a tuple in column order.

        Returns:
            list[tuple[int, ...]]: One tuple per physical row.
        """
        columns = [self._data[name] for name in self._column_names]
        return [tuple(values[row] for values in columns) for row in range(len(self._duplicates))]

    def add_row(self, values: Sequence[int], *, count: int = 1) -> bool:
        """Add a sample, merging it into an identical physical row if one exists.

        Args:
            values (Sequence[int]): One value per column, action value last.
            count (int): Number of identical samples this call records.
                Defaults to 1.

        Returns:
            bool: False if the length does not match the column count
                or a value is not an integer.

        Raises:
            ValueError: If ``count`` is below 1.
        """
        if count < 1:
            raise ValueError(f"count must be at least 1, got {count}")
        if not self._column_names or len(values) != len(self._column_names):
            logger.warning(
                "Row rejected: value count does not match column count",
                expected=len(self._column_names),
                got=len(values),
            )
            return False
        if not is_integer_row(values):
            logger.warning("Row rejected: values must be integers", values=[repr(value) for value in values])
            return False

        row = tuple(int(value) for value in values)
        match_index = self._find_row(row)
        if match_index is not None:
            self._duplicates[match_index] += count
        else:
            if self.max_unique_rows and len(self._duplicates) >= self.max_unique_rows:
                logger.debug(
                    "Row cap reached, evicting oldest physical row",
                    max_unique_rows=self.max_unique_rows,
                    evicted_duplicates=self._duplicates[0],
                )
                self.remove_row(0)
            for name, value in zip(self._column_names, row, strict=True):
                self._data[name].append(value)
            self._duplicates.append(count)

        self._total_rows += count
        return True

    def remove_row(self, index: int) -> bool:
        """Remove a physical row together with all the samples it stands for.

        Args:
            index (int): Physical row index.

        Returns:
            bool: False if ``index`` is out of range.
        """
        if not 0 <= index < len(self._duplicates):
            logger.warning("Row removal failed: index out of range", index=index, physical_rows=len(self._duplicates))
            return False
        self._total_rows -= self._duplicates.pop(index)
        for name in self._column_names:
            del self._data[name][index]
        return True

    def refresh_table(self) -> None:
        """Merge physical rows that have become identical.

        The first occurrence of each distinct row keeps its position and
        absorbs the duplicate counts of the later ones. A table without
        columns holds no rows.
        """
        if not self._column_names:
            if self._duplicates:
                logger.debug("Last column removed, clearing rows", physical_rows=len(self._duplicates))
            self._duplicates = []
            self._total_rows = 0
            return

        merged: dict[tuple[int, ...], int] = {}
        for row, duplicates in zip(self.rows(), self._duplicates, strict=True):
            merged[row] = merged.get(row, 0) + duplicates
        if len(merged) == len(self._duplicates):
            return

        logger.debug("Merged duplicate rows", before=len(self._duplicates), after=len(merged))
        for position, name in enumerate(self._column_names):
            self._data[name] = [row[position] for row in merged]
        self._duplicates = list(merged.values())
        self._total_rows = sum(self._duplicates)

    # -------------------------------------------------------------------------
    # Frequency queries
    # -------------------------------------------------------------------------

    def get_column_states(self, column: ColumnKey) -> list[int]:
        """Return the distinct values of a column in first-seen order.

        Args:
            column (ColumnKey): Column name or position.

        Returns:
            list[int]: Distinct states, or an empty list for an unknown column.
        """
        name = self._resolve(column)
        if name is None:
            return []
        return list(dict.fromkeys(self._data[name]))

    def get_number_of_states(self, column: ColumnKey) -> int:
        """Return how many distinct values a column holds.

        Args:
            column (ColumnKey): Column name or position.

        Returns:
            int: Number of distinct states.
        """
        return len(self.get_column_states(column))

    def get_state_count(self, column: ColumnKey, state: int) -> int:
        """Return how many logical samples have ``column == state``.

        Args:
            column (ColumnKey): Column name or position.
            state (int): The value to count.

        Returns:
            int: Sum of duplicate counts over matching physical rows.
        """
        name = self._resolve(column)
        if name is None:
            return 0
        return sum(
            duplicates for value, duplicates in zip(self._data[name], self._duplicates, strict=True) if value == state
        )

    def individual_state_probability(self, column: ColumnKey, state: int) -> float:
        """Return the weighted frequency of ``state`` in ``column``.

        Args:
            column (ColumnKey): Column name or position.
            state (int): The value whose probability is wanted.

        Returns:
            float: ``get_state_count / total rows``; 0.0 for an empty table.
        """
        if self._total_rows == 0:
            return 0.0
        return self.get_state_count(column, state) / self._total_rows

    def filter_table_by_state(self, column: ColumnKey, state: int) -> Table:
        """Return the sub-table of rows where ``column == state``, without ``column``.

        The filtered column carries no information any more and is dropped;
        rows that become identical are merged.

        Args:
            column (ColumnKey): Column name or position to filter on.
            state (int): The value rows must hold.

        Returns:
            Table: A new table; an empty one if the column is unknown.
        """
        name = self._resolve(column)
        if name is None:
            logger.error("Filter failed: unknown column", column=column)
            return Table()

        keep = [row for row, value in enumerate(self._data[name]) if value == state]
        filtered = Table.from_columns(
            {
                other: [self._data[other][row] for row in keep]
                for other in self._column_names
                if other != name
            },
            [self._duplicates[row] for row in keep],
        )
        filtered.refresh_table()
        return filtered

    # -------------------------------------------------------------------------
    # Copy, export and debugging
    # -------------------------------------------------------------------------

    def copy(self) -> Table:
        """Return an independent deep copy of the table.

        Returns:
            Table: Snapshot sharing no mutable state with this table.
        """
        snapshot = Table(max_unique_rows=self.max_unique_rows)
        snapshot._column_names = list(self._column_names)
        snapshot._data = {name: list(values) for name, values in self._data.items()}
        snapshot._duplicates = list(self._duplicates)
        snapshot._total_rows = self._total_rows
        return snapshot

    def to_polars(self, *, count_column: str = "count") -> pl.DataFrame:
        """Export the physical rows as a Polars DataFrame.

        Args:
            count_column (str): Name of the extra column holding duplicate
                counts. Defaults to "count".

        Returns:
            pl.DataFrame: One column per table column plus ``count_column``.

        Raises:
            DuplicateColumnsError: If ``count_column`` collides with a table column.
        """
        if count_column in self._data:
            raise DuplicateColumnsError(columns=[*self._column_names, count_column])
        return pl.DataFrame(
            [pl.Series(name, self._data[name], dtype=pl.Int64) for name in self._column_names]
            + [pl.Series(count_column, self._duplicates, dtype=pl.Int64)]
        )

    def debug_table(self) -> str:
        """Log the table contents at DEBUG level and return them.

        Returns:
            str: Markdown rendering of the rows and their duplicate counts.
        """
        if not self._column_names:
            rendered = "(table has no columns)"
        else:
            count_column = "duplicates"
            while count_column in self._data:
                count_column = f"_{count_column}"
            frame = self.to_polars(count_column=count_column)
            rendered = to_markdown_table(frame, num_rows=max(1, frame.height))
        logger.debug(
            "Table contents\n{rendered}",
            rendered=rendered,
            physical_rows=len(self._duplicates),
            total_rows=self._total_rows,
        )
        return rendered

    def _resolve(self, column: ColumnKey) -> str | None:
        """Map a column name or position to a column name.

        Args:
            column (ColumnKey): Column name or position.

        Returns:
            str | None: The column name, or None if it does not exist.
        """
        if isinstance(column, str):
            return column if column in self._data else None
        if 0 <= column < len(self._column_names):
            return self._column_names[column]
        return None

    def _find_row(self, row: tuple[int, ...]) -> int | None:
        """Find the physical row equal to ``row`` across all columns.

        Args:
            row (tuple[int, ...]): Candidate row in column order.

        Returns:
            int | None: Index of the matching physical row, if any.
        """
        columns = [self._data[name] for name in self._column_names]
        for index in range(len(self._duplicates)):
            if all(values[index] == value for values, value in zip(columns, row, strict=True)):
                return index
        return None
