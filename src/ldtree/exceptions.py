"""Custom exceptions for ldtree.

Column validation exceptions (subclass ValueError), raised by the Polars
interop helpers:
- ColumnsNotFoundError: Requested columns do not exist.
- DuplicateColumnsError: A column list names the same column twice.

Training exceptions (subclass TrainingError):
- InsufficientSchemaError: The table cannot describe both a feature and an action.
- IncompleteTreeError: Construction finished with a table node still in the arena.

Persistence exceptions:
- PersistenceError: Binary table or tree data is malformed or inconsistent.

The owner facade (``LearningDecisionTree``) never lets these escape from its
training and evaluation calls; it converts them into ``TreeError`` values.
"""

from __future__ import annotations


class ColumnsNotFoundError(ValueError):
    """Raised when requested columns do not exist in a table or DataFrame.

    Attributes:
        missing_columns (list[str]): Column names that were not found.
        available_columns (list[str]): Column names that are present.

    Examples:
        >>> err = ColumnsNotFoundError(missing_columns=["x"], available_columns=["a", "action"])
        >>> err.missing_columns
        ['x']
    """

    missing_columns: list[str]
    available_columns: list[str]

    def __init__(
        self,
        missing_columns: list[str],
        available_columns: list[str],
    ) -> None:
        """Initialize ColumnsNotFoundError.

        Args:
            missing_columns (list[str]): Column names that were not found.
            available_columns (list[str]): Column names that are present.
        """
        super().__init__(f"Columns not found: {sorted(missing_columns)}")
        self.missing_columns = missing_columns
        self.available_columns = available_columns


class DuplicateColumnsError(ValueError):
    """Raised when the same column name is given more than once.

    Attributes:
        columns (list[str]): The column list that contains duplicates.
        duplicate_columns (list[str]): Each repeated name, listed once.

    Examples:
        >>> err = DuplicateColumnsError(columns=["a", "a", "b"])
        >>> err.duplicate_columns
        ['a']
    """

    columns: list[str]
    duplicate_columns: list[str]

    def __init__(self, columns: list[str]) -> None:
        """Initialize DuplicateColumnsError.

        Args:
            columns (list[str]): The column list containing duplicates.
        """
        super().__init__("Duplicate column names are not allowed")
        self.columns = columns
        seen: set[str] = set()
        self.duplicate_columns = []
        for col in columns:
            if col in seen and col not in self.duplicate_columns:
                self.duplicate_columns.append(col)
            seen.add(col)


class TrainingError(Exception):
    """Base class for errors raised while building a decision tree."""


class InsufficientSchemaError(TrainingError):
    """Raised when a table has fewer than two columns.

    At least one feature column and the trailing action column are needed to
    train.

    Attributes:
        column_names (list[str]): Columns of the rejected table.
    """

    column_names: list[str]

    def __init__(self, column_names: list[str]) -> None:
        """Initialize InsufficientSchemaError.

        Args:
            column_names (list[str]): Columns of the rejected table.
        """
        super().__init__(
            f"Training needs at least one feature column and an action column, got columns {column_names}"
        )
        self.column_names = column_names


class IncompleteTreeError(TrainingError):
    """Raised when a node arena still holds a table node after construction.

    Attributes:
        slots (list[int]): Arena slots that were never exploded.
    """

    slots: list[int]

    def __init__(self, slots: list[int]) -> None:
        """Initialize IncompleteTreeError.

        Args:
            slots (list[int]): Arena slots that still hold table nodes.
        """
        super().__init__(f"Tree construction stopped with unexploded table nodes in slots {slots}")
        self.slots = slots


class PersistenceError(ValueError):
    """Raised when binary table or tree data cannot be decoded.

    Attributes:
        offset (int | None): Byte offset where decoding failed, when known.
    """

    offset: int | None

    def __init__(self, message: str, *, offset: int | None = None) -> None:
        """Initialize PersistenceError.

        Args:
            message (str): Description of the problem.
            offset (int | None): Byte offset where decoding failed, when known.
        """
        super().__init__(message if offset is None else f"{message} (at byte {offset})")
        self.offset = offset

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message and offset.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, offset={self.offset!r})"
