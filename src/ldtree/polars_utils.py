"""Utility functions for rendering Polars DataFrames."""

from __future__ import annotations

import polars as pl


def to_markdown_table(df: pl.DataFrame, num_rows: int = 10) -> str:
    """Convert a Polars DataFrame to a markdown table string.

    This temporarily changes the global ``pl.Config`` and is therefore not
    thread-safe; call it from one thread at a time.

    Args:
        df (pl.DataFrame): The DataFrame to convert.
        num_rows (int): Maximum number of rows to display. Defaults to 10.

    Returns:
        str: Markdown-formatted table string.

    Raises:
        ValueError: If ``num_rows`` is below 1.

    Examples:
        >>> df = pl.DataFrame({"a": [1, 2, 3], "b": [4, 5, 6]})
        >>> print(to_markdown_table(df, num_rows=3))
        | a | b |
        |---|---|
        | 1 | 4 |
        | 2 | 5 |
        | 3 | 6 |
    """
    if num_rows < 1:
        raise ValueError(f"num_rows must be at least 1, got {num_rows}")

    with pl.Config(
        tbl_formatting="MARKDOWN",
        tbl_hide_column_data_types=True,
        tbl_hide_column_names=False,
        tbl_hide_dataframe_shape=True,
        tbl_rows=num_rows,
        tbl_cols=df.width,
    ):
        return str(df)
