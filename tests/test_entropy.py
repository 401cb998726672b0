"""Tests for entropy, information gain and best-column selection."""

from __future__ import annotations

import math

import pytest
from pytest_check import check

from ldtree.entropy import NO_SPLIT, array_entropy, column_entropy, index_best_info_gain_column, info_gain
from ldtree.table import Table


def _make_table(columns: list[str], rows: list[tuple[list[int], int]]) -> Table:
    """Build a table from (row, count) pairs.

    Args:
        columns (list[str]): Column names, action column last.
        rows (list[tuple[list[int], int]]): Each row with its sample count.

    Returns:
        Table: The populated table.
    """
    table = Table()
    for name in columns:
        table.add_column(name)
    for values, count in rows:
        table.add_row(values, count=count)
    return table


class TestColumnEntropy:
    """Tests for column_entropy."""

    @pytest.mark.parametrize(
        ("rows", "expected"),
        [
            ([([0], 5)], 0.0),
            ([([0], 1), ([1], 1)], 1.0),
            ([([0], 1), ([1], 1), ([2], 1), ([3], 1)], 2.0),
            ([([0], 3), ([1], 1)], -(0.75 * math.log2(0.75) + 0.25 * math.log2(0.25))),
        ],
        ids=["pure", "fair_coin", "four_uniform", "weighted"],
    )
    def test_known_values(self, rows: list[tuple[list[int], int]], expected: float) -> None:
        """Verify entropy matches hand-computed values, weighted by duplicates.

        Args:
            rows (list[tuple[list[int], int]]): Action-only rows with counts.
            expected (float): Expected entropy in bits.
        """
        table = _make_table(["action"], rows)

        with check:
            assert column_entropy(table, "action") == pytest.approx(expected)

    def test_entropy_is_never_negative(self) -> None:
        """Verify entropy stays non-negative across many weight combinations."""
        for first in range(1, 6):
            for second in range(1, 6):
                table = _make_table(["action"], [([0], first), ([1], second)])
                with check:
                    assert column_entropy(table, 0) >= 0.0

    def test_empty_table_has_zero_entropy(self) -> None:
        """Verify an empty column has zero entropy."""
        table = _make_table(["a", "action"], [])

        with check:
            assert column_entropy(table, "action") == 0.0


class TestArrayEntropy:
    """Tests for array_entropy."""

    def test_zero_total_is_zero(self) -> None:
        """Verify a zero total yields 0 rather than dividing by zero."""
        with check:
            assert array_entropy([0, 0], 0) == 0.0

    def test_uniform_counts(self) -> None:
        """Verify two equal counts give one bit."""
        with check:
            assert array_entropy([3, 3], 6) == pytest.approx(1.0)

    def test_zero_counts_are_skipped(self) -> None:
        """Verify zero entries contribute nothing."""
        with check:
            assert array_entropy([4, 0, 0], 4) == 0.0


class TestInfoGain:
    """Tests for info_gain."""

    def test_perfect_predictor_gains_full_entropy(self) -> None:
        """Verify a column that determines the action gains all action entropy."""
        table = _make_table(["signal", "action"], [([0, 0], 1), ([1, 1], 1)])

        with check:
            assert info_gain(table, "signal") == pytest.approx(1.0)

    def test_independent_column_gains_nothing(self) -> None:
        """Verify a column independent of the action gains zero."""
        table = _make_table(
            ["noise", "action"],
            [([0, 0], 1), ([0, 1], 1), ([1, 0], 1), ([1, 1], 1)],
        )

        with check:
            assert info_gain(table, "noise") == pytest.approx(0.0, abs=1e-12)

    def test_gain_uses_duplicate_weights(self) -> None:
        """Verify the conditional distribution is weighted by duplicate counts.

        Given: Feature state 0 maps to action 0 nine times and action 1 once
        When: Computing the gain of the feature
        Then: The result matches the weighted formula, not the physical-row one
        """
        # Arrange
        table = _make_table(
            ["f", "action"],
            [([0, 0], 9), ([0, 1], 1), ([1, 1], 10)],
        )
        action_entropy = column_entropy(table, "action")
        conditional = 0.5 * array_entropy([9, 1], 10) + 0.5 * 0.0

        # Act
        gain = info_gain(table, "f")

        # Assert
        with check:
            assert gain == pytest.approx(action_entropy - conditional)
        with check:
            assert gain != pytest.approx(action_entropy - 0.5 * 1.0)


class TestIndexBestInfoGainColumn:
    """Tests for best-column selection."""

    def test_picks_most_informative_column(self) -> None:
        """Verify the column with the highest gain wins."""
        table = _make_table(
            ["noise", "signal", "action"],
            [([0, 0, 0], 1), ([0, 1, 1], 1), ([1, 0, 0], 1), ([1, 1, 1], 1)],
        )

        with check:
            assert index_best_info_gain_column(table) == 1

    def test_tie_goes_to_first_column(self) -> None:
        """Verify equal gains resolve to the first column in declaration order."""
        # Arrange - a and b are exact copies, so their gains are identical
        table = _make_table(
            ["a", "b", "action"],
            [([0, 0, 0], 1), ([1, 1, 1], 1)],
        )

        # Act & Assert
        with check:
            assert index_best_info_gain_column(table) == 0

    def test_no_positive_gain_returns_no_split(self) -> None:
        """Verify contradictory data with no informative column yields NO_SPLIT."""
        table = _make_table(["a", "action"], [([0, 0], 1), ([0, 1], 1)])

        with check:
            assert index_best_info_gain_column(table) == NO_SPLIT

    def test_balanced_xor_has_no_positive_gain(self) -> None:
        """Verify neither input of a balanced XOR is informative on its own."""
        table = _make_table(
            ["a", "b", "action"],
            [([0, 0, 0], 1), ([0, 1, 1], 1), ([1, 0, 1], 1), ([1, 1, 0], 1)],
        )

        with check:
            assert index_best_info_gain_column(table) == NO_SPLIT

    def test_action_only_table_returns_no_split(self) -> None:
        """Verify a table without feature columns yields NO_SPLIT."""
        table = _make_table(["action"], [([0], 1), ([1], 1)])

        with check:
            assert index_best_info_gain_column(table) == NO_SPLIT
