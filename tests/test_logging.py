"""Tests for loguru logging in ldtree.

This module verifies that logging is disabled by default and that
structured log records are produced when enabled, covering training runs,
tree construction, and rejected operations.
"""

from __future__ import annotations

import contextlib
import io
import re
import sys
import warnings
from collections.abc import Generator
from typing import NamedTuple
from unittest import mock

import loguru
import pytest
from loguru import logger
from pytest_check import check

from ldtree.learner import LearningDecisionTree
from ldtree.logging import (
    PACKAGE_NAME,
    TRAINING_LEVEL,
    TRAINING_LEVEL_NUMBER,
    LoggingHandle,
    _register_training_level,
    enable_logging,
)


class LogSink(NamedTuple):
    """Log sink with records list and handler ID for cleanup.

    Attributes:
        records (list[loguru.Record]): List that accumulates log record dictionaries.
        handler_id (int): Logger handler ID for cleanup.
    """

    records: list[loguru.Record]
    handler_id: int


@contextlib.contextmanager
def capturing_sink(*, enable_ldtree: bool = True) -> Generator[list[loguru.Record]]:
    """Context manager that adds a loguru sink and yields the captured records list.

    Pass `enable_ldtree=False` when testing state after a `LoggingHandle` has
    already been disabled, so the sink observes whether ldtree records flow
    without this helper re-enabling the logger.

    Args:
        enable_ldtree (bool): When True (default), enables the ldtree logger for
            the duration of the block and disables it on exit.

    Yields:
        Generator[list[loguru.Record]]: Records captured while the context is active.
    """
    captured_records: list[loguru.Record] = []

    def _sink(message: loguru.Message) -> None:
        captured_records.append(message.record)

    handler_id = logger.add(_sink, level="TRACE")
    if enable_ldtree:
        logger.enable(PACKAGE_NAME)
    try:
        yield captured_records
    finally:
        if enable_ldtree:
            logger.disable(PACKAGE_NAME)
        logger.remove(handler_id)


@pytest.fixture(autouse=True)
def restore_active_ids() -> Generator[None]:
    """Save and restore LoggingHandle._active_ids around each test.

    Yields:
        None: Nothing; used only for setup/teardown side effects.
    """
    # Arrange - snapshot active IDs before the test runs
    saved_ids: set[int] = set(LoggingHandle._active_ids)

    yield

    # Cleanup - remove handlers added during the test, keep the shared set object
    added_ids = LoggingHandle._active_ids - saved_ids
    for handler_id in added_ids:
        with contextlib.suppress(ValueError):
            logger.remove(handler_id)
    LoggingHandle._active_ids.clear()
    LoggingHandle._active_ids.update(saved_ids)
    logger.disable(PACKAGE_NAME)


@pytest.fixture
def log_sink() -> Generator[LogSink]:
    """Create a sink that captures every record while ldtree logging is enabled.

    Yields:
        Generator[LogSink]: Named tuple with records list and handler_id for cleanup.
    """
    captured_records: list[loguru.Record] = []

    def sink(message: loguru.Message) -> None:
        captured_records.append(message.record)

    handler_id = logger.add(sink, level="TRACE")
    logger.enable(PACKAGE_NAME)

    yield LogSink(records=captured_records, handler_id=handler_id)

    logger.disable(PACKAGE_NAME)
    logger.remove(handler_id)


def _trainable_learner() -> LearningDecisionTree:
    """Build a learner whose table splits on its first column.

    Returns:
        LearningDecisionTree: Learner with columns (enemy_near, action) and four rows.
    """
    learner = LearningDecisionTree()
    learner.add_column("enemy_near")
    learner.add_column("action")
    for row in ([1, 1], [1, 1], [0, 0], [0, 2]):
        learner.add_row(row)
    return learner


def _ldtree_records(records: list[loguru.Record]) -> list[loguru.Record]:
    return [r for r in records if (r["name"] or "").startswith(PACKAGE_NAME)]


def test_logging_disabled_by_default() -> None:
    """Verify no ldtree records are captured while the package logger is disabled.

    Given: ldtree logging disabled, a sink capturing all output
    When: Build a table, train, and evaluate
    Then: No ldtree log records are captured
    """
    # Arrange - explicitly disable to protect against test ordering issues
    logger.disable(PACKAGE_NAME)

    # Act & Assert
    with capturing_sink(enable_ldtree=False) as captured_records:
        learner = _trainable_learner()
        learner.create_decision_tree()
        learner.add_column("late")  # rejected: rows exist
        learner.eval()

        with check:
            assert _ldtree_records(captured_records) == [], "No ldtree logs should be captured when disabled"


class TestTrainingLogging:
    """Tests for records emitted around training runs."""

    def test_sync_training_logs_start_and_publish(self, log_sink: LogSink) -> None:
        """Verify a synchronous run logs start and publication at TRAINING level.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        learner = _trainable_learner()

        # Act
        learner.create_decision_tree()

        # Assert
        training = [r for r in log_sink.records if r["level"].name == TRAINING_LEVEL]
        messages = [r["message"] for r in training]
        with check:
            assert messages == ["Training started", "Tree published"]
        with check:
            assert training[0]["extra"]["mode"] == "sync"
        with check:
            assert training[1]["extra"]["root_kind"] == "decision"
        with check:
            assert training[1]["extra"]["total_rows"] == 4

    def test_async_training_logs_start_and_publish(self, log_sink: LogSink) -> None:
        """Verify a background run logs its launch and publication.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        learner = _trainable_learner()

        # Act
        learner.train_async()
        finished = learner.wait_for_training(timeout=10)
        learner.close()

        # Assert
        with check:
            assert finished
        training = [r for r in log_sink.records if r["level"].name == TRAINING_LEVEL]
        with check:
            assert [r["extra"]["mode"] for r in training] == ["async", "async"]
        with check:
            assert training[0]["extra"]["physical_rows"] == 3

    def test_tree_construction_logs_at_debug(self, log_sink: LogSink) -> None:
        """Verify the trainer logs each split and leaf at DEBUG level.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        learner = _trainable_learner()

        # Act
        learner.create_decision_tree()

        # Assert
        debug_messages = [r["message"] for r in log_sink.records if r["level"].name == "DEBUG"]
        with check:
            assert debug_messages.count("Split created") == 1
        with check:
            assert debug_messages.count("Leaf created") == 2
        with check:
            assert "Tree built" in debug_messages

    def test_split_record_carries_structured_fields(self, log_sink: LogSink) -> None:
        """Verify the split record names the column and lists the child slots.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        _trainable_learner().create_decision_tree()

        split = next(r for r in log_sink.records if r["message"] == "Split created")
        with check:
            assert split["extra"]["column"] == "enemy_near"
        with check:
            assert split["extra"]["states"] == [1, 0]
        with check:
            assert split["extra"]["children"] == [1, 2]


class TestRejectionLogging:
    """Tests for WARNING records on rejected operations."""

    def test_insufficient_schema_logs_warning(self, log_sink: LogSink) -> None:
        """Verify training a single-column table logs a rejection warning.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        learner = LearningDecisionTree()
        learner.add_column("action")

        # Act
        learner.create_decision_tree()

        # Assert
        warnings_logged = [r for r in log_sink.records if r["level"].name == "WARNING"]
        with check:
            assert len(warnings_logged) == 1
        with check:
            assert warnings_logged[0]["message"] == "create_decision_tree rejected"
        with check:
            assert warnings_logged[0]["extra"]["error_type"] == "InsufficientSchema"

    def test_eval_without_tree_logs_warning(self, log_sink: LogSink) -> None:
        """Verify evaluating before training logs a warning.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        LearningDecisionTree().eval()

        messages = [r["message"] for r in log_sink.records if r["level"].name == "WARNING"]
        with check:
            assert "Evaluation requested before a tree was trained" in messages

    def test_duplicate_column_logs_warning(self, log_sink: LogSink) -> None:
        """Verify adding an existing column name logs a warning with the name.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        learner = LearningDecisionTree()
        learner.add_column("action")

        learner.add_column("action")

        warnings_logged = [r for r in log_sink.records if r["level"].name == "WARNING"]
        with check:
            assert len(warnings_logged) == 1
        with check:
            assert warnings_logged[0]["extra"]["column"] == "action"


class TestTrainingLevelRegistration:
    """Tests for TRAINING custom log level registration edge cases."""

    def test_training_level_registered_with_correct_number(self) -> None:
        """Verify the TRAINING level is registered with the expected numeric value at import time."""
        level = logger.level(TRAINING_LEVEL)

        with check:
            assert level.no == TRAINING_LEVEL_NUMBER, (
                f"TRAINING level should have numeric value {TRAINING_LEVEL_NUMBER}, got {level.no}"
            )

    def test_duplicate_level_wrong_number_warns_not_raises(self) -> None:
        """Verify a numeric mismatch on TRAINING registration issues a warning, not an exception.

        Given: The TRAINING level already exists with a numeric value different from expected
        When: _register_training_level() runs and detects the conflict
        Then: A UserWarning is issued with the conflict details; no ValueError is raised
        """
        # Arrange - a fake level whose number disagrees so the conflict branch fires
        fake_level = mock.MagicMock(spec=["no"])
        fake_level.no = TRAINING_LEVEL_NUMBER + 1

        with (
            mock.patch("ldtree.logging.logger.level", return_value=fake_level),
            warnings.catch_warnings(record=True) as caught,
        ):
            warnings.simplefilter("always")
            # Act
            _register_training_level()

        # Assert
        with check:
            assert len(caught) == 1, "Should have issued exactly one warning"
        with check:
            assert issubclass(caught[0].category, UserWarning)
        with check:
            assert "already registered with numeric value" in str(caught[0].message)
        with check:
            assert str(TRAINING_LEVEL_NUMBER) in str(caught[0].message)


class TestEnableLoggingLifecycle:
    """Tests for enable_logging handle creation, disable, and context manager use."""

    def test_enable_logging_returns_logging_handle(self) -> None:
        """Verify enable_logging returns a handle with an integer handler ID."""
        handle = enable_logging()

        with check:
            assert isinstance(handle, LoggingHandle)
        with check:
            assert isinstance(handle.handler_id, int)

        handle.disable()

    def test_enable_logging_enables_ldtree_logger(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify ldtree records reach stderr after enable_logging.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching sys.stderr safely.
        """
        # Arrange
        captured_stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", captured_stderr)
        handle = enable_logging()

        # Act
        _trainable_learner().create_decision_tree()
        handle.disable()

        # Assert
        with check:
            assert "Tree published" in captured_stderr.getvalue()

    def test_disable_twice_is_safe(self) -> None:
        """Verify disable() is idempotent and clears the handler ID."""
        handle = enable_logging()

        handle.disable()
        handle.disable()

        with check:
            assert handle.handler_id is None

    def test_context_manager_exit_cleans_up_on_exception(self) -> None:
        """Verify the handler is removed even when the block raises.

        Raises:
            RuntimeError: Intentionally raised inside the context to test cleanup under failure.
        """
        handle_ref: list[LoggingHandle] = []

        with pytest.raises(RuntimeError, match="simulated error"), enable_logging() as handle:
            handle_ref.append(handle)
            raise RuntimeError("simulated error")

        with check:
            assert handle_ref[0].handler_id is None

    def test_handles_are_independent(self) -> None:
        """Verify disabling one handle leaves logging on until the last one goes.

        Given: Two handles from enable_logging(level="DEBUG")
        When: Disable the first, train; then disable the second, train again
        Then: Records flow after the first disable and stop after the second
        """
        # Arrange
        handle1 = enable_logging(level="DEBUG")
        handle2 = enable_logging(level="DEBUG")

        with capturing_sink(enable_ldtree=False) as captured_records:
            # Act - disable handle1 only
            handle1.disable()
            _trainable_learner().create_decision_tree()

            # Assert - handle2 keeps ldtree logging enabled
            with check:
                assert len(_ldtree_records(captured_records)) > 0

            # Act - disable the last handle
            captured_records.clear()
            handle2.disable()
            _trainable_learner().create_decision_tree()

            # Assert - nothing flows once every handle is gone
            with check:
                assert _ldtree_records(captured_records) == []

    def test_context_manager_re_disables_on_exit(self) -> None:
        """Verify leaving the with block disables ldtree logging again."""
        with enable_logging():
            pass

        with capturing_sink(enable_ldtree=False) as captured_records:
            _trainable_learner().create_decision_tree()

            with check:
                assert _ldtree_records(captured_records) == []

    def test_active_handle_count_tracks_lifecycle(self) -> None:
        """Verify get_active_handle_count follows enable and disable calls."""
        baseline_count = LoggingHandle.get_active_handle_count()

        handle1 = enable_logging()
        handle2 = enable_logging()
        with check:
            assert LoggingHandle.get_active_handle_count() == baseline_count + 2

        handle1.disable()
        with check:
            assert LoggingHandle.get_active_handle_count() == baseline_count + 1

        handle2.disable()
        with check:
            assert LoggingHandle.get_active_handle_count() == baseline_count


class TestEnableLoggingFiltering:
    """Tests for enable_logging level filtering and formatting."""

    @pytest.mark.parametrize(
        ("level", "present", "absent"),
        [
            ("TRAINING", ["Tree published", "rejected"], ["Split created"]),
            ("DEBUG", ["Split created", "Tree published", "rejected"], []),
            ("WARNING", ["rejected"], ["Tree published", "Split created"]),
        ],
        ids=["default-training-level", "debug-level-captures-all", "warning-level-excludes-training"],
    )
    def test_enable_logging_level_filtering(
        self,
        monkeypatch: pytest.MonkeyPatch,
        level: str,
        present: list[str],
        absent: list[str],
    ) -> None:
        """Verify the stderr handler shows only records at or above the chosen level.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching sys.stderr safely.
            level (str): Level passed to enable_logging.
            present (list[str]): Messages that must appear in stderr.
            absent (list[str]): Messages that must not appear in stderr.
        """
        # Arrange
        captured_stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", captured_stderr)
        handle = enable_logging(level=level)  # type: ignore[arg-type]

        # Act - DEBUG splits, TRAINING publication, then a WARNING rejection
        learner = _trainable_learner()
        learner.create_decision_tree()
        learner.add_column("late")
        learner.remove_row(99)
        handle.disable()

        # Assert
        output = captured_stderr.getvalue()
        for message in present:
            with check:
                assert message in output, f"{message!r} should appear at level {level}"
        for message in absent:
            with check:
                assert message not in output, f"{message!r} should not appear at level {level}"

    @pytest.mark.parametrize(
        ("log_format", "expected_present", "expected_absent"),
        [
            ("short", ["create_decision_tree"], ["ldtree.learner"]),
            ("full", ["ldtree.learner", "create_decision_tree"], []),
        ],
        ids=["short-format", "full-format"],
    )
    def test_enable_logging_format_renders_expected_tokens(
        self,
        monkeypatch: pytest.MonkeyPatch,
        log_format: str,
        expected_present: list[str],
        expected_absent: list[str],
    ) -> None:
        """Verify log_format controls which source-location tokens appear in stderr.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching sys.stderr safely.
            log_format (str): The log_format to pass to enable_logging.
            expected_present (list[str]): Substrings that must appear in stderr.
            expected_absent (list[str]): Substrings that must not appear in stderr.
        """
        # Arrange
        captured_stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", captured_stderr)
        handle = enable_logging(log_format=log_format)  # type: ignore[arg-type]

        # Act - the "Training started" record comes from create_decision_tree
        LearningDecisionTree().create_decision_tree()
        handle.disable()

        # Assert
        output = captured_stderr.getvalue()
        for token in expected_present:
            with check:
                assert token in output
        for token in expected_absent:
            with check:
                assert token not in output
        if log_format == "full":
            with check:
                assert re.search(r"ldtree\.learner:\w+:\d+", output)
