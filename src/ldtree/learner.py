"""Owner facade: training data, the current tree, and background training.

``LearningDecisionTree`` is what applications hold on to. It owns the live
training ``Table`` and the most recently published ``DecisionTree`` and exposes
the full workflow: declare columns, record observations, train (inline or on a
worker thread), set the current feature values and ask for an action.

Background training works on a deep copy of the table taken at launch, so the
live table can keep changing while the worker runs. The worker builds a
complete tree; publishing it is a single reference swap under a lock, so
``eval()`` always sees either the previous tree or the new one, never a
partial tree. The worker only holds a weak reference to the learner: if the
learner is garbage collected before training finishes, the result is dropped.

Examples:
    >>> learner = LearningDecisionTree(settings=TreeSettings(random_seed=7))
    >>> for name in ("enemy_near", "low_health", "action"):
    ...     _ = learner.add_column(name)
    >>> for row in ([1, 0, 1], [1, 1, 2], [0, 0, 0], [0, 1, 2]):
    ...     _ = learner.add_row(row)
    >>> summary = learner.create_decision_tree()
    >>> summary.root_kind
    'decision'
    >>> learner.refresh_states([1, 0])
    >>> learner.eval()
    1
"""

from __future__ import annotations

import threading
import weakref
from collections.abc import Callable, Sequence
from typing import TypeAlias
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
from loguru import logger

from ldtree.config import TreeSettings
from ldtree.exceptions import (
    IncompleteTreeError,
    InsufficientSchemaError,
    PersistenceError,
    TrainingError,
)
from ldtree.logging import TRAINING_LEVEL
from ldtree.models import TrainingSummary, TreeError
from ldtree.nodes import NO_ACTION, DecisionTree, RandomSource
from ldtree.persistence import read_table, read_tree, save_table, save_tree
from ldtree.table import ColumnKey, Table, is_integer_row
from ldtree.trainer import MIN_COLUMNS, train

TrainingCallback: TypeAlias = Callable[[TrainingSummary | TreeError], None]

_REJECTED_MSG = "{operation} rejected"


def summarize(tree: DecisionTree, table: Table) -> TrainingSummary:
    """Describe a freshly trained tree and the table it was trained on.

    Args:
        tree (DecisionTree): The trained tree.
        table (Table): The training table (or the snapshot trained on).

    Returns:
        TrainingSummary: Shape of the tree and the training data.
    """
    return TrainingSummary(
        root_kind=tree.root.kind,
        node_count=tree.node_count,
        leaf_count=tree.leaf_count,
        depth=tree.depth,
        physical_rows=table.get_table_row_count(),
        total_rows=table.get_total_row_count(),
        feature_columns=list(table.feature_columns),
        action_column=table.action_column or "",
    )


def _training_error(exc: TrainingError) -> TreeError:
    """Convert a trainer exception into a reportable error value."""
    match exc:
        case InsufficientSchemaError(column_names=column_names):
            return TreeError(
                error_type="InsufficientSchema",
                message=str(exc),
                details={"column_names": list(column_names)},
            )
        case IncompleteTreeError(slots=slots):
            return TreeError(error_type="IncompleteTree", message=str(exc), details={"slots": list(slots)})
        case _:
            return TreeError(error_type="TrainingFailed", message=str(exc) or type(exc).__name__)


def _in_progress_error(operation: str) -> TreeError:
    """Build the error returned when an operation collides with a background run."""
    return TreeError(
        error_type="TrainingInProgress",
        message="A background training run is already active",
        details={"operation": operation},
    )


def _train_in_background(owner_ref: weakref.ReferenceType[LearningDecisionTree], snapshot: Table) -> None:
    """Train on ``snapshot`` and hand the outcome to its learner, if it is still alive.

    Runs as the worker job itself, so delivery (and ``on_trained``) always
    happens on the worker thread.

    Args:
        owner_ref (weakref.ReferenceType[LearningDecisionTree]): The learner
            that launched the run.
        snapshot (Table): Copy of the table taken at launch.
    """
    try:
        outcome: DecisionTree | Exception = train(snapshot)
    except Exception as exc:  # noqa: BLE001 - worker failures are reported, not raised
        outcome = exc
    owner = owner_ref()
    if owner is None:
        logger.debug("Learner was garbage collected before training finished; discarding result")
        return
    owner._complete_background_run(outcome, snapshot)


class LearningDecisionTree:
    """Decision tree learner that can retrain without blocking its caller.

    Attributes:
        on_trained (TrainingCallback | None): Called on the worker thread with
            the ``TrainingSummary`` (or ``TreeError``) of each background run,
            after the new tree has been published and ``is_training`` has
            turned False.
    """

    def __init__(
        self,
        *,
        settings: TreeSettings | None = None,
        rng: RandomSource | None = None,
        on_trained: TrainingCallback | None = None,
    ) -> None:
        """Create a learner with an empty table and no tree.

        Args:
            settings (TreeSettings | None): Learner settings. None loads them
                from the environment. Defaults to None.
            rng (RandomSource | None): Generator used to sample leaf actions.
                None creates ``numpy.random.default_rng(settings.random_seed)``.
            on_trained (TrainingCallback | None): Completion callback for
                background runs. Defaults to None.
        """
        self._settings = settings if settings is not None else TreeSettings()
        self._table = Table(max_unique_rows=self._settings.max_unique_rows)
        self._tree: DecisionTree | None = None
        self._row: list[int] = []
        self._rng: RandomSource = rng if rng is not None else np.random.default_rng(self._settings.random_seed)
        self.on_trained = on_trained

        self._lock = threading.Lock()
        self._training = False
        self._idle = threading.Event()
        self._idle.set()
        self._executor: ThreadPoolExecutor | None = None
        self._finalizer: weakref.finalize | None = None

    def __repr__(self) -> str:
        """Return repr(self).

        Returns:
            str: Table shape, tree size and training state.
        """
        tree = self._tree
        return (
            f"LearningDecisionTree(columns={list(self._table.column_names)!r}, "
            f"total_rows={self._table.get_total_row_count()}, "
            f"tree_nodes={tree.node_count if tree else 0}, training={self._training_active()})"
        )

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------

    @property
    def settings(self) -> TreeSettings:
        """TreeSettings: Settings the learner was created with."""
        return self._settings

    @property
    def table(self) -> Table:
        """Table: The live training table."""
        return self._table

    @property
    def tree(self) -> DecisionTree | None:
        """DecisionTree | None: The most recently published tree."""
        return self._tree

    def add_column(self, name: str) -> bool:
        """Declare a column; the column declared last is the action column.

        Returns:
            bool: False if the name exists or rows were already added.
        """
        return self._table.add_column(name)

    def add_row(self, values: Sequence[int]) -> bool:
        """Record one observation: feature values followed by the action taken.

        Returns:
            bool: False if the length does not match the column count
                or a value is not an integer.
        """
        return self._table.add_row(values)

    def remove_row(self, index: int) -> bool:
        """Remove a physical row and every sample it stands for.

        Returns:
            bool: False if ``index`` is out of range.
        """
        return self._table.remove_row(index)

    def remove_column(self, column: ColumnKey) -> bool:
        """Remove a column by name or position and merge rows that become equal.

        Returns:
            bool: False if the column does not exist.
        """
        return self._table.remove_column(column)

    def get_column_count(self) -> int:
        """Return the number of declared columns, action column included."""
        return self._table.column_count

    def get_table_row_count(self) -> int:
        """Return the number of physical (deduplicated) rows."""
        return self._table.get_table_row_count()

    def get_total_row_count(self) -> int:
        """Return the number of samples recorded, duplicates included."""
        return self._table.get_total_row_count()

    def debug_table(self) -> str:
        """Log the training table at DEBUG level and return its markdown rendering."""
        return self._table.debug_table()

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def refresh_states(self, feature_values: Sequence[int]) -> None:
        """Set the feature values the next ``eval()`` decides on.

        Args:
            feature_values (Sequence[int]): One value per feature column, in
                declaration order, without the action value. Values that are
                not integers are rejected with a warning and the previous
                feature values are kept.
        """
        if not is_integer_row(feature_values):
            logger.warning(
                "Feature values rejected: values must be integers",
                values=[repr(value) for value in feature_values],
            )
            return
        self._row = [int(value) for value in feature_values]

    def eval(self) -> int:
        """Pick an action for the current feature values.

        Returns:
            int: The action, or -1 if no tree has been trained or the feature
                values do not match any branch.
        """
        tree = self._tree
        if tree is None:
            logger.warning("Evaluation requested before a tree was trained")
            return NO_ACTION
        return tree.eval(self._row, self._rng)

    # -------------------------------------------------------------------------
    # Training
    # -------------------------------------------------------------------------

    @property
    def is_training(self) -> bool:
        """bool: True while a background run has not published its result."""
        return self._training_active()

    def wait_for_training(self, timeout: float | None = None) -> bool:
        """Block until no background run is active.

        Args:
            timeout (float | None): Seconds to wait. None waits indefinitely.

        Returns:
            bool: False if the timeout expired first.
        """
        return self._idle.wait(timeout)

    def create_decision_tree(self) -> TrainingSummary | TreeError:
        """Train on the live table on the calling thread and publish the tree.

        Returns:
            TrainingSummary | TreeError: The new tree's summary, or an error if
                the table cannot be trained on or a background run is active.
                On error the previous tree is kept.

        Examples:
            >>> learner = LearningDecisionTree()
            >>> _ = learner.add_column("action")
            >>> learner.create_decision_tree().error_type
            'InsufficientSchema'
        """
        operation = "create_decision_tree"
        if self._training_active():
            return self._report(_in_progress_error(operation), operation)

        logger.log(TRAINING_LEVEL, "Training started", mode="sync", total_rows=self._table.get_total_row_count())
        try:
            tree = train(self._table)
        except TrainingError as exc:
            return self._report(_training_error(exc), operation)
        return self._publish(tree, self._table, mode="sync")

    def train_async(self) -> TreeError | None:
        """Start training on a snapshot of the table and return immediately.

        The new tree is published when the worker finishes; watch
        ``is_training``, call ``wait_for_training()`` or set ``on_trained``.

        Returns:
            TreeError | None: None if the run was launched, or an error if
                another run is active or the table has too few columns.
        """
        operation = "train_async"
        with self._lock:
            if self._training:
                return self._report(_in_progress_error(operation), operation)
            if self._table.column_count < MIN_COLUMNS:
                return self._report(
                    _training_error(InsufficientSchemaError(list(self._table.column_names))), operation
                )
            self._training = True
            self._idle.clear()

        snapshot = self._table.copy()
        logger.log(
            TRAINING_LEVEL,
            "Training started",
            mode="async",
            physical_rows=snapshot.get_table_row_count(),
            total_rows=snapshot.get_total_row_count(),
        )
        self._get_executor().submit(_train_in_background, weakref.ref(self), snapshot)
        return None

    def close(self) -> None:
        """Shut down the background worker; an active run still completes.

        A later ``train_async()`` starts a fresh worker.
        """
        if self._finalizer is not None:
            self._finalizer()
        self._executor = None
        self._finalizer = None

    def _get_executor(self) -> ThreadPoolExecutor:
        """Return the single-thread worker pool, creating it on first use."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix=self._settings.worker_thread_name,
            )
            # The finalizer must not reference self, or the learner would never be collected.
            self._finalizer = weakref.finalize(self, self._executor.shutdown, wait=False)
        return self._executor

    def _training_active(self) -> bool:
        """Read the background-run flag under the lock."""
        with self._lock:
            return self._training

    def _complete_background_run(self, outcome: DecisionTree | Exception, snapshot: Table) -> None:
        """Publish or report the outcome of a background run, then notify."""
        match outcome:
            case DecisionTree():
                result: TrainingSummary | TreeError = self._publish(outcome, snapshot, mode="async")
            case TrainingError():
                result = self._report(_training_error(outcome), "train_async")
                self._finish_run()
            case _:
                logger.opt(exception=outcome).error("Background training failed")
                result = TreeError(
                    error_type="TrainingFailed",
                    message=str(outcome) or type(outcome).__name__,
                    details={"exception_type": type(outcome).__name__},
                )
                self._finish_run()

        callback = self.on_trained
        if callback is not None:
            callback(result)

    def _publish(self, tree: DecisionTree, table: Table, *, mode: str) -> TrainingSummary:
        """Swap in a finished tree and log its summary.

        Args:
            tree (DecisionTree): The complete tree to publish.
            table (Table): The table it was trained on, for the summary.
            mode (str): ``"sync"`` or ``"async"``; an async run is also
                marked finished once the tree is visible.

        Returns:
            TrainingSummary: Shape of the published tree.
        """
        summary = summarize(tree, table)
        with self._lock:
            self._tree = tree
        logger.log(TRAINING_LEVEL, "Tree published", mode=mode, **summary.model_dump())
        if mode == "async":
            self._finish_run()
        return summary

    def _finish_run(self) -> None:
        """Mark the background run finished and wake ``wait_for_training`` callers."""
        with self._lock:
            self._training = False
            self._idle.set()

    def _report(self, error: TreeError, operation: str) -> TreeError:
        """Log a rejected operation as a warning and return its error value."""
        logger.warning(
            _REJECTED_MSG.format(operation=operation),
            error_type=error.error_type,
            message=error.message,
        )
        return error

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save_table(self, folder: str | Path, name: str) -> Path:
        """Write the training table to ``<folder>/<name>.dat``.

        Returns:
            Path: The written file.
        """
        return save_table(self._table, folder, name)

    def load_table(self, folder: str | Path, name: str) -> bool:
        """Replace the training table with the one stored in ``<folder>/<name>.dat``.

        Returns:
            bool: False (and the table is unchanged) if the file is missing or
                malformed.
        """
        try:
            self._table = read_table(folder, name, max_unique_rows=self._settings.max_unique_rows)
        except FileNotFoundError:
            logger.warning("Table file not found", folder=str(folder), name=name)
            return False
        except PersistenceError as exc:
            logger.warning("Table file is malformed", folder=str(folder), name=name, reason=str(exc))
            return False
        return True

    def save_decision_tree(self, folder: str | Path, name: str) -> Path:
        """Write the current tree to ``<folder>/<name>.tree``.

        Returns:
            Path: The written file.
        """
        return save_tree(self._tree, folder, name)

    def load_decision_tree(self, folder: str | Path, name: str) -> bool:
        """Replace the current tree with the one stored in ``<folder>/<name>.tree``.

        Returns:
            bool: False (and the tree is unchanged) if the file is missing or
                malformed, or a background run is active.
        """
        if self._training_active():
            self._report(_in_progress_error("load_decision_tree"), "load_decision_tree")
            return False
        try:
            tree = read_tree(folder, name)
        except FileNotFoundError:
            logger.warning("Tree file not found", folder=str(folder), name=name)
            return False
        except PersistenceError as exc:
            logger.warning("Tree file is malformed", folder=str(folder), name=name, reason=str(exc))
            return False
        with self._lock:
            self._tree = tree
        return True
