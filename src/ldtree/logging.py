"""Logging utilities for ldtree.

ldtree logs through loguru and keeps its records silent until an application
opts in with ``enable_logging()``. A custom TRAINING level sits between INFO and
WARNING so training lifecycle events (launch, completion, tree publication) can
be watched without the per-node DEBUG detail emitted while a tree is built.

Note:
    Importing this module removes loguru's default stderr handler (ID 0) so
    that ``enable_logging()`` does not print every record twice. If the
    application already replaced handler 0 the removal is skipped.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from typing import TYPE_CHECKING, ClassVar, Final, Literal, TypeAlias

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

with contextlib.suppress(ValueError):
    logger.remove(0)

TRAINING_LEVEL: Final[str] = "TRAINING"
TRAINING_LEVEL_NUMBER: Final[int] = 25  # Between INFO (20) and WARNING (30)


def _register_training_level() -> None:
    """Register the TRAINING level with loguru if it is not registered yet.

    loguru refuses to change the number of an existing level, so a clash with a
    level of the same name registered elsewhere is reported as a UserWarning.
    """
    try:
        existing_level = logger.level(TRAINING_LEVEL)
    except ValueError:
        logger.level(TRAINING_LEVEL, no=TRAINING_LEVEL_NUMBER, icon="🌳")
    else:
        if existing_level.no != TRAINING_LEVEL_NUMBER:
            msg = (
                f"TRAINING level already registered with numeric value {existing_level.no},"
                f" expected {TRAINING_LEVEL_NUMBER}"
            )
            warnings.warn(msg, stacklevel=2)


_register_training_level()

LogLevel: TypeAlias = Literal[
    "TRACE",
    "DEBUG",
    "INFO",
    "TRAINING",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

LogFormat: TypeAlias = Literal["short", "full"]


class LoggingHandle:
    """Owns one stderr handler added by ``enable_logging``.

    Call ``disable()`` or leave the ``with`` block to remove the handler. When
    the last live handle goes away the ldtree logger is disabled again.

    Examples:
        >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
        ...     learner.create_decision_tree()
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        """Track a loguru handler.

        Args:
            handler_id (int): ID returned by ``logger.add()``.
        """
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove this handle's handler; idempotent."""
        with LoggingHandle._lock:
            if self.handler_id is None:
                return
            LoggingHandle._active_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not LoggingHandle._active_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        """Enter context manager.

        Returns:
            LoggingHandle: This handle instance.
        """
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Disable the handle when the ``with`` block ends.

        Args:
            exc_type (type[BaseException] | None): The exception type, if raised.
            exc_val (BaseException | None): The exception instance, if raised.
            exc_tb (TracebackType | None): The traceback, if raised.
        """
        self.disable()

    @classmethod
    def get_active_handle_count(cls) -> int:
        """Return how many handles are still enabled.

        Returns:
            int: Count of handles whose ``disable()`` has not run.
        """
        with cls._lock:
            return len(cls._active_ids)


def enable_logging(
    *,
    level: LogLevel = TRAINING_LEVEL,
    log_format: LogFormat = "short",
) -> LoggingHandle:
    """Send ldtree log records to stderr.

    Args:
        level (LogLevel): Minimum level shown. The default "TRAINING" reports
            training runs and rejected operations; "DEBUG" adds a line per node
            exploded by the trainer and table dumps from ``debug_table()``.
        log_format (LogFormat): "short" shows only the function name as the
            record origin, "full" shows module:function:line.

    Returns:
        LoggingHandle: Handle that removes the handler again.
    """
    logger.enable(PACKAGE_NAME)

    if log_format == "short":
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{function}</cyan> - "
            "<level>{message}</level> {extra}"
        )
    else:
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level> {extra}"
        )

    handler_id = logger.add(
        sys.stderr,
        level=level,
        filter=_is_ldtree_record,
        format=format_str,
    )

    return LoggingHandle(handler_id)


def _is_ldtree_record(record: Record) -> bool:
    """Pass only records emitted from inside the ldtree package.

    Args:
        record (Record): The loguru record.

    Returns:
        bool: True when the record's module belongs to ldtree.
    """
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
