"""Settings for ldtree learners, loaded from the environment or a ``.env`` file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TreeSettings(BaseSettings):
    """Runtime settings for a ``LearningDecisionTree``.

    Every field can be overridden with an ``LDTREE_``-prefixed environment
    variable, e.g. ``LDTREE_MAX_UNIQUE_ROWS=500``.

    Attributes:
        max_unique_rows (int): Cap on physical (deduplicated) rows kept in the
            table. When a new distinct row arrives at the cap, the oldest
            physical row is evicted first. 0 disables the cap.
        random_seed (int | None): Seed for the generator used to sample
            actions at leaves. None draws fresh entropy from the OS.
        worker_thread_name (str): Thread name prefix of the background
            training worker.
    """

    model_config = SettingsConfigDict(
        env_prefix="LDTREE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_unique_rows: int = Field(
        default=0,
        ge=0,
        description="Maximum number of physical rows in the table; 0 means unlimited.",
    )
    random_seed: int | None = Field(
        default=None,
        description="Seed for leaf action sampling; None for a non-deterministic generator.",
    )
    worker_thread_name: str = Field(
        default="ldtree-train",
        min_length=1,
        description="Thread name prefix for the background training worker.",
    )
