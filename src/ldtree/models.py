"""Result models returned by the ``LearningDecisionTree`` public API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, JsonValue, model_validator


class TreeError(BaseModel):
    """Structured, non-fatal error returned instead of raising.

    Attributes:
        error_type (str): Category of error (e.g. "InsufficientSchema",
            "TrainingInProgress"). Must be at least 1 character.
        message (str): Human-readable description. Must be at least 1 character.
        details (dict[str, JsonValue]): Additional JSON-serializable context.

    Examples:
        >>> error = TreeError(
        ...     error_type="TrainingInProgress",
        ...     message="An asynchronous training run is already active",
        ... )
        >>> error.details
        {}
    """

    error_type: str = Field(description="Category of the error.", min_length=1)
    message: str = Field(description="Human-readable error description.", min_length=1)
    details: dict[str, JsonValue] = Field(
        default_factory=dict,
        description="Additional error context (JSON-serializable).",
    )


class TrainingSummary(BaseModel):
    """Shape of a freshly trained tree and the data it was trained on.

    Attributes:
        root_kind (Literal["decision", "action"]): Variant of the root node.
        node_count (int): Number of nodes in the tree.
        leaf_count (int): Number of action (leaf) nodes.
        depth (int): Number of decision levels on the longest root-to-leaf path.
        physical_rows (int): Deduplicated rows in the training table.
        total_rows (int): Logical samples in the training table.
        feature_columns (list[str]): Feature columns, in declaration order.
        action_column (str): Name of the action column.

    Examples:
        >>> summary = TrainingSummary(
        ...     root_kind="decision",
        ...     node_count=3,
        ...     leaf_count=2,
        ...     depth=1,
        ...     physical_rows=4,
        ...     total_rows=9,
        ...     feature_columns=["enemy_near", "low_health"],
        ...     action_column="action",
        ... )
        >>> summary.leaf_count
        2
    """

    root_kind: Literal["decision", "action"] = Field(description="Variant of the root node.")
    node_count: int = Field(ge=1, description="Number of nodes in the tree.")
    leaf_count: int = Field(ge=1, description="Number of action (leaf) nodes.")
    depth: int = Field(ge=0, description="Decision levels on the longest root-to-leaf path.")
    physical_rows: int = Field(ge=0, description="Deduplicated rows in the training table.")
    total_rows: int = Field(ge=0, description="Logical samples in the training table.")
    feature_columns: list[str] = Field(description="Feature columns in declaration order.")
    action_column: str = Field(description="Name of the action column.")

    @model_validator(mode="after")
    def _validate_leaf_count_within_node_count(self) -> TrainingSummary:
        """Validate that leaves are a subset of nodes.

        Returns:
            TrainingSummary: The validated model instance.

        Raises:
            ValueError: If ``leaf_count`` exceeds ``node_count``.
        """
        if self.leaf_count > self.node_count:
            raise ValueError(f"leaf_count ({self.leaf_count}) cannot exceed node_count ({self.node_count})")
        return self
