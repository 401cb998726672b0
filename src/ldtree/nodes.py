"""Decision tree node graph and evaluation.

A tree is an arena: a flat list of nodes where slot 0 is the root and a
decision node refers to its children by slot index. While a tree is being
built a slot may hold a ``TableNode`` (the not-yet-split subset of the
training data); the trainer replaces it in place by overwriting the slot with
its final ``DecisionNode`` or ``ActionNode``. A finished ``DecisionTree``
only admits decision and action nodes, so a half-built tree cannot be
published.

Evaluation walks from the root: a decision node looks up the row's value in
its split column, drops that position from the row (mirroring how training
dropped the column from the filtered table) and moves to the matching child;
an action node samples one of its actions in proportion to its weights.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Annotated, Final, Literal, Protocol, Self, TypeAlias, runtime_checkable

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ldtree.exceptions import IncompleteTreeError
from ldtree.table import Table

NO_ACTION: Final[int] = -1
"""Evaluation result when no action can be produced."""


@runtime_checkable
class RandomSource(Protocol):
    """Uniform integer generator used to sample leaf actions.

    ``numpy.random.Generator`` satisfies this protocol.
    """

    def integers(self, low: int, high: int) -> int:
        """Return a uniform random integer in ``[low, high)``.

        Args:
            low (int): Inclusive lower bound.
            high (int): Exclusive upper bound.

        Returns:
            int: The drawn integer.
        """
        ...


# ---------------------------------------------------------------------------
# Node variants
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TableNode:
    """Unsplit subset of the training data waiting to be exploded.

    Only exists inside the trainer's arena; never part of a ``DecisionTree``.

    Attributes:
        table (Table): Rows that reached this node, minus the columns already
            consumed by splits above it.
    """

    table: Table


class DecisionNode(BaseModel):
    """Branch on the value of one feature column.

    Attributes:
        kind (Literal["decision"]): Discriminator; always "decision".
        column (int): Position of the split column in the row that reaches
            this node (earlier splits have already removed their columns).
        states (list[int]): Observed values of the split column.
        children (list[int]): Arena slot of the child for each state.

    Examples:
        >>> node = DecisionNode(column=1, states=[0, 1], children=[1, 2])
        >>> node.select([7, 1, 9])
        (2, [7, 9])
        >>> node.select([7, 4, 9]) is None
        True
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["decision"] = Field(default="decision", description='Discriminator. Always "decision".')
    column: int = Field(ge=0, description="Position of the split column in the incoming row.")
    states: list[int] = Field(description="Observed values of the split column, in first-seen order.")
    children: list[Annotated[int, Field(ge=1)]] = Field(description="Arena slot of the child for each state.")

    @model_validator(mode="after")
    def _validate_parallel_arrays(self) -> Self:
        """Validate that every state has exactly one child.

        Returns:
            Self: The validated model instance.

        Raises:
            ValueError: If the arrays differ in length or a state repeats.
        """
        if len(self.states) != len(self.children):
            raise ValueError(f"states ({len(self.states)}) and children ({len(self.children)}) must have equal length")
        if len(set(self.states)) != len(self.states):
            raise ValueError(f"states must be distinct, got {self.states}")
        return self

    def select(self, row: Sequence[int]) -> tuple[int, list[int]] | None:
        """Pick the child for ``row`` and the row it should see.

        Args:
            row (Sequence[int]): Feature values reaching this node.

        Returns:
            tuple[int, list[int]] | None: The child slot and ``row`` without
                the split column, or None if the row is too short or holds
                a value this node never saw.
        """
        if self.column >= len(row):
            return None
        value = row[self.column]
        for state, child in zip(self.states, self.children, strict=True):
            if state == value:
                return child, [*row[: self.column], *row[self.column + 1 :]]
        return None


class ActionNode(BaseModel):
    """Leaf holding the actions observed for one branch and their weights.

    Attributes:
        kind (Literal["action"]): Discriminator; always "action".
        states (list[int]): Observed action values.
        weights (list[int]): Duplicate-weighted count of each action.

    Examples:
        >>> leaf = ActionNode(states=[4], weights=[3])
        >>> leaf.total_weight
        3
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["action"] = Field(default="action", description='Discriminator. Always "action".')
    states: list[int] = Field(description="Observed action values.")
    weights: list[Annotated[int, Field(ge=0)]] = Field(description="Duplicate-weighted count of each action.")

    @model_validator(mode="after")
    def _validate_parallel_arrays(self) -> Self:
        """Validate that every action has a weight.

        Returns:
            Self: The validated model instance.

        Raises:
            ValueError: If ``states`` and ``weights`` differ in length.
        """
        if len(self.states) != len(self.weights):
            raise ValueError(f"states ({len(self.states)}) and weights ({len(self.weights)}) must have equal length")
        return self

    @property
    def total_weight(self) -> int:
        """int: Sum of all action weights."""
        return sum(self.weights)

    def sample_index(self, rng: RandomSource) -> int:
        """Draw the index of an action with probability proportional to its weight.

        Args:
            rng (RandomSource): Uniform integer generator.

        Returns:
            int: Index into ``states``; 0 when all weights are 0, -1 when the
                leaf holds no actions.
        """
        if not self.states:
            return -1
        total = self.total_weight
        if total == 0:
            return 0
        draw = int(rng.integers(0, total))
        cumulative = 0
        for index, weight in enumerate(self.weights):
            cumulative += weight
            if draw < cumulative:
                return index
        return len(self.weights) - 1

    def eval(self, rng: RandomSource) -> int:
        """Sample an action.

        Args:
            rng (RandomSource): Uniform integer generator.

        Returns:
            int: The sampled action, or ``NO_ACTION`` for an empty leaf.
        """
        index = self.sample_index(rng)
        return self.states[index] if index >= 0 else NO_ACTION


TreeNode = Annotated[DecisionNode | ActionNode, Field(discriminator="kind")]
"""A node of a finished tree; pydantic picks the variant from ``kind``."""

BuildNode: TypeAlias = TableNode | DecisionNode | ActionNode
"""A node of a tree under construction."""


def evaluate(arena: Sequence[BuildNode], row: Sequence[int], rng: RandomSource, *, slot: int = 0) -> int:
    """Walk an arena from ``slot`` and return the action chosen for ``row``.

    Args:
        arena (Sequence[BuildNode]): Nodes indexed by slot.
        row (Sequence[int]): Feature values in training column order.
        rng (RandomSource): Uniform integer generator for leaf sampling.
        slot (int): Slot to start from. Defaults to the root.

    Returns:
        int: The action, or ``NO_ACTION`` if the row does not match a branch
            or the walk reaches an unexploded table node.
    """
    current = list(row)
    while True:
        match arena[slot]:
            case ActionNode() as leaf:
                return leaf.eval(rng)
            case DecisionNode() as decision:
                step = decision.select(current)
                if step is None:
                    return NO_ACTION
                slot, current = step
            case TableNode():
                logger.error("Evaluation reached an unexploded table node; the tree is incomplete", slot=slot)
                return NO_ACTION


# ---------------------------------------------------------------------------
# Finished tree
# ---------------------------------------------------------------------------


class DecisionTree(BaseModel):
    """Immutable, fully built decision tree.

    Attributes:
        nodes (list[TreeNode]): Arena of decision and action nodes; slot 0 is
            the root and every other slot is the child of exactly one
            decision node with a smaller slot.

    Examples:
        >>> tree = DecisionTree(
        ...     nodes=[
        ...         DecisionNode(column=0, states=[0, 1], children=[1, 2]),
        ...         ActionNode(states=[10], weights=[2]),
        ...         ActionNode(states=[11], weights=[5]),
        ...     ]
        ... )
        >>> tree.depth, tree.leaf_count
        (1, 2)
    """

    model_config = ConfigDict(frozen=True)

    nodes: list[TreeNode] = Field(min_length=1, description="Arena of nodes; slot 0 is the root.")

    @model_validator(mode="after")
    def _validate_arena_links(self) -> Self:
        """Validate that the arena forms a single tree rooted at slot 0.

        Returns:
            Self: The validated model instance.

        Raises:
            ValueError: If a child slot is out of range, does not come after
                its parent, is shared, or a non-root slot has no parent.
        """
        parents: dict[int, int] = {}
        for slot, node in enumerate(self.nodes):
            if not isinstance(node, DecisionNode):
                continue
            for child in node.children:
                if not slot < child < len(self.nodes):
                    raise ValueError(f"Node {slot} has child slot {child} outside ({slot}, {len(self.nodes)})")
                if child in parents:
                    raise ValueError(f"Slot {child} is a child of both node {parents[child]} and node {slot}")
                parents[child] = slot
        orphans = [slot for slot in range(1, len(self.nodes)) if slot not in parents]
        if orphans:
            raise ValueError(f"Slots {orphans} are not reachable from the root")
        return self

    @classmethod
    def from_arena(cls, arena: Sequence[BuildNode]) -> DecisionTree:
        """Freeze a trainer arena into a finished tree.

        Args:
            arena (Sequence[BuildNode]): Arena whose table nodes have all been
                exploded.

        Returns:
            DecisionTree: The validated tree.

        Raises:
            IncompleteTreeError: If any slot still holds a ``TableNode``.
        """
        pending = [slot for slot, node in enumerate(arena) if isinstance(node, TableNode)]
        if pending:
            raise IncompleteTreeError(pending)
        return cls(nodes=list(arena))  # type: ignore[arg-type]

    @property
    def root(self) -> DecisionNode | ActionNode:
        """DecisionNode | ActionNode: The root node."""
        return self.nodes[0]

    @property
    def node_count(self) -> int:
        """int: Number of nodes in the tree."""
        return len(self.nodes)

    @property
    def leaf_count(self) -> int:
        """int: Number of action nodes."""
        return sum(1 for node in self.nodes if isinstance(node, ActionNode))

    @property
    def depth(self) -> int:
        """int: Number of decision nodes on the longest root-to-leaf path."""
        levels = [0] * len(self.nodes)
        for slot, node in enumerate(self.nodes):
            if isinstance(node, DecisionNode):
                for child in node.children:
                    levels[child] = levels[slot] + 1
        return max(levels)

    def eval(self, row: Sequence[int], rng: RandomSource) -> int:
        """Return the action the tree picks for ``row``.

        Args:
            row (Sequence[int]): Feature values in training column order,
                without the action value.
            rng (RandomSource): Uniform integer generator for leaf sampling.

        Returns:
            int: The action, or ``NO_ACTION`` if the row matches no branch.
        """
        return evaluate(self.nodes, row, rng)
