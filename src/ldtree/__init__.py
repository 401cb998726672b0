"""ldtree: Frequency-compressed ID3 decision trees with off-thread training."""

from loguru import logger

from ldtree.config import TreeSettings
from ldtree.learner import LearningDecisionTree
from ldtree.logging import PACKAGE_NAME, enable_logging
from ldtree.models import TrainingSummary, TreeError
from ldtree.nodes import NO_ACTION, ActionNode, DecisionNode, DecisionTree
from ldtree.table import Table
from ldtree.trainer import train

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the ldtree package by default

__all__ = [
    "NO_ACTION",
    "ActionNode",
    "DecisionNode",
    "DecisionTree",
    "LearningDecisionTree",
    "Table",
    "TrainingSummary",
    "TreeError",
    "TreeSettings",
    "enable_logging",
    "train",
]
