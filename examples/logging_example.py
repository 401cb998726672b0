"""Demonstrates how to enable logging in ldtree while a learner trains.

ldtree logging is disabled by default. Users opt in by calling ``enable_logging()``,
which returns a ``LoggingHandle``. The handle can be used as a context manager
(``with enable_logging(): ...``) or disabled manually via ``handle.disable()``.
When the last active handle is disabled, ldtree logging is automatically turned off.

Key concepts shown here:

- ``level``: controls the minimum log level. The custom ``TRAINING`` level
  (numeric value 25, between INFO and WARNING) reports training runs and is the
  default; ``"DEBUG"`` adds one line per split and leaf.
- ``log_format``: ``"short"`` shows ``timestamp | level | function - message``;
  ``"full"`` adds the module and line number.
- Rejections: invalid operations (e.g. a row of the wrong length) are logged
  as warnings and reported through return values instead of raising.
- Background training: ``train_async()`` logs the launch on the caller thread and
  the publication on the worker thread.
"""

from ldtree import LearningDecisionTree, TreeError, TreeSettings, enable_logging

with enable_logging(level="DEBUG", log_format="full"):
    learner = LearningDecisionTree(settings=TreeSettings(random_seed=1))
    for name in ("enemy_near", "low_health", "action"):
        learner.add_column(name)

    # Observations: flee (2) when health is low, attack (1) when an enemy is near, else idle (0)
    for row in ([1, 0, 1], [1, 0, 1], [1, 1, 2], [0, 0, 0], [0, 1, 2], [0, 0, 0]):
        learner.add_row(row)

    summary = learner.create_decision_tree()
    if isinstance(summary, TreeError):
        raise RuntimeError(summary.message)
    print(f"\nTrained {summary.node_count} nodes, depth {summary.depth}\n")

    # A row with the wrong length is rejected with a warning
    learner.add_row([1, 1])

    # Retrain in the background while the caller keeps evaluating the previous tree
    learner.add_row([1, 1, 2])
    learner.train_async()
    learner.refresh_states([1, 0])
    print(f"\nAction while training: {learner.eval()}\n")
    learner.wait_for_training()
    learner.close()

# Logging automatically disabled here
