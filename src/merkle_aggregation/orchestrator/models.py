"""Orchestrator state and run result.

Provides OrchestratorState for the per-run state machine and
AggregationResult, the value a successful run returns.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from merkle_aggregation.exceptions import CleanupError
    from merkle_aggregation.models import AggregateTree, Node


class OrchestratorState(str, enum.Enum):
    """States of one aggregation run.

    ``IDLE -> PROVISIONING -> DISTRIBUTING -> AWAITING -> AGGREGATING``
    then one of the terminal states ``COMPLETED``, ``FAILED`` or
    ``CANCELLED``.
    """

    IDLE = "idle"
    PROVISIONING = "provisioning"
    DISTRIBUTING = "distributing"
    AWAITING = "awaiting"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {OrchestratorState.COMPLETED, OrchestratorState.FAILED, OrchestratorState.CANCELLED}
)


@dataclass(frozen=True)
class AggregationResult:
    """Outcome of a successful run.

    Frozen: the result is immutable once the run completes.

    Attributes:
        tree: The aggregate tree, owned by the caller.
        chunk_count: Number of chunks (and workers) actually used, after
            clamping to the entry count.
        cleanup_error: Worker teardown failures, if any. Reported next to
            the tree, never instead of it.
    """

    tree: AggregateTree
    chunk_count: int
    cleanup_error: CleanupError | None = None

    @property
    def root(self) -> Node:
        return self.tree.root

    @property
    def depth(self) -> int:
        return self.tree.depth
