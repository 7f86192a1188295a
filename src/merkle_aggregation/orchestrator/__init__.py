"""Orchestrator package: the aggregation run state machine.

Provides the Orchestrator class, the ``run_aggregation`` entry point,
run state and result types, and entry partitioning.
"""

from merkle_aggregation.config import OrchestratorConfig
from merkle_aggregation.orchestrator.models import AggregationResult, OrchestratorState
from merkle_aggregation.orchestrator.partition import (
    chunk_bounds,
    partition,
    validate_entries,
)
from merkle_aggregation.orchestrator.pipeline import Orchestrator, run_aggregation

__all__ = [
    # Core
    "Orchestrator",
    "run_aggregation",
    # Config
    "OrchestratorConfig",
    "OrchestratorState",
    # Models
    "AggregationResult",
    # Partitioning
    "chunk_bounds",
    "partition",
    "validate_entries",
]
