"""Merkle aggregation: distributed Merkle sum tree construction.

Entries are split into contiguous chunks, each chunk is turned into a
mini-tree by an independent worker, and the mini-tree roots are combined
into one aggregate sum tree.
"""

from merkle_aggregation._version import __version__

# Core entry points
from merkle_aggregation.orchestrator import (
    AggregationResult,
    Orchestrator,
    OrchestratorState,
    run_aggregation,
)
from merkle_aggregation.aggregation import Aggregator
from merkle_aggregation.executor import Executor

# Domain records
from merkle_aggregation.models import (
    AggregateTree,
    Entry,
    MiniTree,
    Node,
    WorkerHandle,
    WorkerKind,
)

# Tree building and hashing
from merkle_aggregation.hashing import DEFAULT_HASHER, NodeHasher, Sha256Hasher
from merkle_aggregation.tree import OddNodePolicy, build_levels, build_mini_tree, tree_depth

# Configuration
from merkle_aggregation.config import (
    CloudSpawnerConfig,
    FailureMode,
    LocalSpawnerConfig,
    MockSpawnerConfig,
    OrchestratorConfig,
)

# Spawners
from merkle_aggregation.spawners import (
    CloudSpawner,
    LocalSpawner,
    MockSpawner,
    Spawner,
    create_spawner,
)

# Entry loading
from merkle_aggregation.entries import load_entries

# Exceptions
from merkle_aggregation.exceptions import (
    AggregationError,
    CleanupError,
    EntryValidationError,
    ExecutorError,
    MalformedResponseError,
    OrchestrationError,
    ProvisioningError,
    RunCancelledError,
    WorkerRejectedError,
    WorkerUnreachableError,
)

__all__ = [
    "__version__",
    # Core
    "AggregationResult",
    "Aggregator",
    "Executor",
    "Orchestrator",
    "OrchestratorState",
    "run_aggregation",
    # Records
    "AggregateTree",
    "Entry",
    "MiniTree",
    "Node",
    "WorkerHandle",
    "WorkerKind",
    # Trees
    "DEFAULT_HASHER",
    "NodeHasher",
    "OddNodePolicy",
    "Sha256Hasher",
    "build_levels",
    "build_mini_tree",
    "tree_depth",
    # Config
    "CloudSpawnerConfig",
    "FailureMode",
    "LocalSpawnerConfig",
    "MockSpawnerConfig",
    "OrchestratorConfig",
    # Spawners
    "CloudSpawner",
    "LocalSpawner",
    "MockSpawner",
    "Spawner",
    "create_spawner",
    # Entries
    "load_entries",
    # Exceptions
    "AggregationError",
    "CleanupError",
    "EntryValidationError",
    "ExecutorError",
    "MalformedResponseError",
    "OrchestrationError",
    "ProvisioningError",
    "RunCancelledError",
    "WorkerRejectedError",
    "WorkerUnreachableError",
]
