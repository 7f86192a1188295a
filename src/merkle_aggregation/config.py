"""Configuration models for the aggregation pipeline.

OrchestratorConfig holds per-run tuning (timeouts, tree conventions).
MockSpawnerConfig, LocalSpawnerConfig and CloudSpawnerConfig select and
configure a spawner variant; ``create_spawner()`` in
merkle_aggregation.spawners turns one into a Spawner.

Defaults can be overridden with ``MERKLE_AGG_*`` environment variables.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from merkle_aggregation.hashing import DEFAULT_HASHER, NodeHasher
from merkle_aggregation.tree import OddNodePolicy

DEFAULT_WORKER_IMAGE = "merkle-aggregation-worker:latest"
DEFAULT_WORKER_PORT = 4000


class FailureMode(str, enum.Enum):
    """Failure a mock worker injects on its first request."""

    REJECT = "reject"
    MALFORMED = "malformed"
    HANG = "hang"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def default_request_timeout() -> float:
    return _env_float("MERKLE_AGG_REQUEST_TIMEOUT", 60.0)


def default_grace_period() -> float:
    return _env_float("MERKLE_AGG_GRACE_PERIOD", 5.0)


def default_worker_image() -> str:
    return os.environ.get("MERKLE_AGG_WORKER_IMAGE", DEFAULT_WORKER_IMAGE)


@dataclass
class OrchestratorConfig:
    """Configuration for one or more aggregation runs.

    Mutable dataclass: callers may adjust settings between runs.

    Attributes:
        request_timeout: Seconds an executor waits for a worker response.
            Applies uniformly to every executor.
        cancel_grace_period: Seconds the orchestrator waits for cancelled
            executors to unwind before abandoning them.
        odd_node_policy: Odd-level convention for the aggregate tree. Must
            match the workers' convention.
        max_balance_bytes: Optional range check on aggregated root balances.
        hasher: Parent digest capability for the aggregate tree.
    """

    request_timeout: float = field(default_factory=default_request_timeout)
    cancel_grace_period: float = field(default_factory=default_grace_period)
    odd_node_policy: OddNodePolicy = OddNodePolicy.CARRY_UP
    max_balance_bytes: int | None = None
    hasher: NodeHasher = DEFAULT_HASHER


class MockSpawnerConfig(BaseModel):
    """In-process test-double workers.

    When ``addresses`` is set, no listeners are started: the given
    ``host:port`` addresses are handed out as-is (bring your own workers).
    """

    kind: Literal["mock"] = "mock"
    host: str = "127.0.0.1"
    addresses: Optional[list[str]] = None
    failures: dict[int, FailureMode] = Field(default_factory=dict)
    odd_node_policy: OddNodePolicy = OddNodePolicy.CARRY_UP


class LocalSpawnerConfig(BaseModel):
    """One container per worker on the local container engine."""

    kind: Literal["local"] = "local"
    image: str = Field(default_factory=default_worker_image)
    container_prefix: str = "mini_tree"
    container_port: int = DEFAULT_WORKER_PORT
    host: str = "127.0.0.1"
    readiness_timeout: float = 30.0
    readiness_interval: float = 0.25


class CloudSpawnerConfig(BaseModel):
    """A replicated swarm service on a prepared multi-node cluster.

    ``worker_nodes`` are the hosts the replicas are reached on; one handle
    is produced per node, addressed as ``http://<node>:<port>``. When
    ``service_name`` is None the nodes are used as-is and nothing is
    created or removed. Without ``compose_path`` the service runs ``image``
    with ``port`` published to the worker port.
    """

    kind: Literal["cloud"] = "cloud"
    worker_nodes: list[str]
    port: int = DEFAULT_WORKER_PORT
    service_name: Optional[str] = None
    compose_path: Optional[str] = None
    image: str = Field(default_factory=default_worker_image)
    readiness_timeout: float = 120.0
    readiness_interval: float = 1.0


SpawnerConfig = Union[MockSpawnerConfig, LocalSpawnerConfig, CloudSpawnerConfig]
