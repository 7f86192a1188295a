"""Worker spawners: mock (in-process), local (containers), cloud (swarm)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from merkle_aggregation.config import (
    CloudSpawnerConfig,
    LocalSpawnerConfig,
    MockSpawnerConfig,
)
from merkle_aggregation.spawners.base import BaseSpawner, Spawner
from merkle_aggregation.spawners.cloud import CloudSpawner
from merkle_aggregation.spawners.local import LocalSpawner
from merkle_aggregation.spawners.mock import MockSpawner

if TYPE_CHECKING:
    from merkle_aggregation.config import SpawnerConfig
    from merkle_aggregation.hashing import NodeHasher


def create_spawner(
    config: SpawnerConfig, hasher: NodeHasher | None = None
) -> Spawner:
    """Build the spawner a config describes.

    Args:
        config: One of the spawner config models.
        hasher: Digest capability for in-process mock workers. Ignored by
            the container-based spawners, whose workers bring their own.
    """
    if isinstance(config, MockSpawnerConfig):
        return MockSpawner(config, hasher=hasher)
    if isinstance(config, LocalSpawnerConfig):
        return LocalSpawner(config)
    if isinstance(config, CloudSpawnerConfig):
        return CloudSpawner(config)
    raise TypeError(f"Unknown spawner config: {type(config).__name__}")


__all__ = [
    "BaseSpawner",
    "CloudSpawner",
    "LocalSpawner",
    "MockSpawner",
    "Spawner",
    "create_spawner",
]
