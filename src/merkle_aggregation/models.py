"""Domain records for the aggregation pipeline.

Provides Entry, Node, MiniTree, AggregateTree and WorkerHandle. All
records are frozen: entries and chunks are created once per run, mini-tree
results are immutable once received, and the aggregate tree is handed to
the caller as-is.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class WorkerKind(str, enum.Enum):
    """Which spawner variant created a worker."""

    MOCK = "mock"
    LOCAL_CONTAINER = "local-container"
    CLOUD_SERVICE = "cloud-service"


@dataclass(frozen=True)
class Entry:
    """One account holder's record: identifier plus per-asset balances.

    ``username`` is not required to be unique. Balances are non-negative
    integers, one per tracked asset column.
    """

    username: str
    balances: tuple[int, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.balances, tuple):
            object.__setattr__(self, "balances", tuple(self.balances))
        for balance in self.balances:
            if balance < 0:
                raise ValueError(
                    f"Entry '{self.username}' has a negative balance: {balance}"
                )

    @classmethod
    def from_strings(cls, username: str, balances: list[str]) -> Entry:
        """Build an entry from decimal balance strings."""
        return cls(username=username, balances=tuple(int(b, 10) for b in balances))


@dataclass(frozen=True)
class Node:
    """A sum-tree node: digest plus the per-asset sums beneath it."""

    hash: bytes
    balances: tuple[int, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.balances, tuple):
            object.__setattr__(self, "balances", tuple(self.balances))

    @property
    def hash_hex(self) -> str:
        """Digest rendered as a ``0x``-prefixed hex string."""
        return "0x" + self.hash.hex()


@dataclass(frozen=True)
class MiniTree:
    """A sum tree computed by one worker over one chunk.

    ``nodes[0]`` is the leaf level and ``nodes[-1]`` holds only the root.
    ``entries`` is the chunk that was sent to the worker, kept for lookups
    on the aggregate tree.
    """

    root: Node
    nodes: tuple[tuple[Node, ...], ...]
    depth: int
    is_sorted: bool = False
    entries: tuple[Entry, ...] = ()

    @property
    def leaves(self) -> tuple[Node, ...]:
        return self.nodes[0] if self.nodes else ()


@dataclass(frozen=True)
class AggregateTree:
    """The final tree built by treating every chunk root as a leaf.

    Attributes:
        root: Root node. Its balances equal the elementwise sum of every
            chunk root's balances.
        nodes: Level-by-level node list, chunk roots at level 0.
        depth: ceil(log2(chunk count)), 0 for a single chunk.
        mini_trees: The per-chunk trees in chunk order.
    """

    root: Node
    nodes: tuple[tuple[Node, ...], ...]
    depth: int
    mini_trees: tuple[MiniTree, ...] = ()

    @property
    def leaves(self) -> tuple[Node, ...]:
        return self.nodes[0]

    def mini_tree(self, chunk_index: int) -> MiniTree:
        return self.mini_trees[chunk_index]

    def locate(self, index: int) -> tuple[int, int]:
        """Map a global entry index to (chunk_index, index_within_chunk).

        Raises:
            IndexError: If index is outside the entries carried by the
                mini-trees.
        """
        if index < 0:
            raise IndexError(f"Entry index must be non-negative, got {index}")
        offset = index
        for chunk_index, tree in enumerate(self.mini_trees):
            if offset < len(tree.entries):
                return chunk_index, offset
            offset -= len(tree.entries)
        raise IndexError(f"Entry index {index} out of range")

    def get_entry(self, index: int) -> Entry:
        """Return the entry at a global index (original input order)."""
        chunk_index, offset = self.locate(index)
        return self.mini_trees[chunk_index].entries[offset]


@dataclass(frozen=True)
class WorkerHandle:
    """Identity of one running worker plus what is needed to tear it down.

    Attributes:
        address: Base URL (``http://host:port``) requests are sent to.
        kind: Spawner variant that created the worker.
        token: Opaque teardown token (container id, service id, listener
            index). Only the creating spawner interprets it.
        index: Position in the acquired handle sequence.
    """

    address: str
    kind: WorkerKind
    token: Any = None
    index: int = 0
