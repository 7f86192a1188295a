"""Level-by-level Merkle sum tree construction.

Shared by the aggregator (chunk roots as leaves) and the reference worker
(entries as leaves) so both layers follow one pairing convention.

Every parent holds the elementwise sum of its children's balances and a
digest from the injected NodeHasher. An odd node at the end of a level is
handled per OddNodePolicy:

- ``CARRY_UP``: the node moves to the next level unchanged.
- ``ZERO_PAD``: the node is paired with a zero-balance padding node whose
  digest is all zero bytes.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Sequence

from merkle_aggregation.models import MiniTree, Node

if TYPE_CHECKING:
    from merkle_aggregation.hashing import NodeHasher
    from merkle_aggregation.models import Entry


class OddNodePolicy(str, enum.Enum):
    """How the last node of an odd-sized level is lifted."""

    CARRY_UP = "carry_up"
    ZERO_PAD = "zero_pad"


def tree_depth(leaf_count: int) -> int:
    """ceil(log2(leaf_count)) for more than one leaf, 0 otherwise."""
    if leaf_count <= 1:
        return 0
    return (leaf_count - 1).bit_length()


def combine_nodes(left: Node, right: Node, hasher: NodeHasher) -> Node:
    """Build a parent node from two children."""
    if len(left.balances) != len(right.balances):
        raise ValueError(
            f"Cannot combine nodes with {len(left.balances)} and "
            f"{len(right.balances)} balance columns"
        )
    balances = tuple(l + r for l, r in zip(left.balances, right.balances))
    return Node(hash=hasher.combine(left, right), balances=balances)


def leaves_from_entries(entries: Sequence[Entry], hasher: NodeHasher) -> list[Node]:
    """Turn entries into leaf nodes, preserving input order."""
    return [
        Node(hash=hasher.leaf(e.username, e.balances), balances=e.balances)
        for e in entries
    ]


def build_levels(
    leaves: Sequence[Node],
    hasher: NodeHasher,
    policy: OddNodePolicy = OddNodePolicy.CARRY_UP,
) -> list[list[Node]]:
    """Build all levels of a sum tree from its leaves.

    Args:
        leaves: Leaf level, in order. Must be non-empty and share one
            balance column count.
        hasher: Digest capability for parent nodes.
        policy: Odd-node convention.

    Returns:
        Levels from leaves (index 0) to a single-node root level. The
        number of levels is ``tree_depth(len(leaves)) + 1``.

    Raises:
        ValueError: On empty input or mismatched balance column counts.
    """
    if not leaves:
        raise ValueError("Cannot build a tree from zero leaves")
    width = len(leaves[0].balances)
    for position, leaf in enumerate(leaves):
        if len(leaf.balances) != width:
            raise ValueError(
                f"Leaf {position} has {len(leaf.balances)} balance columns, "
                f"expected {width}"
            )

    levels: list[list[Node]] = [list(leaves)]
    current = levels[0]
    while len(current) > 1:
        parents: list[Node] = []
        for i in range(0, len(current) - 1, 2):
            parents.append(combine_nodes(current[i], current[i + 1], hasher))
        if len(current) % 2 == 1:
            last = current[-1]
            if policy == OddNodePolicy.ZERO_PAD:
                padding = Node(hash=bytes(len(last.hash)), balances=(0,) * width)
                parents.append(combine_nodes(last, padding, hasher))
            else:
                parents.append(last)
        levels.append(parents)
        current = parents
    return levels


def build_mini_tree(
    entries: Sequence[Entry],
    hasher: NodeHasher,
    policy: OddNodePolicy = OddNodePolicy.CARRY_UP,
) -> MiniTree:
    """Build the full sum tree over one chunk of entries."""
    levels = build_levels(leaves_from_entries(entries, hasher), hasher, policy)
    return MiniTree(
        root=levels[-1][0],
        nodes=tuple(tuple(level) for level in levels),
        depth=tree_depth(len(entries)),
        entries=tuple(entries),
    )
