"""Aggregator: merges ordered chunk roots into one aggregate sum tree.

Chunk roots become the leaf level of a new tree, position ``i`` holding
chunk ``i``'s root. The tree is built with the same builder and odd-node
policy the reference worker uses, so the aggregate layer nests cleanly on
top of the mini-trees.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from merkle_aggregation.exceptions import AggregationError
from merkle_aggregation.hashing import DEFAULT_HASHER
from merkle_aggregation.models import AggregateTree
from merkle_aggregation.tree import OddNodePolicy, build_levels, tree_depth

if TYPE_CHECKING:
    from merkle_aggregation.hashing import NodeHasher
    from merkle_aggregation.models import MiniTree, Node

logger = logging.getLogger(__name__)


class Aggregator:
    """Builds AggregateTree instances from chunk roots.

    Usage::

        aggregator = Aggregator(hasher=Sha256Hasher())
        tree = aggregator.build([mini.root for mini in mini_trees])
        assert tree.root.balances == expected_totals
    """

    def __init__(
        self,
        hasher: NodeHasher | None = None,
        odd_node_policy: OddNodePolicy = OddNodePolicy.CARRY_UP,
        max_balance_bytes: int | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            hasher: Parent digest capability. Defaults to Sha256Hasher.
            odd_node_policy: Convention for odd-sized levels. Must match
                the workers' convention.
            max_balance_bytes: When set, every aggregated root balance must
                be below ``2 ** (8 * max_balance_bytes)``.
        """
        self._hasher = hasher or DEFAULT_HASHER
        self._policy = OddNodePolicy(odd_node_policy)
        self._max_balance_bytes = max_balance_bytes

    def build(
        self,
        chunk_roots: Sequence[Node],
        mini_trees: Sequence[MiniTree] = (),
    ) -> AggregateTree:
        """Build the aggregate tree over chunk roots.

        Args:
            chunk_roots: Mini-tree roots in chunk order.
            mini_trees: Optional mini-trees the roots came from, kept on
                the result for entry lookups.

        Returns:
            AggregateTree with root, level list and depth.

        Raises:
            AggregationError: On empty input, mismatched balance column
                counts, or totals outside the configured range.
        """
        if not chunk_roots:
            raise AggregationError("Cannot aggregate zero chunk roots")
        if mini_trees and len(mini_trees) != len(chunk_roots):
            raise AggregationError(
                f"Got {len(mini_trees)} mini-trees for {len(chunk_roots)} chunk roots"
            )

        width = len(chunk_roots[0].balances)
        for index, root in enumerate(chunk_roots):
            if len(root.balances) != width:
                raise AggregationError(
                    f"Chunk {index} root has {len(root.balances)} balance "
                    f"columns, expected {width}"
                )

        try:
            levels = build_levels(chunk_roots, self._hasher, self._policy)
        except ValueError as exc:
            raise AggregationError(str(exc)) from exc

        root = levels[-1][0]
        self._check_range(root)

        depth = tree_depth(len(chunk_roots))
        logger.debug(
            "Aggregated %d chunk roots into depth-%d tree", len(chunk_roots), depth
        )
        return AggregateTree(
            root=root,
            nodes=tuple(tuple(level) for level in levels),
            depth=depth,
            mini_trees=tuple(mini_trees),
        )

    def build_from_mini_trees(self, mini_trees: Sequence[MiniTree]) -> AggregateTree:
        """Aggregate the roots of ``mini_trees``.

        Each root must have as many balance columns as the entries of its
        chunk, when the mini-tree carries them.
        """
        for index, tree in enumerate(mini_trees):
            if not tree.entries:
                continue
            width = len(tree.entries[0].balances)
            if len(tree.root.balances) != width:
                raise AggregationError(
                    f"Chunk {index} root has {len(tree.root.balances)} balance "
                    f"columns, its entries have {width}"
                )
        return self.build([tree.root for tree in mini_trees], mini_trees)

    def _check_range(self, root: Node) -> None:
        if self._max_balance_bytes is None:
            return
        limit = 1 << (8 * self._max_balance_bytes)
        for column, balance in enumerate(root.balances):
            if balance >= limit:
                raise AggregationError(
                    f"Accumulated balance in column {column} exceeds "
                    f"{self._max_balance_bytes} bytes: {balance}"
                )
