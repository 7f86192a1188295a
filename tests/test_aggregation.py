"""Tests for the Aggregator.

Includes the sum-preservation and chunk-permutation properties, and the
check that the aggregate layer nests on mini-trees with the same odd-node
convention the workers use.
"""

from __future__ import annotations

import dataclasses

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from merkle_aggregation.aggregation import Aggregator
from merkle_aggregation.exceptions import AggregationError
from merkle_aggregation.hashing import Sha256Hasher
from merkle_aggregation.models import Entry, Node
from merkle_aggregation.orchestrator.partition import partition
from merkle_aggregation.tree import OddNodePolicy, build_levels, build_mini_tree
from tests.conftest import ConcatHasher
from tests.strategies import entry_sets, entry_sets_with_chunks


def _column_sums(entries: list[Entry]) -> tuple[int, ...]:
    return tuple(sum(col) for col in zip(*(e.balances for e in entries)))


def _aggregate(entries, chunk_count, hasher=None, policy=OddNodePolicy.CARRY_UP):
    hasher = hasher or Sha256Hasher()
    minis = [build_mini_tree(c, hasher, policy) for c in partition(entries, chunk_count)]
    return Aggregator(hasher=hasher, odd_node_policy=policy).build_from_mini_trees(minis)


class TestAggregatorBuild:
    def test_single_root_depth_zero(self) -> None:
        root = Node(hash=b"r", balances=(3, 4))
        tree = Aggregator(hasher=ConcatHasher()).build([root])
        assert tree.depth == 0
        assert tree.root == root
        assert tree.nodes == ((root,),)

    def test_two_roots(self) -> None:
        a = Node(hash=b"a", balances=(11888, 41163))
        b = Node(hash=b"b", balances=(67823, 18651))
        tree = Aggregator(hasher=ConcatHasher()).build([a, b])
        assert tree.depth == 1
        assert tree.root.balances == (79711, 59814)
        assert tree.root.hash == b"(a+b)"

    def test_chunk_order_preserved_in_leaves(self) -> None:
        roots = [Node(hash=x.encode(), balances=(1,)) for x in "abc"]
        tree = Aggregator(hasher=ConcatHasher()).build(roots)
        assert tree.leaves == tuple(roots)
        assert tree.root.hash == b"((a+b)+c)"

    def test_empty_rejected(self) -> None:
        with pytest.raises(AggregationError, match="zero chunk roots"):
            Aggregator().build([])

    def test_column_mismatch_rejected(self) -> None:
        roots = [Node(hash=b"a", balances=(1, 2)), Node(hash=b"b", balances=(1,))]
        with pytest.raises(AggregationError, match="Chunk 1"):
            Aggregator().build(roots)

    def test_mini_tree_count_mismatch_rejected(self, reference_entries) -> None:
        mini = build_mini_tree(reference_entries, Sha256Hasher())
        with pytest.raises(AggregationError, match="mini-trees"):
            Aggregator().build([mini.root, mini.root], [mini])

    def test_root_width_must_match_chunk_entries(self, reference_entries) -> None:
        mini = build_mini_tree(reference_entries, Sha256Hasher())
        wide_root = Node(hash=mini.root.hash, balances=(1, 2, 3))
        wide = dataclasses.replace(mini, root=wide_root, nodes=((wide_root,),))
        with pytest.raises(AggregationError, match="Chunk 0 root has 3 balance columns"):
            Aggregator().build_from_mini_trees([wide])


class TestBalanceRange:
    def test_within_range(self) -> None:
        roots = [Node(hash=b"a", balances=(255,))]
        assert Aggregator(max_balance_bytes=1).build(roots).root.balances == (255,)

    def test_overflow_rejected(self) -> None:
        roots = [Node(hash=b"a", balances=(200,)), Node(hash=b"b", balances=(56,))]
        with pytest.raises(AggregationError, match="column 0 exceeds 1 bytes"):
            Aggregator(hasher=ConcatHasher(), max_balance_bytes=1).build(roots)


class TestNesting:
    """The aggregate layer follows the workers' odd-node convention."""

    @pytest.mark.parametrize("policy", list(OddNodePolicy))
    def test_aggregate_levels_match_builder(self, policy) -> None:
        hasher = ConcatHasher()
        roots = [Node(hash=x.encode(), balances=(i,)) for i, x in enumerate("abcde")]
        tree = Aggregator(hasher=hasher, odd_node_policy=policy).build(roots)
        expected = build_levels(roots, hasher, policy)
        assert tree.nodes == tuple(tuple(level) for level in expected)

    def test_power_of_two_chunks_equal_unchunked_tree(self) -> None:
        # With equal power-of-two chunks the nested tree is the flat tree.
        hasher = ConcatHasher()
        entries = [Entry(f"u{i}", (i, 2 * i)) for i in range(8)]
        flat = build_mini_tree(entries, hasher)
        nested = _aggregate(entries, 4, hasher)
        assert nested.root == flat.root


class TestAggregationProperties:
    @settings(max_examples=60)
    @given(entry_sets_with_chunks(), st.sampled_from(list(OddNodePolicy)))
    def test_sum_preservation(self, entries_and_count, policy) -> None:
        entries, count = entries_and_count
        tree = _aggregate(entries, count, policy=policy)
        assert tree.root.balances == _column_sums(entries)

    @settings(max_examples=60)
    @given(st.data())
    def test_chunk_permutation_keeps_root_balances(self, data) -> None:
        entries = data.draw(entry_sets(min_size=2))
        count = data.draw(st.integers(min_value=1, max_value=len(entries)))
        shuffled = data.draw(st.permutations(entries))
        assert (
            _aggregate(entries, count).root.balances
            == _aggregate(shuffled, count).root.balances
        )

    def test_permutation_changes_root_hash(self, reference_entries) -> None:
        forward = _aggregate(reference_entries, 2)
        backward = _aggregate(list(reversed(reference_entries)), 2)
        assert forward.root.balances == backward.root.balances
        assert forward.root.hash != backward.root.hash

    def test_single_and_multi_chunk_agree(self, reference_entries) -> None:
        assert _aggregate(reference_entries, 1).root.balances == (79711, 59814)
        assert _aggregate(reference_entries, 2).root.balances == (79711, 59814)
