"""Shared test fixtures for merkle_aggregation.

Provides the reference entries, a transparent stand-in hasher, and a
helper for driving coroutines from synchronous tests.
"""

from __future__ import annotations

import asyncio

import pytest

from merkle_aggregation.models import Entry


class ConcatHasher:
    """Deterministic, order-sensitive stand-in for a real digest.

    Digests are readable byte strings, so tests can assert on the exact
    pairing structure of a tree.
    """

    def leaf(self, username, balances) -> bytes:
        return f"{username}:{','.join(str(b) for b in balances)}".encode()

    def combine(self, left, right) -> bytes:
        return b"(" + left.hash + b"+" + right.hash + b")"


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


@pytest.fixture
def reference_entries() -> list[Entry]:
    """The two entries used by the end-to-end scenarios."""
    return [
        Entry.from_strings("dxGaEAii", ["11888", "41163"]),
        Entry.from_strings("MBlfbBGI", ["67823", "18651"]),
    ]


@pytest.fixture
def concat_hasher() -> ConcatHasher:
    return ConcatHasher()


@pytest.fixture
def csv_file(tmp_path):
    """Write a semicolon-delimited entry file and return its path."""

    def _write(rows: list[str], header: str = "username;balances"):
        path = tmp_path / "entries.csv"
        path.write_text("\n".join([header, *rows]) + "\n", encoding="utf-8")
        return path

    return _write
