"""Node hashing capability for sum trees.

The aggregation core never hardcodes a commitment scheme: leaf and parent
digests come from a NodeHasher injected into the tree builder. The only
contract is determinism and order sensitivity (``combine(a, b)`` and
``combine(b, a)`` differ).

Sha256Hasher is the built-in implementation. It hashes a canonical JSON
encoding of the inputs, so the same inputs always produce the same digest
regardless of host or Python version.
"""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Any, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from merkle_aggregation.models import Node


def canonical_json(data: Any) -> bytes:
    """Serialize data to canonical JSON bytes.

    Uses sorted keys, compact separators, and UTF-8 encoding
    to ensure deterministic output.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


@runtime_checkable
class NodeHasher(Protocol):
    """Protocol for pluggable leaf/parent digest functions.

    Any object with ``leaf()`` and ``combine()`` matching these signatures
    works. The reference worker and the aggregator must use the same
    hasher for the two tree layers to be structurally compatible.
    """

    def leaf(self, username: str, balances: Sequence[int]) -> bytes:
        """Digest of a leaf built from one entry."""
        ...

    def combine(self, left: Node, right: Node) -> bytes:
        """Digest of a parent from its two children (order-sensitive)."""
        ...


class Sha256Hasher:
    """SHA-256 over canonical JSON of the node inputs.

    Balances are encoded as decimal strings so arbitrarily large integers
    survive the JSON round trip.
    """

    def leaf(self, username: str, balances: Sequence[int]) -> bytes:
        payload = {
            "username": username,
            "balances": [str(b) for b in balances],
        }
        return hashlib.sha256(canonical_json(payload)).digest()

    def combine(self, left: Node, right: Node) -> bytes:
        payload = [
            left.hash.hex(),
            right.hash.hex(),
            [str(b) for b in left.balances],
            [str(b) for b in right.balances],
        ]
        return hashlib.sha256(canonical_json(payload)).digest()


DEFAULT_HASHER: NodeHasher = Sha256Hasher()
