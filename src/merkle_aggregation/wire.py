"""JSON wire format spoken between executors and mini-tree workers.

Request: ``POST /`` with a JSON array of ``{"username", "balances"}``
objects, balances as decimal strings.

Response: ``{"root", "nodes", "depth", "is_sorted"}`` where each node is
``{"hash": "0x<hex>", "balances": ["0x<hex>", ...]}``. Digest width is
worker-defined: hashes of any hex length are accepted, an odd number of
nibbles is left-padded with one zero.

Pydantic models validate the shape; the ``to_*`` / ``from_*`` helpers
convert to and from the domain records in merkle_aggregation.models.
"""

from __future__ import annotations

import re
from typing import Sequence

from pydantic import BaseModel, Field, field_validator

from merkle_aggregation.models import Entry, MiniTree, Node


_HEX_RE = re.compile(r"0[xX][0-9a-fA-F]+")


def parse_hex(value: str) -> int:
    """Parse a ``0x``-prefixed hex string into a non-negative int.

    Only hex digits may follow the prefix: no sign, underscores or
    surrounding whitespace.
    """
    if not _HEX_RE.fullmatch(value):
        raise ValueError(f"Expected 0x-prefixed hex digits, got {value!r}")
    return int(value[2:], 16)


def parse_digest(value: str) -> bytes:
    """Parse a ``0x``-prefixed hex digest into bytes, keeping its width."""
    parse_hex(value)
    digits = value[2:]
    if len(digits) % 2:
        digits = "0" + digits
    return bytes.fromhex(digits)


def format_hex(value: int) -> str:
    return hex(value)


class WireEntry(BaseModel):
    """One entry in a worker request."""

    username: str
    balances: list[str]

    @field_validator("balances")
    @classmethod
    def _decimal_balances(cls, balances: list[str]) -> list[str]:
        for balance in balances:
            if not (balance.isascii() and balance.isdigit()):
                raise ValueError(
                    f"Balance must be a non-negative decimal string, got {balance!r}"
                )
        return balances

    @classmethod
    def from_entry(cls, entry: Entry) -> WireEntry:
        return cls(username=entry.username, balances=[str(b) for b in entry.balances])

    def to_entry(self) -> Entry:
        return Entry.from_strings(self.username, self.balances)


class WireNode(BaseModel):
    """A node in a worker response."""

    hash: str
    balances: list[str]

    @field_validator("hash")
    @classmethod
    def _hex_hash(cls, value: str) -> str:
        parse_digest(value)
        return value

    @field_validator("balances")
    @classmethod
    def _hex_balances(cls, balances: list[str]) -> list[str]:
        for balance in balances:
            parse_hex(balance)
        return balances

    @classmethod
    def from_node(cls, node: Node) -> WireNode:
        return cls(
            hash=node.hash_hex,
            balances=[format_hex(b) for b in node.balances],
        )

    def to_node(self) -> Node:
        return Node(
            hash=parse_digest(self.hash),
            balances=tuple(parse_hex(b) for b in self.balances),
        )


class WireMiniTree(BaseModel):
    """A worker's successful response body."""

    root: WireNode
    nodes: list[list[WireNode]]
    depth: int = Field(ge=0)
    is_sorted: bool = False

    def to_mini_tree(self, entries: Sequence[Entry] = ()) -> MiniTree:
        return MiniTree(
            root=self.root.to_node(),
            nodes=tuple(tuple(n.to_node() for n in level) for level in self.nodes),
            depth=self.depth,
            is_sorted=self.is_sorted,
            entries=tuple(entries),
        )

    @classmethod
    def from_mini_tree(cls, tree: MiniTree) -> WireMiniTree:
        return cls(
            root=WireNode.from_node(tree.root),
            nodes=[[WireNode.from_node(n) for n in level] for level in tree.nodes],
            depth=tree.depth,
            is_sorted=tree.is_sorted,
        )


def encode_entries(entries: Sequence[Entry]) -> list[dict]:
    """Serialize a chunk to the JSON-ready request body."""
    return [WireEntry.from_entry(e).model_dump() for e in entries]
