"""Reference mini-tree worker service.

An aiohttp application serving ``POST /``: it accepts a JSON array of
entries, builds a sum tree over them and answers with the wire-format
mini-tree. The mock spawner mounts this application on in-process
listeners; ``merkle-aggregation serve-worker`` runs it standalone (this is
what the worker container image executes).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING

from aiohttp import web
from pydantic import ValidationError

from merkle_aggregation.hashing import DEFAULT_HASHER
from merkle_aggregation.tree import OddNodePolicy, build_mini_tree
from merkle_aggregation.wire import WireEntry, WireMiniTree

if TYPE_CHECKING:
    from merkle_aggregation.hashing import NodeHasher

logger = logging.getLogger(__name__)

HASHER_KEY = web.AppKey("hasher", object)
POLICY_KEY = web.AppKey("odd_node_policy", OddNodePolicy)


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def create_tree(request: web.Request) -> web.Response:
    """Handle ``POST /``: entries in, mini-tree out."""
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        return _error(400, f"Request body is not valid JSON: {exc}")
    if not isinstance(payload, list):
        return _error(400, "Request body must be a JSON array of entries")
    if not payload:
        return _error(400, "Request contains no entries")

    try:
        entries = [WireEntry.model_validate(item).to_entry() for item in payload]
    except (ValidationError, ValueError) as exc:
        return _error(400, f"Malformed entry: {exc}")

    width = len(entries[0].balances)
    for position, entry in enumerate(entries):
        if len(entry.balances) != width:
            return _error(
                422,
                f"Entry {position} has {len(entry.balances)} balance columns, "
                f"expected {width}",
            )

    hasher = request.app[HASHER_KEY]
    policy = request.app[POLICY_KEY]
    started = time.monotonic()
    tree = await asyncio.to_thread(build_mini_tree, entries, hasher, policy)
    logger.info(
        "Built tree over %d entries in %.1fms",
        len(entries),
        (time.monotonic() - started) * 1000,
    )
    return web.json_response(WireMiniTree.from_mini_tree(tree).model_dump())


def create_app(
    hasher: NodeHasher | None = None,
    odd_node_policy: OddNodePolicy = OddNodePolicy.CARRY_UP,
    middlewares: tuple = (),
) -> web.Application:
    """Create the worker application.

    Args:
        hasher: Digest capability. Must match the aggregator's.
        odd_node_policy: Odd-level convention. Must match the aggregator's.
        middlewares: Extra aiohttp middlewares (the mock spawner uses this
            for failure injection).
    """
    app = web.Application(middlewares=list(middlewares))
    app[HASHER_KEY] = hasher or DEFAULT_HASHER
    app[POLICY_KEY] = OddNodePolicy(odd_node_policy)
    app.router.add_post("/", create_tree)
    return app


def run_worker(
    host: str = "0.0.0.0",
    port: int = 4000,
    odd_node_policy: OddNodePolicy = OddNodePolicy.CARRY_UP,
) -> None:
    """Serve the worker until interrupted (blocking)."""
    logger.info("Serving mini-tree worker on %s:%d", host, port)
    web.run_app(
        create_app(odd_node_policy=odd_node_policy),
        host=host,
        port=port,
        print=None,
    )
