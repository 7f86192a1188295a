"""Tests for the reference worker application.

Each test serves the app on an ephemeral loopback port and talks to it
with httpx, as an executor would.
"""

from __future__ import annotations

import contextlib

import httpx
import pytest
from aiohttp import web

from merkle_aggregation.tree import OddNodePolicy
from merkle_aggregation.wire import WireMiniTree
from merkle_aggregation.worker import create_app
from tests.conftest import ConcatHasher, run


@contextlib.asynccontextmanager
async def _serving(app: web.Application):
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    try:
        yield f"http://127.0.0.1:{runner.addresses[0][1]}"
    finally:
        await runner.cleanup()


def _post(body, *, app: web.Application | None = None, raw: bytes | None = None):
    async def scenario():
        async with _serving(app or create_app()) as base:
            async with httpx.AsyncClient() as client:
                if raw is not None:
                    return await client.post(base + "/", content=raw)
                return await client.post(base + "/", json=body)

    return run(scenario())


class TestCreateTree:
    def test_reference_scenario(self) -> None:
        response = _post(
            [
                {"username": "dxGaEAii", "balances": ["11888", "41163"]},
                {"username": "MBlfbBGI", "balances": ["67823", "18651"]},
            ]
        )
        assert response.status_code == 200
        tree = WireMiniTree.model_validate(response.json()).to_mini_tree()
        assert tree.depth == 1
        assert tree.root.balances == (79711, 59814)
        assert len(tree.nodes[0]) == 2
        assert response.json()["is_sorted"] is False
        assert response.json()["root"]["balances"] == ["0x1375f", "0xe9a6"]

    def test_uses_injected_hasher_and_policy(self) -> None:
        app = create_app(hasher=ConcatHasher(), odd_node_policy=OddNodePolicy.ZERO_PAD)
        response = _post(
            [{"username": u, "balances": ["1"]} for u in "abc"], app=app
        )
        tree = WireMiniTree.model_validate(response.json()).to_mini_tree()
        assert tree.root.hash == b"((a:1+b:1)+(c:1+\x00\x00\x00))"


class TestCreateTreeRejections:
    """Malformed input is a 400, mismatched columns a 422."""

    def test_invalid_json(self) -> None:
        assert _post(None, raw=b"{not json").status_code == 400

    def test_not_a_list(self) -> None:
        assert _post({"username": "a", "balances": ["1"]}).status_code == 400

    def test_empty_list(self) -> None:
        assert _post([]).status_code == 400

    @pytest.mark.parametrize(
        "entry",
        [
            {"username": "a", "balances": ["-1"]},
            {"username": "a", "balances": ["0x10"]},
            {"username": "a"},
            {"balances": ["1"]},
        ],
    )
    def test_malformed_entry(self, entry) -> None:
        response = _post([entry])
        assert response.status_code == 400
        assert "Malformed entry" in response.json()["error"]

    def test_mismatched_columns(self) -> None:
        response = _post(
            [
                {"username": "a", "balances": ["1", "2"]},
                {"username": "b", "balances": ["1"]},
            ]
        )
        assert response.status_code == 422
        assert "Entry 1" in response.json()["error"]

    def test_get_not_allowed(self) -> None:
        async def scenario():
            async with _serving(create_app()) as base:
                async with httpx.AsyncClient() as client:
                    return await client.get(base + "/")

        assert run(scenario()).status_code == 405
