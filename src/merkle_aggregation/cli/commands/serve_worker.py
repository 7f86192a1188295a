"""merkle-aggregation serve-worker: run the reference mini-tree worker."""

from __future__ import annotations

import click

from merkle_aggregation.config import DEFAULT_WORKER_PORT
from merkle_aggregation.tree import OddNodePolicy
from merkle_aggregation.worker import run_worker


@click.command("serve-worker")
@click.option("--host", default="0.0.0.0", show_default=True, help="Bind address.")
@click.option(
    "--port",
    default=DEFAULT_WORKER_PORT,
    show_default=True,
    envvar="MERKLE_AGG_WORKER_PORT",
    help="Listen port.",
)
@click.option(
    "--odd-node-policy",
    type=click.Choice([p.value for p in OddNodePolicy]),
    default=OddNodePolicy.CARRY_UP.value,
    show_default=True,
    help="How the last node of an odd-sized level is lifted.",
)
def serve_worker(host: str, port: int, odd_node_policy: str) -> None:
    """Serve POST / and answer each entry batch with its sum tree."""
    run_worker(host=host, port=port, odd_node_policy=OddNodePolicy(odd_node_policy))
