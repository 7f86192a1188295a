"""merkle-aggregation run: aggregate entries from CSV files."""

from __future__ import annotations

import asyncio

import click

from merkle_aggregation.cli.formatting import (
    format_cleanup_warning,
    format_error,
    format_result,
    get_console,
)
from merkle_aggregation.config import (
    DEFAULT_WORKER_PORT,
    CloudSpawnerConfig,
    LocalSpawnerConfig,
    MockSpawnerConfig,
    OrchestratorConfig,
    default_worker_image,
)
from merkle_aggregation.entries import load_entries
from merkle_aggregation.exceptions import OrchestrationError
from merkle_aggregation.orchestrator import run_aggregation
from merkle_aggregation.tree import OddNodePolicy


def _spawner_config(
    spawner: str,
    workers: tuple[str, ...],
    image: str,
    service_name: str | None,
    compose: str | None,
    port: int,
    policy: OddNodePolicy,
):
    if spawner == "local":
        return LocalSpawnerConfig(image=image)
    if spawner == "cloud":
        if not workers:
            raise click.UsageError("--worker is required for the cloud spawner")
        return CloudSpawnerConfig(
            worker_nodes=list(workers),
            port=port,
            service_name=service_name,
            compose_path=compose,
            image=image,
        )
    return MockSpawnerConfig(
        addresses=list(workers) or None, odd_node_policy=policy
    )


@click.command()
@click.argument(
    "csv_files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False),
)
@click.option(
    "-n",
    "--executors",
    default=1,
    show_default=True,
    type=click.IntRange(min=1),
    help="Number of chunks, one worker each.",
)
@click.option(
    "--spawner",
    type=click.Choice(["mock", "local", "cloud"]),
    default="mock",
    show_default=True,
    help="How workers are provisioned.",
)
@click.option(
    "--worker",
    "workers",
    multiple=True,
    help="Worker address (mock) or swarm node (cloud). Repeat once per executor.",
)
@click.option(
    "--image",
    default=default_worker_image,
    envvar="MERKLE_AGG_WORKER_IMAGE",
    help="Worker image for the local and cloud spawners.",
)
@click.option("--service-name", default=None, help="Swarm service to create or scale.")
@click.option(
    "--compose",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="docker-compose file describing the swarm service.",
)
@click.option(
    "--port",
    default=DEFAULT_WORKER_PORT,
    show_default=True,
    help="Published worker port on swarm nodes.",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    envvar="MERKLE_AGG_REQUEST_TIMEOUT",
    help="Worker request timeout in seconds.",
)
@click.option(
    "--grace",
    type=float,
    default=None,
    envvar="MERKLE_AGG_GRACE_PERIOD",
    help="Seconds cancelled executors get to unwind.",
)
@click.option(
    "--odd-node-policy",
    type=click.Choice([p.value for p in OddNodePolicy]),
    default=OddNodePolicy.CARRY_UP.value,
    show_default=True,
    help="How the last node of an odd-sized level is lifted.",
)
@click.option(
    "--max-balance-bytes",
    type=click.IntRange(min=1),
    default=None,
    help="Reject aggregated balances that do not fit in this many bytes.",
)
def run(
    csv_files: tuple[str, ...],
    executors: int,
    spawner: str,
    workers: tuple[str, ...],
    image: str,
    service_name: str | None,
    compose: str | None,
    port: int,
    timeout: float | None,
    grace: float | None,
    odd_node_policy: str,
    max_balance_bytes: int | None,
) -> None:
    """Build an aggregate Merkle sum tree over entries in CSV_FILES."""
    console = get_console()
    policy = OddNodePolicy(odd_node_policy)
    config = OrchestratorConfig(
        odd_node_policy=policy, max_balance_bytes=max_balance_bytes
    )
    if timeout is not None:
        config.request_timeout = timeout
    if grace is not None:
        config.cancel_grace_period = grace
    spawner_config = _spawner_config(
        spawner, workers, image, service_name, compose, port, policy
    )

    try:
        entries = []
        for path in csv_files:
            entries.extend(load_entries(path))
        result = asyncio.run(
            run_aggregation(entries, executors, spawner_config, config)
        )
    except OrchestrationError as e:
        format_error(str(e), console)
        if e.cleanup_error is not None:
            format_cleanup_warning(e.cleanup_error, console)
        raise SystemExit(1) from None
    except OSError as e:
        format_error(str(e), console)
        raise SystemExit(1) from None

    format_result(result, console)
