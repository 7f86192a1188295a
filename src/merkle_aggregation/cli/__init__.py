"""merkle-aggregation CLI: run aggregations and serve reference workers.

This module is never imported from merkle_aggregation/__init__.py.
It is only loaded via the ``merkle-aggregation`` entry point defined in
pyproject.toml.
"""

from __future__ import annotations

import logging

import click
from rich.logging import RichHandler

from merkle_aggregation.cli.formatting import get_console

_LOG_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def configure_logging(verbosity: int) -> None:
    """Route library logging through rich; ``-v`` for INFO, ``-vv`` for DEBUG."""
    level = _LOG_LEVELS[min(verbosity, len(_LOG_LEVELS) - 1)]
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=get_console(stderr=True), show_path=False)],
        force=True,
    )


@click.group()
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase log verbosity (-v info, -vv debug).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: int) -> None:
    """Distributed Merkle sum tree aggregation."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(verbose)


# Register subcommands after cli group is defined
from merkle_aggregation.cli.commands.run import run  # noqa: E402
from merkle_aggregation.cli.commands.serve_worker import serve_worker  # noqa: E402

cli.add_command(run)
cli.add_command(serve_worker)
