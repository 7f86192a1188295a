"""CLI tests for merkle-aggregation via Click's CliRunner.

The run command is exercised end to end with in-process mock workers;
serve-worker is checked with the blocking server patched out.
"""

from __future__ import annotations

import logging

import pytest
from click.testing import CliRunner

from merkle_aggregation.cli import cli
from merkle_aggregation.exceptions import OrchestrationError
from merkle_aggregation.tree import OddNodePolicy


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner():
    """Create a Click test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    """The CLI reconfigures the root logger; undo it after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def reference_csv(csv_file):
    return csv_file(["dxGaEAii;11888,41163", "MBlfbBGI;67823,18651"])


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRun:
    def test_mock_run_prints_root(self, runner, reference_csv) -> None:
        result = runner.invoke(cli, ["run", str(reference_csv), "-n", "2"])

        assert result.exit_code == 0, result.output
        assert "79711" in result.output
        assert "59814" in result.output
        assert "Chunks" in result.output

    def test_multiple_files_concatenated(self, runner, tmp_path) -> None:
        first = tmp_path / "a.csv"
        second = tmp_path / "b.csv"
        first.write_text("username;balances\ndxGaEAii;11888,41163\n")
        second.write_text("username;balances\nMBlfbBGI;67823,18651\n")

        result = runner.invoke(cli, ["run", str(first), str(second)])

        assert result.exit_code == 0, result.output
        assert "79711" in result.output

    def test_invalid_csv_reports_error(self, runner, csv_file) -> None:
        path = csv_file(["alice;1,x"])

        result = runner.invoke(cli, ["run", str(path)])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "non-negative integers" in result.output

    def test_cloud_requires_worker_nodes(self, runner, reference_csv) -> None:
        result = runner.invoke(cli, ["run", str(reference_csv), "--spawner", "cloud"])

        assert result.exit_code == 2
        assert "--worker is required" in result.output

    def test_missing_file(self, runner, tmp_path) -> None:
        result = runner.invoke(cli, ["run", str(tmp_path / "nope.csv")])
        assert result.exit_code == 2

    def test_zero_executors_rejected(self, runner, reference_csv) -> None:
        result = runner.invoke(cli, ["run", str(reference_csv), "-n", "0"])
        assert result.exit_code == 2

    def test_balance_limit(self, runner, reference_csv) -> None:
        result = runner.invoke(
            cli, ["run", str(reference_csv), "--max-balance-bytes", "2"]
        )

        assert result.exit_code == 1
        assert "exceeds 2 bytes" in result.output

    def test_timeout_from_env(self, runner, reference_csv, monkeypatch) -> None:
        captured = {}

        async def fake_run(entries, executors, spawner_config, config):
            captured["timeout"] = config.request_timeout
            raise OrchestrationError("stopped")

        monkeypatch.setattr(
            "merkle_aggregation.cli.commands.run.run_aggregation", fake_run
        )
        runner.invoke(
            cli,
            ["run", str(reference_csv)],
            env={"MERKLE_AGG_REQUEST_TIMEOUT": "7.5"},
        )

        assert captured["timeout"] == 7.5


# ---------------------------------------------------------------------------
# serve-worker
# ---------------------------------------------------------------------------


class TestServeWorker:
    def test_passes_options(self, runner, monkeypatch) -> None:
        calls = []
        monkeypatch.setattr(
            "merkle_aggregation.cli.commands.serve_worker.run_worker",
            lambda **kwargs: calls.append(kwargs),
        )

        result = runner.invoke(
            cli,
            ["serve-worker", "--port", "4100", "--odd-node-policy", "zero_pad"],
        )

        assert result.exit_code == 0, result.output
        assert calls == [
            {"host": "0.0.0.0", "port": 4100, "odd_node_policy": OddNodePolicy.ZERO_PAD}
        ]

    def test_port_from_env(self, runner, monkeypatch) -> None:
        calls = []
        monkeypatch.setattr(
            "merkle_aggregation.cli.commands.serve_worker.run_worker",
            lambda **kwargs: calls.append(kwargs),
        )

        runner.invoke(cli, ["serve-worker"], env={"MERKLE_AGG_WORKER_PORT": "4200"})

        assert calls[0]["port"] == 4200


def test_help_lists_commands(runner) -> None:
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.output
    assert "serve-worker" in result.output
