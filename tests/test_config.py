"""Tests for configuration models and environment overrides."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from merkle_aggregation.config import (
    DEFAULT_WORKER_IMAGE,
    CloudSpawnerConfig,
    FailureMode,
    LocalSpawnerConfig,
    MockSpawnerConfig,
    OrchestratorConfig,
)
from merkle_aggregation.tree import OddNodePolicy


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "MERKLE_AGG_REQUEST_TIMEOUT",
        "MERKLE_AGG_GRACE_PERIOD",
        "MERKLE_AGG_WORKER_IMAGE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestOrchestratorConfig:
    def test_defaults(self) -> None:
        config = OrchestratorConfig()
        assert config.request_timeout == 60.0
        assert config.cancel_grace_period == 5.0
        assert config.odd_node_policy == OddNodePolicy.CARRY_UP
        assert config.max_balance_bytes is None

    def test_env_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("MERKLE_AGG_REQUEST_TIMEOUT", "2.5")
        monkeypatch.setenv("MERKLE_AGG_GRACE_PERIOD", "0.5")
        config = OrchestratorConfig()
        assert config.request_timeout == 2.5
        assert config.cancel_grace_period == 0.5

    def test_empty_env_uses_default(self, monkeypatch) -> None:
        monkeypatch.setenv("MERKLE_AGG_REQUEST_TIMEOUT", "")
        assert OrchestratorConfig().request_timeout == 60.0

    def test_invalid_env_value(self, monkeypatch) -> None:
        monkeypatch.setenv("MERKLE_AGG_GRACE_PERIOD", "soon")
        with pytest.raises(ValueError, match="MERKLE_AGG_GRACE_PERIOD"):
            OrchestratorConfig()

    def test_explicit_value_wins(self, monkeypatch) -> None:
        monkeypatch.setenv("MERKLE_AGG_REQUEST_TIMEOUT", "2.5")
        assert OrchestratorConfig(request_timeout=9.0).request_timeout == 9.0


class TestSpawnerConfigs:
    def test_failure_modes_coerced(self) -> None:
        config = MockSpawnerConfig(failures={"1": "reject", 2: "hang"})
        assert config.failures == {1: FailureMode.REJECT, 2: FailureMode.HANG}

    def test_unknown_failure_mode(self) -> None:
        with pytest.raises(ValidationError):
            MockSpawnerConfig(failures={0: "explode"})

    def test_worker_image_from_env(self, monkeypatch) -> None:
        assert LocalSpawnerConfig().image == DEFAULT_WORKER_IMAGE
        monkeypatch.setenv("MERKLE_AGG_WORKER_IMAGE", "registry.local/worker:2")
        assert LocalSpawnerConfig().image == "registry.local/worker:2"
        assert CloudSpawnerConfig(worker_nodes=["n1"]).image == "registry.local/worker:2"

    def test_cloud_requires_nodes(self) -> None:
        with pytest.raises(ValidationError):
            CloudSpawnerConfig()

    def test_kind_discriminators(self) -> None:
        assert MockSpawnerConfig().kind == "mock"
        assert LocalSpawnerConfig().kind == "local"
        assert CloudSpawnerConfig(worker_nodes=["n1"]).kind == "cloud"
