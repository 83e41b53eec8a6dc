"""Tests for flap_rl.errors."""

from __future__ import annotations

import pytest

from flap_rl.algorithms.dqn import DQNConfig
from flap_rl.errors import (
    BackendUnavailable,
    ConfigurationFault,
    FlapRLError,
    NumericFault,
    require_finite,
)
from flap_rl.runner.config import RunnerConfig


class TestErrorHierarchy:
    @pytest.mark.parametrize("cls", [NumericFault, ConfigurationFault, BackendUnavailable])
    def test_subclasses_base(self, cls: type) -> None:
        assert issubclass(cls, FlapRLError)

    def test_configuration_fault_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            DQNConfig(gamma=1.5)

    def test_runner_config_rejected(self) -> None:
        with pytest.raises(ConfigurationFault, match="train_freq"):
            RunnerConfig(train_freq=0)

    def test_backend_unavailable_is_runtime_error(self) -> None:
        assert issubclass(BackendUnavailable, RuntimeError)


class TestRequireFinite:
    def test_passes_finite_values_through(self) -> None:
        assert require_finite("gamma", 0.5) == 0.5
        assert require_finite("batch_size", 64) == 64.0

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_rejects_non_finite(self, value: float) -> None:
        with pytest.raises(ConfigurationFault, match="gamma must be finite"):
            require_finite("gamma", value)
