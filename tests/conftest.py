"""Root test configuration.

Pins JAX to the CPU backend *before* it is imported anywhere, so tests
behave the same on machines with and without an accelerator.  This must
live in conftest.py (loaded by pytest before any test module) because
setting the platform after JAX's backend initialises has no effect.
"""

import os

os.environ.setdefault("JAX_PLATFORMS", "cpu")

import pytest  # noqa: E402

from flap_rl.algorithms.dqn import DQNConfig  # noqa: E402
from flap_rl.env import FlappyBird  # noqa: E402
from flap_rl.runner import RunnerConfig  # noqa: E402


@pytest.fixture
def small_dqn_config() -> DQNConfig:
    return DQNConfig(
        hidden_sizes=(16,),
        batch_size=8,
        buffer_capacity=1_000,
        target_update_freq=10,
        epsilon_start=1.0,
        epsilon_end=0.1,
        epsilon_decay_steps=100,
    )


@pytest.fixture
def small_runner_config() -> RunnerConfig:
    return RunnerConfig(
        warmup_steps=50,
        train_freq=2,
        target_update_env_steps=100,
        fast_batch_steps=64,
        auto_eval=False,
        eval_interval=5,
        eval_trials=2,
        eval_envs=2,
        max_eval_steps=50,
        seed=0,
    )


@pytest.fixture
def env_fn():
    return lambda i: FlappyBird(seed=i)
