"""Preset experiment configurations.

Each preset bundles network/learning settings, outer-loop settings and a
step budget.  Use :func:`cli` in a training script to get a
:class:`TrainConfig` with ``overridable_config_cli``: the user picks a
preset and optionally overrides individual fields::

    python scripts/train.py flappy_single --dqn.lr 5e-4
    python scripts/train.py flappy_batched --runner.num_envs 1024
"""

from __future__ import annotations

from dataclasses import dataclass, field

import tyro

from flap_rl.algorithms.dqn.config import DQNConfig
from flap_rl.runner.config import RunnerConfig

# ---------------------------------------------------------------------------
# Unified training config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrainConfig:
    """Full training configuration: environment + DQN + runner."""

    # Environment
    env_id: str = "FlappyBird-v0"

    # Network and learning hyperparameters
    dqn: DQNConfig = field(default_factory=DQNConfig)

    # Runner / outer-loop settings
    runner: RunnerConfig = field(default_factory=RunnerConfig)

    # Environment steps to train for
    total_steps: int = 1_000_000

    # Name of the run directory under ``runs/``
    experiment: str = "flappy_dqn"


# ---------------------------------------------------------------------------
# Preset registry
# ---------------------------------------------------------------------------

PRESETS: dict[str, tuple[str, TrainConfig]] = {
    "flappy_single": (
        "DQN on one Flappy Bird environment",
        TrainConfig(
            runner=RunnerConfig(
                warmup_steps=10_000,
                train_freq=8,
                eval_interval=500,
                eval_trials=100,
                metrics_window=50,
            ),
            total_steps=1_000_000,
            experiment="flappy_single",
        ),
    ),
    "flappy_batched": (
        "DQN on 256 lockstep Flappy Bird environments",
        TrainConfig(
            dqn=DQNConfig(buffer_capacity=200_000),
            runner=RunnerConfig(
                num_envs=256,
                warmup_steps=50_000,
                train_ratio=8,
                target_update_env_steps=10_000,
                eval_interval=5_000,
                eval_trials=20,
            ),
            total_steps=20_000_000,
            experiment="flappy_batched",
        ),
    ),
    "flappy_debug": (
        "Tiny run for smoke-testing the pipeline",
        TrainConfig(
            dqn=DQNConfig(hidden_sizes=(16,), buffer_capacity=2_000, epsilon_decay_steps=1_000),
            runner=RunnerConfig(
                warmup_steps=200,
                eval_interval=20,
                eval_trials=4,
                eval_envs=4,
                max_eval_steps=500,
            ),
            total_steps=5_000,
            experiment="flappy_debug",
        ),
    ),
}


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def cli(
    args: list[str] | None = None,
    **kwargs: object,
) -> TrainConfig:
    """Parse a preset + overrides from the command line.

    Usage::

        config = cli()                                        # parse sys.argv
        config = cli(["flappy_single", "--dqn.lr", "5e-4"])   # explicit args
    """
    return tyro.extras.overridable_config_cli(
        PRESETS,
        args=args,
        use_underscores=True,
        **kwargs,  # type: ignore[arg-type]
    )
