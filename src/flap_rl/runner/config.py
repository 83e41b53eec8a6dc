"""Runner configuration."""

from __future__ import annotations

from dataclasses import dataclass

from flap_rl.errors import ConfigurationFault


@dataclass(frozen=True)
class RunnerConfig:
    """Hyperparameters of the outer training loop.

    Controls warmup, update cadence, time budgets, metrics and evaluation.
    Network/optimisation settings live in ``DQNConfig``.  The two trainers
    historically used different defaults; both sets are documented here
    and chosen per preset (see ``flap_rl.configs.presets``).
    """

    # Warmup: no learning until the replay buffer holds this many transitions
    warmup_steps: int = 50_000

    # Single-path cadence: one update per ``train_freq`` experiences
    train_freq: int = 8

    # Batched cadence: one update per ``train_ratio`` environment steps
    train_ratio: int = 8
    target_update_env_steps: int = 10_000
    max_train_batches_per_tick: int = 512
    train_time_budget_ms: float = 25.0

    # Parallel environments (1 = single-path trainer)
    num_envs: int = 1
    batch_size: int | None = None  # None = derive from num_envs

    # Work units: env steps per unit on the single path, and wall-clock cap
    fast_batch_steps: int = 512
    work_unit_budget_ms: float = 50.0

    # Metrics
    metrics_window: int = 100
    metrics_interval_ms: float = 500.0
    warmup_metrics_interval_ms: float = 100.0
    weight_sync_interval: int = 500  # training steps between WeightsEvents

    # Evaluation
    auto_eval: bool = True
    eval_interval: int = 5_000  # episodes
    eval_trials: int = 20
    eval_envs: int = 16
    max_eval_steps: int = 10_000
    eval_slice_ms: float = 25.0

    # Learning-rate scheduler
    lr_scheduler: bool = False
    lr_patience: int = 100
    lr_factor: float = 0.7
    min_lr: float = 1e-5

    # Seeding
    seed: int | None = 0

    def __post_init__(self) -> None:
        positive = (
            "train_freq", "train_ratio", "target_update_env_steps",
            "max_train_batches_per_tick", "num_envs", "fast_batch_steps",
            "metrics_window", "eval_interval", "eval_trials", "eval_envs",
            "max_eval_steps", "weight_sync_interval", "lr_patience",
        )
        for name in positive:
            value = getattr(self, name)
            if value < 1:
                raise ConfigurationFault(f"{name} must be >= 1, got {value}")
        if self.warmup_steps < 0:
            raise ConfigurationFault(f"warmup_steps must be >= 0, got {self.warmup_steps}")
        if self.batch_size is not None and self.batch_size < 1:
            raise ConfigurationFault(f"batch_size must be >= 1, got {self.batch_size}")
        if not 0.0 < self.lr_factor < 1.0:
            raise ConfigurationFault(f"lr_factor must be in (0, 1), got {self.lr_factor}")
        for name in (
            "train_time_budget_ms", "work_unit_budget_ms", "metrics_interval_ms",
            "warmup_metrics_interval_ms", "eval_slice_ms",
        ):
            value = getattr(self, name)
            if not value > 0:
                raise ConfigurationFault(f"{name} must be > 0, got {value}")


def optimal_batch_size(num_envs: int) -> int:
    """Learning batch size for ``num_envs`` parallel environments.

    Monotonic step function: more environments produce experience faster,
    so larger batches keep the accelerator busy without starving updates.
    """
    if num_envs < 100:
        return 64
    if num_envs < 500:
        return 128
    if num_envs < 2000:
        return 256
    return 512
