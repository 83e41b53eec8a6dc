"""DQN hyperparameters."""

from __future__ import annotations

from dataclasses import dataclass

from flap_rl.errors import ConfigurationFault


@dataclass(frozen=True)
class DQNConfig:
    """All DQN hyperparameters in one place.

    Frozen dataclass, created once per training session.  The values that
    can change while training runs (learning rate, gamma, epsilon) are
    only *initial* values here; the live copies sit in
    ``flap_rl.runner.state.Hyperparams``.
    """

    # Network
    obs_dim: int = 6
    n_actions: int = 2
    hidden_sizes: tuple[int, ...] = (64, 64)

    # Optimization
    lr: float = 1e-3
    gamma: float = 0.99
    batch_size: int = 32
    buffer_capacity: int = 50_000

    # Target network (in training steps; the batched trainer syncs on
    # environment steps instead, see RunnerConfig.target_update_env_steps)
    target_update_freq: int = 200

    # Exploration
    epsilon_start: float = 0.5
    epsilon_end: float = 0.05
    epsilon_decay_steps: int = 150_000

    def __post_init__(self) -> None:
        if self.obs_dim < 1 or self.n_actions < 1:
            raise ConfigurationFault(
                f"obs_dim and n_actions must be positive, got {self.obs_dim}, {self.n_actions}"
            )
        if any(h < 1 for h in self.hidden_sizes):
            raise ConfigurationFault(f"hidden sizes must be positive, got {self.hidden_sizes}")
        if not self.lr > 0:
            raise ConfigurationFault(f"lr must be > 0, got {self.lr}")
        if not 0.0 <= self.gamma <= 1.0:
            raise ConfigurationFault(f"gamma must be in [0, 1], got {self.gamma}")
        if self.batch_size < 1:
            raise ConfigurationFault(f"batch_size must be >= 1, got {self.batch_size}")
        if self.buffer_capacity < self.batch_size:
            raise ConfigurationFault(
                f"buffer_capacity ({self.buffer_capacity}) must hold at least one batch "
                f"({self.batch_size})"
            )
        if self.target_update_freq < 1:
            raise ConfigurationFault(
                f"target_update_freq must be >= 1, got {self.target_update_freq}"
            )
        for name in ("epsilon_start", "epsilon_end"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationFault(f"{name} must be in [0, 1], got {value}")
        if self.epsilon_decay_steps < 1:
            raise ConfigurationFault(
                f"epsilon_decay_steps must be >= 1, got {self.epsilon_decay_steps}"
            )
