"""flap_rl: DQN training engine for Flappy-Bird-style games, with JAX."""

from flap_rl.algorithms.dqn import DQN, DQNConfig, ValueNetwork
from flap_rl.checkpoint import (
    load_checkpoint,
    load_eqx,
    load_network,
    load_weights,
    save_checkpoint,
    save_eqx,
    save_weights,
)
from flap_rl.dataprotocol import ReplayBuffer, Transition
from flap_rl.env import make
from flap_rl.metrics import MetricsLogger
from flap_rl.run_dir import RunDir
from flap_rl.runner import RunnerConfig, TrainerState, train_dqn, train_dqn_batched
from flap_rl.schedule import EpsilonSchedule, PlateauScheduler, linear_schedule
from flap_rl.seeding import make_rng, split_key, split_keys
from flap_rl.types import EvalResult, MetricsSnapshot

__all__ = [
    "DQN",
    "DQNConfig",
    "EpsilonSchedule",
    "EvalResult",
    "MetricsLogger",
    "MetricsSnapshot",
    "PlateauScheduler",
    "ReplayBuffer",
    "RunDir",
    "RunnerConfig",
    "TrainerState",
    "Transition",
    "ValueNetwork",
    "linear_schedule",
    "load_checkpoint",
    "load_eqx",
    "load_network",
    "load_weights",
    "make",
    "make_rng",
    "save_checkpoint",
    "save_eqx",
    "save_weights",
    "split_key",
    "split_keys",
    "train_dqn",
    "train_dqn_batched",
]
