"""Training runners for flap_rl.

Two trainers share one :class:`TrainerState` per session:

- **Single path**: one environment (or externally submitted
  transitions); one update every ``train_freq`` experiences.
- **Batched**: ``N`` lockstep environments with a single batched forward
  pass per tick and an experience-debt update budget.

Both have a Python outer loop for replay-buffer management and jitted
inner steps.  Evaluation runs greedy rollouts on a separate pool in
time-boxed slices.
"""

from flap_rl.runner.config import RunnerConfig, optimal_batch_size
from flap_rl.runner.device_utils import BackendInfo, init_backend
from flap_rl.runner.evaluator import Evaluator, eval_pool_size, evaluate, should_evaluate
from flap_rl.runner.state import Hyperparams, Phase, TrainerState
from flap_rl.runner.train_dqn import (
    DQNTrainResult,
    WorkUnit,
    learn_step,
    run_fast_steps,
    submit_experience,
    train_dqn,
)
from flap_rl.runner.train_dqn_batched import (
    batched_tick,
    maybe_sync_target,
    run_batched_unit,
    steps_per_unit,
    train_dqn_batched,
)

__all__ = [
    # Config
    "RunnerConfig",
    "optimal_batch_size",
    # Devices
    "BackendInfo",
    "init_backend",
    # State
    "Hyperparams",
    "Phase",
    "TrainerState",
    # Evaluator
    "Evaluator",
    "eval_pool_size",
    "evaluate",
    "should_evaluate",
    # Single path
    "DQNTrainResult",
    "WorkUnit",
    "learn_step",
    "run_fast_steps",
    "submit_experience",
    "train_dqn",
    # Batched
    "batched_tick",
    "maybe_sync_target",
    "run_batched_unit",
    "steps_per_unit",
    "train_dqn_batched",
]
