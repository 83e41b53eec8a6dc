"""Core type definitions for flap_rl.

Containers that cross the worker boundary (metrics, evaluation results)
are immutable NamedTuples so they can be handed to another thread without
copying.  Array aliases follow the Stoix convention for clarity in function
signatures.
"""

from __future__ import annotations

from typing import Any, NamedTuple, TypeAlias

import chex

# ---------------------------------------------------------------------------
# Scalar / array type aliases
# ---------------------------------------------------------------------------
Observation: TypeAlias = chex.Array
Action: TypeAlias = chex.Array
QValues: TypeAlias = chex.Array
Reward: TypeAlias = chex.Array
Done: TypeAlias = chex.Array

# Generic pytree aliases
Params: TypeAlias = Any  # network pytree (an equinox Module)

# Plain-Python weight snapshot: {"weights": [l][in][out], "biases": [l][out]}
WeightsData: TypeAlias = dict[str, list]


# ---------------------------------------------------------------------------
# Observer-side containers
# ---------------------------------------------------------------------------
class MetricsSnapshot(NamedTuple):
    """Point-in-time summary of a training session.

    Produced on a fixed cadence by the trainer.  Purely an observation:
    nothing in the engine reads it back.

    Fields:
        episode:          Completed episodes so far.
        episode_reward:   Reward of the last *completed* episode.
        episode_length:   Length of the last completed episode.
        avg_reward:       Moving average over the metrics window.
        avg_length:       Moving average episode length.
        epsilon:          Current exploration rate.
        loss:             Mean loss of the last learning update.
        buffer_size:      Transitions currently in the replay buffer.
        steps_per_second: Environment steps per second since last snapshot.
        total_steps:      Environment steps collected this session.
        is_warmup:        True until the buffer reaches the warmup threshold.
        learning_rate:    Current learning rate.
        num_envs:         Parallel environments being stepped.
        batch_size:       Batch size used for learning updates.
        train_steps:      Learning updates performed.
        is_eval:          True while an evaluation is running.
        eval_trial:       Evaluation trials completed so far.
        eval_trials:      Evaluation trials requested.
    """

    episode: int
    episode_reward: float
    episode_length: int
    avg_reward: float
    avg_length: float
    epsilon: float
    loss: float
    buffer_size: int
    steps_per_second: float
    total_steps: int
    is_warmup: bool
    learning_rate: float
    num_envs: int = 1
    batch_size: int = 0
    train_steps: int = 0
    is_eval: bool = False
    eval_trial: int = 0
    eval_trials: int = 0


class EvalResult(NamedTuple):
    """Outcome of one greedy evaluation round."""

    avg_score: float
    max_score: float
    min_score: float
    scores: tuple[float, ...]
    episode: int
