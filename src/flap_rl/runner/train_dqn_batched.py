"""Lockstep multi-environment DQN training.

Each tick steps ``N`` environments with one batched forward pass, stores
all ``N`` transitions in environment order, and then pays down an
*experience debt*: one learning update per ``train_ratio`` environment
steps, bounded per tick by ``max_train_batches_per_tick`` and
``train_time_budget_ms``.  Unpaid debt carries over to the next tick.

The target network is synced on environment-step boundaries (multiples
of ``target_update_env_steps``) rather than training steps, so the
number of environment steps between syncs does not depend on ``N``.

Usage::

    from flap_rl.runner import RunnerConfig, train_dqn_batched

    result = train_dqn_batched(
        lambda i: make("FlappyBird-v0", seed=i),
        dqn_config=DQNConfig(),
        runner_config=RunnerConfig(num_envs=256),
        total_steps=2_000_000,
    )
"""

from __future__ import annotations

import logging
import math
import time

import numpy as np

from flap_rl.algorithms.dqn.agent import DQN
from flap_rl.algorithms.dqn.config import DQNConfig
from flap_rl.env.vector import EnvFactory, EpisodeEnd, VecEnv
from flap_rl.runner.config import RunnerConfig, optimal_batch_size
from flap_rl.runner.state import Phase, TrainerState
from flap_rl.runner.train_dqn import (
    DQNTrainResult,
    EvalCallback,
    MetricsCallback,
    WorkUnit,
    eval_due,
    learn_step,
    run_training,
)

logger = logging.getLogger(__name__)

__all__ = [
    "batched_tick",
    "drain_debt",
    "maybe_sync_target",
    "optimal_batch_size",
    "run_batched_unit",
    "steps_per_unit",
    "train_dqn_batched",
]

LARGE_POOL = 1_000


def steps_per_unit(num_envs: int) -> tuple[int, float]:
    """``(ticks, budget_ms)`` for one work unit with *num_envs* environments."""
    if num_envs >= LARGE_POOL:
        return min(256, math.ceil(20_000 / num_envs)), 100.0
    return min(128, math.ceil(10_000 / num_envs)), 50.0


def drain_debt(ts: TrainerState) -> int:
    """Run updates while debt and budget allow; returns how many ran."""
    rc = ts.runner_config
    deadline = time.perf_counter() + rc.train_time_budget_ms / 1000.0
    updates = 0
    while (
        ts.train_debt >= rc.train_ratio
        and updates < rc.max_train_batches_per_tick
        and time.perf_counter() < deadline
    ):
        if learn_step(ts, sync_target=False, update_epsilon=False) is None:
            break
        ts.train_debt -= rc.train_ratio
        updates += 1
    if updates:
        ts.epsilon.update(ts.train_steps)
    return updates


def maybe_sync_target(ts: TrainerState) -> int | None:
    """Sync the target network when a new env-step boundary was crossed.

    Returns the boundary synced at, or ``None``.
    """
    if ts.phase is not Phase.TRAINING:
        return None
    period = ts.runner_config.target_update_env_steps
    boundary = ts.total_steps - ts.total_steps % period
    if boundary <= ts.last_sync_env_step:
        return None
    ts.agent = DQN.sync_target(ts.agent)
    ts.last_sync_env_step = boundary
    logger.info(
        "Target network synced at %d env steps (training step %d)", boundary, ts.train_steps,
    )
    return boundary


def batched_tick(ts: TrainerState, pool: VecEnv) -> tuple[int, list[EpisodeEnd]]:
    """Advance every environment once; returns ``(updates, finished)``."""
    actions, ts.agent = DQN.act_batch(ts.agent, pool.observations, epsilon=ts.epsilon.value)
    out = pool.step(np.asarray(actions))
    for i in range(pool.num_envs):
        ts.buffer.push(out.obs[i], out.actions[i], out.rewards[i], out.next_obs[i], out.dones[i])

    n = pool.num_envs
    ts.experience_count += n
    ts.total_steps += n
    for end in out.finished:
        ts.stats.record(end.reward, end.length)

    updates = 0
    if ts.update_phase() is Phase.TRAINING:
        ts.train_debt += n
        updates = drain_debt(ts)
        maybe_sync_target(ts)
    return updates, out.finished


def run_batched_unit(ts: TrainerState, pool: VecEnv) -> WorkUnit:
    """Run ticks until the unit's tick count or wall-clock budget is spent.

    Stops early when an episode end makes an automatic evaluation due.
    """
    ticks, budget_ms = steps_per_unit(pool.num_envs)
    deadline = time.perf_counter() + budget_ms / 1000.0
    start_steps = ts.total_steps
    updates = 0
    finished: list[EpisodeEnd] = []
    due = False
    for _ in range(ticks):
        n_updates, ended = batched_tick(ts, pool)
        updates += n_updates
        finished.extend(ended)
        if ended and eval_due(ts):
            due = True
            break
        if time.perf_counter() >= deadline:
            break
    return WorkUnit(ts.total_steps - start_steps, updates, finished, due)


def train_dqn_batched(
    env_fn: EnvFactory,
    *,
    dqn_config: DQNConfig,
    runner_config: RunnerConfig,
    total_steps: int,
    callback: MetricsCallback | None = None,
    eval_callback: EvalCallback | None = None,
    trainer_state: TrainerState | None = None,
) -> DQNTrainResult:
    """Train on ``runner_config.num_envs`` lockstep environments.

    Same contract as :func:`~flap_rl.runner.train_dqn.train_dqn`; the
    batch size comes from ``optimal_batch_size`` unless
    ``runner_config.batch_size`` is set.
    """
    ts = trainer_state or TrainerState.create(dqn_config, runner_config)
    ts.begin_run(ts.stats.episodes, ts.total_steps)
    pool = VecEnv(env_fn, ts.num_envs)
    logger.info(
        "Batched training: %d envs, batch size %d, %d steps",
        ts.num_envs, ts.hparams.batch_size, total_steps,
    )
    return run_training(
        ts, lambda: run_batched_unit(ts, pool), env_fn,
        total_steps=total_steps, training_envs=pool.num_envs,
        callback=callback, eval_callback=eval_callback,
    )
