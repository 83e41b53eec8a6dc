"""Single-environment DQN training.

The replay buffer lives in Python (numpy); action selection and the
per-sample SGD updates are jitted.  Two entry points share one set of
primitives:

- :func:`submit_experience` - the foreground path: a transition produced
  elsewhere (e.g. by a rendered game) is stored and may trigger a
  learning update.
- :func:`run_fast_steps` - the headless path: the trainer drives its own
  environment for a bounded slice of wall-clock time.

:func:`train_dqn` wraps the headless path in a blocking loop with
periodic metrics and automatic evaluation.

Usage::

    from flap_rl.algorithms.dqn import DQNConfig
    from flap_rl.env import make
    from flap_rl.runner import RunnerConfig, train_dqn

    result = train_dqn(
        lambda i: make("FlappyBird-v0", seed=i),
        dqn_config=DQNConfig(),
        runner_config=RunnerConfig(warmup_steps=5_000),
        total_steps=200_000,
    )
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import NamedTuple

import numpy as np

from flap_rl.algorithms.dqn.agent import DQN, DQNMetrics
from flap_rl.algorithms.dqn.config import DQNConfig
from flap_rl.dataprotocol.transition import Transition, make_transition
from flap_rl.env.vector import EnvFactory, EpisodeEnd, VecEnv
from flap_rl.runner.config import RunnerConfig
from flap_rl.runner.evaluator import evaluate, should_evaluate
from flap_rl.runner.state import Phase, TrainerState
from flap_rl.types import EvalResult, MetricsSnapshot

logger = logging.getLogger(__name__)

MetricsCallback = Callable[[MetricsSnapshot], None]
EvalCallback = Callable[[EvalResult, TrainerState], None]


class DQNTrainResult(NamedTuple):
    """Return value from ``train_dqn`` / ``train_dqn_batched``."""

    trainer_state: TrainerState
    episode_returns: list[float]
    eval_results: list[EvalResult]
    metrics_log: list[MetricsSnapshot]


class WorkUnit(NamedTuple):
    """What one bounded slice of headless training did."""

    env_steps: int
    updates: int
    finished: list[EpisodeEnd]
    eval_due: bool


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def learn_step(
    ts: TrainerState,
    *,
    sync_target: bool = True,
    update_epsilon: bool = True,
) -> DQNMetrics | None:
    """Sample a batch and run one update; ``None`` if the buffer is too small.

    With *sync_target* the target network follows the policy every
    ``target_update_freq`` training steps.  The batched trainer passes
    ``sync_target=False`` and ``update_epsilon=False`` and handles both
    itself.
    """
    hp = ts.hparams
    if not ts.buffer.can_sample(hp.batch_size):
        return None
    batch = ts.buffer.sample(hp.batch_size)
    ts.agent, metrics = DQN.update(
        ts.agent,
        batch,
        lr=hp.lr,
        gamma=hp.gamma,
        target_update_freq=hp.target_update_freq if sync_target else None,
    )
    ts.last_loss = metrics.loss
    ts.total_resets += metrics.resets
    if update_epsilon:
        ts.epsilon.update(ts.train_steps)
    return metrics


def submit_experience(ts: TrainerState, transition: Transition) -> DQNMetrics | None:
    """Store one transition; learn every ``train_freq`` experiences after warmup."""
    ts.buffer.add(transition)
    ts.experience_count += 1
    if ts.update_phase() is not Phase.TRAINING:
        return None
    if ts.experience_count % ts.hparams.train_freq != 0:
        return None
    return learn_step(ts)


def eval_due(ts: TrainerState, *, running: bool = False) -> bool:
    return should_evaluate(
        enabled=ts.eval.enabled,
        is_warmup=ts.is_warmup,
        episode=ts.stats.episodes,
        last_eval_episode=ts.eval.last_episode,
        interval=ts.eval.interval,
        running=running,
    )


def run_fast_steps(
    ts: TrainerState,
    pool: VecEnv,
    max_steps: int,
    *,
    budget_ms: float | None = None,
) -> WorkUnit:
    """Step the first environment of *pool* up to *max_steps* times.

    Stops early when the wall-clock budget is spent or an episode end
    makes an automatic evaluation due.
    """
    budget = ts.runner_config.work_unit_budget_ms if budget_ms is None else budget_ms
    deadline = time.perf_counter() + budget / 1000.0
    steps = updates = 0
    finished: list[EpisodeEnd] = []
    due = False

    while steps < max_steps:
        obs = pool.observations
        action, ts.agent = DQN.act(ts.agent, obs[0], epsilon=ts.epsilon.value)
        out = pool.step(np.full(pool.num_envs, action, dtype=np.int32))
        transition = make_transition(
            out.obs[0], action, out.rewards[0], out.next_obs[0], out.dones[0],
        )
        if submit_experience(ts, transition) is not None:
            updates += 1
        ts.total_steps += 1
        steps += 1

        ended = [end for end in out.finished if end.env_index == 0]
        for end in ended:
            ts.stats.record(end.reward, end.length)
        finished.extend(ended)
        if ended and eval_due(ts):
            due = True
            break
        if time.perf_counter() >= deadline:
            break

    return WorkUnit(steps, updates, finished, due)


# ---------------------------------------------------------------------------
# Blocking driver
# ---------------------------------------------------------------------------


def run_training(
    ts: TrainerState,
    work_unit: Callable[[], WorkUnit],
    env_fn: EnvFactory,
    *,
    total_steps: int,
    training_envs: int = 1,
    callback: MetricsCallback | None = None,
    eval_callback: EvalCallback | None = None,
) -> DQNTrainResult:
    """Repeat *work_unit* until ``ts.total_steps`` reaches *total_steps*.

    Metrics are emitted on the trainer's cadence; due evaluations run to
    completion before training resumes.  The evaluation pool is no larger
    than the *training_envs* being stepped.
    """
    episode_returns: list[float] = []
    eval_results: list[EvalResult] = []
    metrics_log: list[MetricsSnapshot] = []
    rc = ts.runner_config

    while ts.total_steps < total_steps:
        unit = work_unit()
        episode_returns.extend(end.reward for end in unit.finished)

        if ts.metrics_due():
            snapshot = ts.emit_metrics()
            metrics_log.append(snapshot)
            if callback is not None:
                callback(snapshot)

        if unit.eval_due:
            ts.eval.last_episode = ts.stats.episodes
            result = evaluate(
                ts.agent.params,
                env_fn,
                trials=ts.eval.trials,
                num_envs=rc.eval_envs,
                training_envs=training_envs,
                max_steps=rc.max_eval_steps,
                episode=ts.stats.episodes,
            )
            eval_results.append(result)
            if eval_callback is not None:
                eval_callback(result, ts)

    logger.info(
        "Training finished: %d episodes, %d env steps, %d updates",
        ts.stats.episodes, ts.total_steps, ts.train_steps,
    )
    return DQNTrainResult(ts, episode_returns, eval_results, metrics_log)


def train_dqn(
    env_fn: EnvFactory,
    *,
    dqn_config: DQNConfig,
    runner_config: RunnerConfig,
    total_steps: int,
    callback: MetricsCallback | None = None,
    eval_callback: EvalCallback | None = None,
    trainer_state: TrainerState | None = None,
) -> DQNTrainResult:
    """Train on a single environment until *total_steps* env steps.

    Args:
        env_fn: ``env_fn(index) -> Environment``.
        dqn_config: Network and learning hyperparameters.
        runner_config: Outer-loop settings.
        total_steps: Environment steps to run (counted from zero, or from
            the step count of *trainer_state* when resuming).
        callback: Called with every emitted ``MetricsSnapshot``.
        eval_callback: Called with every ``EvalResult`` and the state.
        trainer_state: Continue an existing session instead of a fresh one.

    Returns:
        ``DQNTrainResult`` with the final trainer state, episode returns,
        evaluation results and emitted snapshots.
    """
    ts = trainer_state or TrainerState.create(dqn_config, runner_config)
    ts.begin_run(ts.stats.episodes, ts.total_steps)
    pool = VecEnv(env_fn, 1)
    logger.info("Single-environment training for %d steps", total_steps)

    def unit() -> WorkUnit:
        return run_fast_steps(ts, pool, runner_config.fast_batch_steps)

    return run_training(
        ts, unit, env_fn,
        total_steps=total_steps, training_envs=pool.num_envs,
        callback=callback, eval_callback=eval_callback,
    )
