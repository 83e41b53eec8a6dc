"""Greedy policy evaluation in time-boxed slices.

An :class:`Evaluator` runs ``trials`` greedy (epsilon = 0) episodes on its
own small pool of environments, so the training environments are never
touched.  Work is done in slices of at most ``slice_ms`` milliseconds;
between slices the caller is free to handle commands or emit progress.
All active evaluation environments are advanced with a single batched
forward pass per step.

Usage::

    evaluator = Evaluator(env_fn, trials=20, num_envs=16, episode=ts.stats.episodes)
    while (result := evaluator.run_slice(ts.agent.params)) is None:
        emit_progress(evaluator.completed, evaluator.trials)

    # or, blocking:
    result = evaluate(ts.agent.params, env_fn, trials=20)
"""

from __future__ import annotations

import logging
import time

import numpy as np

from flap_rl.algorithms.dqn.network import ValueNetwork
from flap_rl.env.vector import EnvFactory
from flap_rl.types import EvalResult

logger = logging.getLogger(__name__)


class Evaluator:
    """Incremental greedy evaluation.

    Args:
        env_fn: ``env_fn(index) -> Environment`` for the evaluation pool.
        trials: Episodes to complete.
        num_envs: Upper bound on the evaluation pool size.
        training_envs: Environments the trainer is stepping; the pool
            never exceeds this or *trials*.
        max_steps: A trial still running after this many steps is cut
            off and scored as it stands.
        episode: Training episode count the result is attributed to.
        slice_ms: Default wall-clock budget per :meth:`run_slice`.
    """

    def __init__(
        self,
        env_fn: EnvFactory,
        *,
        trials: int,
        num_envs: int = 16,
        training_envs: int | None = None,
        max_steps: int = 10_000,
        episode: int = 0,
        slice_ms: float = 25.0,
    ) -> None:
        if trials < 1:
            raise ValueError(f"trials must be >= 1, got {trials}")
        self.trials = trials
        self.max_steps = max_steps
        self.episode = episode
        self.slice_ms = slice_ms
        self.scores: list[float] = []

        n = eval_pool_size(num_envs, trials, training_envs)
        self._envs = [env_fn(i) for i in range(n)]
        self._obs = np.stack([env.reset() for env in self._envs]).astype(np.float32)
        self._steps = np.zeros(n, dtype=np.int64)
        self._active = np.ones(n, dtype=np.bool_)
        self._started = n
        self._result: EvalResult | None = None

    @property
    def completed(self) -> int:
        return len(self.scores)

    @property
    def done(self) -> bool:
        return self._result is not None

    def run_slice(self, params: ValueNetwork, budget_ms: float | None = None) -> EvalResult | None:
        """Advance evaluation for up to *budget_ms*; the result once finished."""
        if self._result is not None:
            return self._result
        budget = (self.slice_ms if budget_ms is None else budget_ms) / 1000.0
        start = time.perf_counter()
        while self.completed < self.trials and time.perf_counter() - start < budget:
            self._step_all(params)
        if self.completed >= self.trials:
            return self.finish()
        return None

    def finish(self) -> EvalResult | None:
        """Stop now and summarise the scores collected so far.

        Returns ``None`` if no trial has completed yet.
        """
        if self._result is None and self.scores:
            scores = tuple(self.scores)
            self._result = EvalResult(
                avg_score=float(np.mean(scores)),
                max_score=float(np.max(scores)),
                min_score=float(np.min(scores)),
                scores=scores,
                episode=self.episode,
            )
            logger.info(
                "Evaluation at episode %d: avg %.2f, max %.0f, min %.0f over %d trial(s)",
                self.episode, self._result.avg_score, self._result.max_score,
                self._result.min_score, len(scores),
            )
        self._active[:] = False
        return self._result

    def _step_all(self, params: ValueNetwork) -> None:
        idx = np.flatnonzero(self._active)
        if idx.size == 0:
            return
        # Whole pool every time so the jitted forward pass keeps one shape.
        actions = np.argmax(np.asarray(params.predict_batch(self._obs)), axis=-1)
        for i in idx:
            if self.completed >= self.trials:
                break
            env = self._envs[i]
            result = env.step(int(actions[i]))
            self._steps[i] += 1
            self._obs[i] = result.observation
            if result.done or self._steps[i] >= self.max_steps:
                self.scores.append(float(result.info.get("score", 0)))
                if self._started < self.trials:
                    self._started += 1
                    self._obs[i] = env.reset()
                    self._steps[i] = 0
                else:
                    self._active[i] = False


def evaluate(
    params: ValueNetwork,
    env_fn: EnvFactory,
    *,
    trials: int = 20,
    num_envs: int = 16,
    training_envs: int | None = None,
    max_steps: int = 10_000,
    episode: int = 0,
) -> EvalResult:
    """Run a full greedy evaluation, blocking until every trial is done."""
    evaluator = Evaluator(
        env_fn, trials=trials, num_envs=num_envs, training_envs=training_envs,
        max_steps=max_steps, episode=episode,
    )
    result = None
    while result is None:
        result = evaluator.run_slice(params)
    return result


def eval_pool_size(num_envs: int, trials: int, training_envs: int | None = None) -> int:
    """Evaluation pool size: ``min(num_envs, training_envs, trials)``, at least 1."""
    n = min(num_envs, trials)
    if training_envs is not None:
        n = min(n, training_envs)
    return max(1, n)


def should_evaluate(
    *,
    enabled: bool,
    is_warmup: bool,
    episode: int,
    last_eval_episode: int,
    interval: int,
    running: bool,
) -> bool:
    """Auto-evaluation trigger."""
    return (
        enabled
        and not running
        and not is_warmup
        and episode > 0
        and episode - last_eval_episode >= interval
    )
