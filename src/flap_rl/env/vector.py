"""Auto-resetting pool of environments stepped in lockstep.

``VecEnv`` holds ``N`` independent :class:`~flap_rl.env.base.Environment`
instances and steps all of them with one action vector.  An environment
whose episode ends is reset immediately; the terminal observation is still
reported as ``next_obs`` so the transition is correct, while
:attr:`VecEnv.observations` already holds the first observation of the
new episode.

Usage::

    pool = VecEnv(lambda i: FlappyBird(seed=i), num_envs=64)
    obs = pool.observations                  # (64, 6)
    out = pool.step(actions)                 # (64,) int actions
    for end in out.finished:
        stats.record(end.reward, end.length)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import NamedTuple

import numpy as np

from flap_rl.env.base import Environment

EnvFactory = Callable[[int], Environment]


class EpisodeEnd(NamedTuple):
    """Summary of an episode that finished during :meth:`VecEnv.step`."""

    env_index: int
    reward: float
    length: int
    score: int


class PoolStep(NamedTuple):
    """Everything one lockstep tick produced, in environment order.

    Fields:
        obs: Observations the actions were chosen from, ``(N, obs_dim)``.
        actions: Actions taken, ``(N,)``.
        rewards: Rewards, ``(N,)``.
        next_obs: Post-step observations (terminal ones on done), ``(N, obs_dim)``.
        dones: Episode-termination flags, ``(N,)``.
        finished: One entry per episode that ended this tick.
    """

    obs: np.ndarray
    actions: np.ndarray
    rewards: np.ndarray
    next_obs: np.ndarray
    dones: np.ndarray
    finished: list[EpisodeEnd]


class VecEnv:
    """Lockstep pool of auto-resetting environments.

    Args:
        env_fn: ``env_fn(index) -> Environment``; called once per slot.
        num_envs: Pool size.
    """

    def __init__(self, env_fn: EnvFactory, num_envs: int) -> None:
        if num_envs < 1:
            raise ValueError(f"num_envs must be >= 1, got {num_envs}")
        self._env_fn = env_fn
        self._reward_overrides: dict[str, float] = {}
        self._build(num_envs)

    def _build(self, num_envs: int) -> None:
        self.envs = [self._env_fn(i) for i in range(num_envs)]
        if self._reward_overrides:
            for env in self.envs:
                env.set_reward_config(**self._reward_overrides)
        self._obs = np.stack([env.reset() for env in self.envs]).astype(np.float32)
        self._returns = np.zeros(num_envs, dtype=np.float64)
        self._lengths = np.zeros(num_envs, dtype=np.int64)

    @property
    def num_envs(self) -> int:
        return len(self.envs)

    @property
    def observations(self) -> np.ndarray:
        """Current observation of every slot, ``(N, obs_dim)`` (a copy)."""
        return self._obs.copy()

    def step(self, actions: np.ndarray) -> PoolStep:
        actions = np.asarray(actions, dtype=np.int32).reshape(self.num_envs)
        obs = self._obs.copy()
        next_obs = np.empty_like(obs)
        rewards = np.empty(self.num_envs, dtype=np.float32)
        dones = np.empty(self.num_envs, dtype=np.bool_)
        finished: list[EpisodeEnd] = []

        for i, env in enumerate(self.envs):
            result = env.step(int(actions[i]))
            next_obs[i] = result.observation
            rewards[i] = result.reward
            dones[i] = result.done
            self._returns[i] += result.reward
            self._lengths[i] += 1
            if result.done:
                finished.append(EpisodeEnd(
                    env_index=i,
                    reward=float(self._returns[i]),
                    length=int(self._lengths[i]),
                    score=int(result.info.get("score", 0)),
                ))
                self._returns[i] = 0.0
                self._lengths[i] = 0
                self._obs[i] = env.reset()
            else:
                self._obs[i] = result.observation

        return PoolStep(obs, actions, rewards, next_obs, dones, finished)

    def reset(self) -> np.ndarray:
        """Restart every episode; returns the new observations."""
        for i, env in enumerate(self.envs):
            self._obs[i] = env.reset()
        self._returns[:] = 0.0
        self._lengths[:] = 0
        return self.observations

    def resize(self, num_envs: int) -> None:
        """Rebuild the pool with *num_envs* fresh environments."""
        if num_envs < 1:
            raise ValueError(f"num_envs must be >= 1, got {num_envs}")
        self._build(num_envs)

    def set_reward_config(self, **partial: float) -> None:
        """Apply reward overrides to every environment, now and after resizes."""
        for env in self.envs:
            env.set_reward_config(**partial)
        self._reward_overrides.update(partial)

    def __len__(self) -> int:
        return self.num_envs

    def __repr__(self) -> str:
        return f"VecEnv(num_envs={self.num_envs})"
