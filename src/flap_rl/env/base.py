"""Environment interface consumed by the trainers.

Environments here are ordinary stateful objects stepped from the
trainer's Python loop (one instance per parallel environment)::

    env = FlappyBird(seed=0)
    obs = env.reset()
    result = env.step(1)
    result.observation, result.reward, result.done, result.info["score"]

Observations are returned as fresh ``float32`` arrays; callers may keep
them without worrying about later steps overwriting them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, NamedTuple

import numpy as np

from flap_rl.env.spaces import Box, Discrete


class StepResult(NamedTuple):
    """Outcome of one :meth:`Environment.step`.

    Fields:
        observation: Observation after the step, shape ``(obs_dim,)``.
        reward: Shaped scalar reward.
        done: Episode terminated.
        info: At least ``score`` (game score of the episode so far),
            ``episode`` and ``steps`` (lifetime step count).
    """

    observation: np.ndarray
    reward: float
    done: bool
    info: dict[str, Any]


class Environment(ABC):
    """Abstract base for stateful, single-instance environments.

    Subclasses implement:
    - ``reset() -> obs``
    - ``step(action) -> StepResult``
    - ``observation() -> obs``
    - ``observation_space()`` / ``action_space()``

    Reward shaping is environment configuration: ``set_reward_config``
    merges a partial update into the current settings.
    """

    @abstractmethod
    def reset(self) -> np.ndarray:
        """Start a new episode and return its first observation."""
        ...

    @abstractmethod
    def step(self, action: int) -> StepResult:
        """Advance one timestep.  Stepping a finished episode is a no-op
        returning ``done=True`` and zero reward."""
        ...

    @abstractmethod
    def observation(self) -> np.ndarray:
        """Observation for the current state, without stepping."""
        ...

    @abstractmethod
    def observation_space(self) -> Box:
        ...

    @abstractmethod
    def action_space(self) -> Discrete:
        ...

    def set_reward_config(self, **partial: float) -> None:
        """Update reward shaping.  Environments without shaping ignore it."""

    @property
    def name(self) -> str:
        return self.__class__.__name__
