"""Environments for the DQN trainers.

Quick start::

    from flap_rl.env import make

    env = make("FlappyBird-v0", seed=0)
    obs = env.reset()
    result = env.step(1)
"""

from flap_rl.env.base import Environment, StepResult
from flap_rl.env.flappy import OBS_DIM, FlappyBird, FlappyParams, RewardConfig
from flap_rl.env.spaces import Box, Discrete
from flap_rl.env.vector import EnvFactory, EpisodeEnd, PoolStep, VecEnv

# ---- Registry ----

_REGISTRY: dict[str, type[Environment]] = {
    "FlappyBird-v0": FlappyBird,
}


def register(name: str, cls: type[Environment]) -> None:
    """Register a custom environment class under *name*."""
    _REGISTRY[name] = cls


def make(name: str, **kwargs: object) -> Environment:
    """Create an environment by name.

    Built-in names: ``"FlappyBird-v0"``.  Keyword arguments go to the
    environment constructor.
    """
    if name not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY))
        raise KeyError(f"Unknown environment {name!r}. Available: {available}")
    return _REGISTRY[name](**kwargs)


__all__ = [
    # Base
    "Environment",
    "StepResult",
    # Spaces
    "Box",
    "Discrete",
    # Environments
    "OBS_DIM",
    "FlappyBird",
    "FlappyParams",
    "RewardConfig",
    # Vectorised
    "EnvFactory",
    "EpisodeEnd",
    "PoolStep",
    "VecEnv",
    # Registry
    "make",
    "register",
]
