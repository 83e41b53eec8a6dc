"""Transition container for RL experience data.

A NamedTuple, so an immutable PyTree that composes with
jax.jit and jax.vmap.

A single Transition holds scalar/1-D fields.  A *batched* Transition
(fields with a leading batch dim) serves as the Batch type; no
separate class needed.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from jax import Array


class Transition(NamedTuple):
    """A single (s, a, r, s', done) experience tuple.

    Fields may be numpy or jax arrays.  For batched usage, each field
    carries a leading batch dimension.  The type is the same, just
    higher-rank.

    Fields:
        state:      Observation.          scalar: (obs_dim,)  batched: (B, obs_dim)
        action:     Action taken (0/1).   scalar: ()          batched: (B,)
        reward:     Scalar reward.        scalar: ()          batched: (B,)
        next_state: Next observation.     scalar: (obs_dim,)  batched: (B, obs_dim)
        done:       Episode termination.  scalar: ()          batched: (B,)
    """

    state: Array | np.ndarray
    action: Array | np.ndarray | int
    reward: Array | np.ndarray | float
    next_state: Array | np.ndarray
    done: Array | np.ndarray | bool


# A "Batch" is simply a Transition whose fields have a leading batch
# dimension.
Batch = Transition


def make_transition(
    state,
    action: int,
    reward: float,
    next_state,
    done: bool,
) -> Transition:
    """Build a Transition that owns its own float32 copies of the states.

    Used wherever a transition leaves the environment that produced it, so
    later environment steps can never alias stored experience.
    """
    return Transition(
        state=np.array(state, dtype=np.float32, copy=True),
        action=int(action),
        reward=float(reward),
        next_state=np.array(next_state, dtype=np.float32, copy=True),
        done=bool(done),
    )

