"""DQN-specific state containers."""

from __future__ import annotations

from typing import NamedTuple

import chex

from flap_rl.types import Params


class DQNState(NamedTuple):
    """DQN agent state.

    Fields:
        params: Policy Q-network (a ``ValueNetwork``), the one being trained.
        target_params: Target Q-network, read-only between syncs.
        step: Training steps (batch updates) performed so far.
        rng: PRNG key for exploration and weight reinitialisation.
    """

    params: Params
    target_params: Params
    step: int
    rng: chex.PRNGKey


class DQNMetrics(NamedTuple):
    """Result of one ``DQN.update`` call.

    Fields:
        loss: Mean Huber loss over the batch (0.0 when the update was skipped).
        resets: Number of samples whose step forced a reinitialisation.
        synced: True if the target network was refreshed by this update.
    """

    loss: float
    resets: int
    synced: bool
