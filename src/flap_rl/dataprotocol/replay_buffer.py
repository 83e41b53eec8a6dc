"""Experience replay for the DQN trainers.

Design choice: numpy arrays for storage + mutation, numpy output on
``sample()``.  The buffer lives outside every compiled function: it is
filled and sampled from the trainer's Python loop, and the sampled batch
is handed to the jitted update as plain arrays.

Both insertion and sampling copy: ``push`` writes into pre-allocated
storage and ``sample`` uses fancy indexing, so nothing returned by the
buffer aliases its slots and nothing stored aliases live environment
state.  Typical usage::

    for step in range(total_steps):
        action = select_action(obs)
        result = env.step(action)
        buffer.push(obs, action, result.reward, result.observation, result.done)
        if buffer.can_sample(batch_size):
            batch = buffer.sample(batch_size)
            state, metrics = DQN.update(state, batch, lr=lr, gamma=gamma)
"""

from __future__ import annotations

import numpy as np

from flap_rl.dataprotocol.transition import Transition


class ReplayBuffer:
    """Fixed-size circular buffer with uniform random sampling.

    Once ``capacity`` transitions have been pushed, each new push
    overwrites the oldest slot, so the buffer always holds exactly the
    last ``capacity`` transitions.

    Parameters
    ----------
    capacity:
        Maximum number of transitions retained.
    obs_dim:
        Length of the observation vector.
    seed:
        Optional seed for the sampling generator.
    """

    def __init__(self, capacity: int, obs_dim: int, *, seed: int | None = None) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.obs_dim = obs_dim
        self._size = 0
        self._ptr = 0
        self._rng = np.random.default_rng(seed)

        self._states = np.zeros((capacity, obs_dim), dtype=np.float32)
        self._actions = np.zeros(capacity, dtype=np.int32)
        self._rewards = np.zeros(capacity, dtype=np.float32)
        self._next_states = np.zeros((capacity, obs_dim), dtype=np.float32)
        self._dones = np.zeros(capacity, dtype=np.bool_)

    def push(
        self,
        state: np.ndarray,
        action: int | np.ndarray,
        reward: float,
        next_state: np.ndarray,
        done: bool,
    ) -> None:
        """Store a single transition, overwriting the oldest at capacity."""
        idx = self._ptr
        self._states[idx] = state
        self._actions[idx] = action
        self._rewards[idx] = reward
        self._next_states[idx] = next_state
        self._dones[idx] = done
        self._ptr = (self._ptr + 1) % self.capacity
        self._size = min(self._size + 1, self.capacity)

    def add(self, t: Transition) -> None:
        """Store a ``Transition`` (accepts numpy or jax fields)."""
        self.push(
            state=np.asarray(t.state),
            action=np.asarray(t.action),
            reward=np.asarray(t.reward),
            next_state=np.asarray(t.next_state),
            done=np.asarray(t.done),
        )

    def can_sample(self, batch_size: int) -> bool:
        """True once at least ``batch_size`` transitions are stored."""
        return self._size >= batch_size

    def sample(self, batch_size: int) -> Transition:
        """Uniformly sample a batch (with replacement) as numpy arrays.

        Every call draws fresh indices; there is no cursor state.
        """
        if self._size == 0:
            raise ValueError("cannot sample from an empty ReplayBuffer")
        indices = self._rng.integers(0, self._size, size=batch_size)
        return Transition(
            state=self._states[indices],
            action=self._actions[indices],
            reward=self._rewards[indices],
            next_state=self._next_states[indices],
            done=self._dones[indices],
        )

    def clear(self) -> None:
        """Forget every stored transition (storage is kept allocated)."""
        self._size = 0
        self._ptr = 0

    def __len__(self) -> int:
        return self._size

    def __repr__(self) -> str:
        return f"ReplayBuffer(size={self._size}, capacity={self.capacity})"
