"""DQN agent as a namespace of functions over ``DQNState``.

State is threaded explicitly through ``DQNState``; nothing here holds
mutable state.  The heavy lifting (forward passes, per-sample SGD) happens
in jitted code inside :mod:`flap_rl.algorithms.dqn.network`; the functions
here orchestrate it and do the bookkeeping that has to stay in Python
(step counters, logging).

Usage::

    config = DQNConfig()
    state = DQN.init(rng, config)
    action, state = DQN.act(state, obs, epsilon=0.1)
    batch = buffer.sample(config.batch_size)
    state, metrics = DQN.update(
        state, batch, lr=1e-3, gamma=0.99, target_update_freq=200,
    )
"""

from __future__ import annotations

import logging

import chex
import equinox as eqx
import jax
import jax.numpy as jnp

from flap_rl.algorithms.dqn.config import DQNConfig
from flap_rl.algorithms.dqn.network import ValueNetwork
from flap_rl.algorithms.dqn.types import DQNMetrics, DQNState
from flap_rl.dataprotocol.transition import Batch
from flap_rl.errors import NumericFault
from flap_rl.seeding import split_key, split_keys

logger = logging.getLogger(__name__)


class DQN:
    """Namespace for DQN functions.

    Not instantiated; all methods are static.
    """

    @staticmethod
    def init(rng: chex.PRNGKey, config: DQNConfig) -> DQNState:
        """Create initial DQN state with identical policy and target networks."""
        rng, net_key = split_key(rng)
        policy = ValueNetwork(
            config.obs_dim, config.n_actions, config.hidden_sizes, key=net_key,
        )
        target = policy.copy_weights_from(policy)
        return DQNState(params=policy, target_params=target, step=0, rng=rng)

    @staticmethod
    def act(
        state: DQNState,
        obs: chex.Array,
        *,
        epsilon: float,
        explore: bool = True,
    ) -> tuple[int, DQNState]:
        """Select an action with epsilon-greedy exploration.

        Args:
            state: Current DQN state.
            obs: Single observation, shape ``(obs_dim,)``.
            epsilon: Probability of a uniformly random action.
            explore: If False, always act greedily.

        Returns:
            (action, new_state). Ties in the Q-values resolve to action 0.
        """
        rng, key = split_key(state.rng)
        action = _epsilon_greedy(
            state.params,
            jnp.asarray(obs, dtype=jnp.float32),
            jnp.float32(epsilon if explore else 0.0),
            key,
        )
        return int(action), state._replace(rng=rng)

    @staticmethod
    def act_batch(
        state: DQNState,
        obs: chex.Array,
        *,
        epsilon: float,
        explore: bool = True,
    ) -> tuple[jax.Array, DQNState]:
        """Epsilon-greedy actions for ``N`` observations.

        A single batched forward pass covers every observation; each row
        then draws its own exploration coin.

        Returns:
            (actions, new_state) with ``actions`` of shape ``(N,)``.
        """
        rng, key = split_key(state.rng)
        actions = _epsilon_greedy_batch(
            state.params,
            jnp.asarray(obs, dtype=jnp.float32),
            jnp.float32(epsilon if explore else 0.0),
            key,
        )
        return actions, state._replace(rng=rng)

    @staticmethod
    def compute_targets(
        target_params: ValueNetwork,
        batch: Batch,
        *,
        gamma: float,
    ) -> jax.Array:
        """Bootstrapped regression targets for a batch.

        ``reward + gamma * max_a Q_target(next_state, a)`` for non-terminal
        transitions, ``reward`` alone for terminal ones.  One batched forward
        pass over every next-state.
        """
        return _td_targets(
            target_params,
            jnp.asarray(batch.reward, dtype=jnp.float32),
            jnp.asarray(batch.next_state, dtype=jnp.float32),
            jnp.asarray(batch.done, dtype=jnp.bool_),
            jnp.float32(gamma),
        )

    @staticmethod
    def update(
        state: DQNState,
        batch: Batch,
        *,
        lr: float,
        gamma: float,
        target_update_freq: int | None = None,
    ) -> tuple[DQNState, DQNMetrics]:
        """One learning update on a sampled batch.

        Computes targets from the target network, trains the policy network
        sample by sample, and increments the training-step counter.

        Args:
            state: Current DQN state.
            batch: Batched transitions, each field has shape ``(B, ...)``.
            lr: Current learning rate.
            gamma: Current discount factor.
            target_update_freq: Copy policy into target every this many
                training steps.  ``None`` leaves syncing to the caller
                (the batched trainer syncs on environment steps).

        Returns:
            (new_state, metrics) tuple.
        """
        targets = DQN.compute_targets(state.target_params, batch, gamma=gamma)
        rng, train_key = split_key(state.rng)
        params, loss, n_resets = state.params.train_batch(
            batch.state, batch.action, targets, lr=lr, key=train_key,
        )

        resets = int(n_resets)
        if resets:
            fault = NumericFault(
                f"non-finite network output after training step {state.step + 1}; "
                f"reinitialised weights ({resets} reset(s) in batch)"
            )
            logger.warning("%s: %s", type(fault).__name__, fault)

        state = state._replace(params=params, step=state.step + 1, rng=rng)
        synced = target_update_freq is not None and state.step % target_update_freq == 0
        if synced:
            state = DQN.sync_target(state)

        return state, DQNMetrics(loss=float(loss), resets=resets, synced=synced)

    @staticmethod
    def sync_target(state: DQNState) -> DQNState:
        """Overwrite the target network with the policy network's weights."""
        target = state.target_params.copy_weights_from(state.params)
        logger.debug("Target network synced at training step %d", state.step)
        return state._replace(target_params=target)

    @staticmethod
    def reinitialize(state: DQNState) -> DQNState:
        """Fresh policy weights, copied into the target network."""
        rng, key = split_key(state.rng)
        policy = state.params.reinitialize(key)
        return state._replace(
            params=policy,
            target_params=state.target_params.copy_weights_from(policy),
            rng=rng,
        )


# ---------------------------------------------------------------------------
# Jitted kernels
# ---------------------------------------------------------------------------


@eqx.filter_jit
def _epsilon_greedy(
    net: ValueNetwork,
    obs: jax.Array,
    epsilon: jax.Array,
    key: jax.Array,
) -> jax.Array:
    key_eps, key_rand = split_key(key)
    greedy = jnp.argmax(net(obs))
    random_action = jax.random.randint(key_rand, (), 0, net.n_actions)
    use_random = jax.random.uniform(key_eps) < epsilon
    return jnp.where(use_random, random_action, greedy)


@eqx.filter_jit
def _epsilon_greedy_batch(
    net: ValueNetwork,
    obs: jax.Array,
    epsilon: jax.Array,
    key: jax.Array,
) -> jax.Array:
    n = obs.shape[0]
    key_eps, key_rand = split_keys(key, 2)[1:]
    greedy = jnp.argmax(jax.vmap(net)(obs), axis=-1)
    random_actions = jax.random.randint(key_rand, (n,), 0, net.n_actions)
    use_random = jax.random.uniform(key_eps, (n,)) < epsilon
    return jnp.where(use_random, random_actions, greedy)


@eqx.filter_jit
def _td_targets(
    target_net: ValueNetwork,
    rewards: jax.Array,
    next_states: jax.Array,
    dones: jax.Array,
    gamma: jax.Array,
) -> jax.Array:
    next_q = jnp.max(jax.vmap(target_net)(next_states), axis=-1)
    return jnp.where(dones, rewards, rewards + gamma * next_q)
