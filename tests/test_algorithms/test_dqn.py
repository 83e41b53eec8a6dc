"""Tests for the DQN agent namespace."""

import logging

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
import pytest

from flap_rl.algorithms.dqn import DQN, DQNConfig, DQNState
from flap_rl.algorithms.dqn.agent import DQNMetrics
from flap_rl.dataprotocol import Transition
from flap_rl.errors import ConfigurationFault
from flap_rl.seeding import make_rng

RNG = make_rng(42)


@pytest.fixture
def config():
    return DQNConfig(
        obs_dim=4,
        hidden_sizes=(32, 32),
        lr=1e-3,
        gamma=0.99,
        batch_size=16,
        target_update_freq=10,
    )


@pytest.fixture
def state(config):
    return DQN.init(RNG, config)


@pytest.fixture
def batch():
    """A small random batch of transitions."""
    k1, k2 = jax.random.split(jax.random.key(0))
    B = 16
    return Transition(
        state=np.asarray(jax.random.normal(k1, (B, 4))),
        action=np.asarray(jax.random.randint(k2, (B,), 0, 2)),
        reward=np.ones(B, dtype=np.float32),
        next_state=np.asarray(jax.random.normal(k2, (B, 4))),
        done=np.zeros(B, dtype=np.bool_),
    )


def _same(a, b) -> bool:
    return all(
        jnp.array_equal(x, y) for x, y in zip(jax.tree.leaves(a), jax.tree.leaves(b))
    )


class TestDQNInit:
    def test_returns_dqn_state(self, state):
        assert isinstance(state, DQNState)
        assert state.step == 0

    def test_target_starts_identical(self, state):
        assert _same(state.params, state.target_params)

    def test_deterministic_init(self, config):
        assert _same(DQN.init(RNG, config).params, DQN.init(RNG, config).params)

    def test_different_keys_different_params(self, config):
        s1 = DQN.init(make_rng(0), config)
        s2 = DQN.init(make_rng(1), config)
        assert not _same(s1.params, s2.params)


class TestDQNConfig:
    def test_defaults(self):
        c = DQNConfig()
        assert c.obs_dim == 6 and c.n_actions == 2
        assert c.hidden_sizes == (64, 64)

    @pytest.mark.parametrize("kwargs", [
        {"lr": 0.0},
        {"lr": float("nan")},
        {"gamma": 1.5},
        {"epsilon_end": -0.1},
        {"batch_size": 64, "buffer_capacity": 32},
        {"hidden_sizes": (0,)},
    ])
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ConfigurationFault):
            DQNConfig(**kwargs)

    def test_configuration_fault_is_value_error(self):
        with pytest.raises(ValueError):
            DQNConfig(target_update_freq=0)


class TestDQNAct:
    def test_greedy_matches_argmax(self, state):
        obs = jnp.ones(4)
        action, _ = DQN.act(state, obs, epsilon=1.0, explore=False)
        assert action == int(jnp.argmax(state.params.predict(obs)))

    def test_advances_rng(self, state):
        _, new_state = DQN.act(state, jnp.ones(4), epsilon=0.5)
        assert not jnp.array_equal(new_state.rng, state.rng)

    def test_full_exploration_hits_both_actions(self, state):
        seen = set()
        for _ in range(50):
            action, state = DQN.act(state, jnp.ones(4), epsilon=1.0)
            seen.add(action)
        assert seen == {0, 1}

    def test_ties_resolve_to_first_action(self, config):
        state = DQN.init(RNG, config)
        zero = jax.tree.map(jnp.zeros_like, state.params)
        action, _ = DQN.act(state._replace(params=zero), jnp.ones(4), epsilon=0.0)
        assert action == 0

    def test_act_batch_shape(self, state):
        actions, _ = DQN.act_batch(state, jnp.ones((7, 4)), epsilon=0.3)
        assert actions.shape == (7,)
        assert set(np.asarray(actions).tolist()) <= {0, 1}


class TestDQNUpdate:
    def test_returns_metrics_and_increments_step(self, state, batch):
        new_state, metrics = DQN.update(state, batch, lr=1e-3, gamma=0.99)
        assert isinstance(metrics, DQNMetrics)
        assert new_state.step == 1
        assert np.isfinite(metrics.loss)
        assert metrics.resets == 0

    def test_params_change(self, state, batch):
        new_state, _ = DQN.update(state, batch, lr=1e-2, gamma=0.99)
        assert not _same(state.params, new_state.params)

    def test_target_follows_after_freq_steps(self, state, batch):
        for i in range(10):
            state, metrics = DQN.update(state, batch, lr=1e-2, gamma=0.99, target_update_freq=10)
            assert metrics.synced == (i == 9)
        assert _same(state.params, state.target_params)

    def test_no_sync_without_freq(self, state, batch):
        for _ in range(3):
            state, metrics = DQN.update(state, batch, lr=1e-2, gamma=0.99)
            assert not metrics.synced
        assert not _same(state.params, state.target_params)

    def test_sync_target_is_bit_identical(self, state, batch):
        state, _ = DQN.update(state, batch, lr=1e-2, gamma=0.99)
        synced = DQN.sync_target(state)
        assert synced.target_params.serialize() == synced.params.serialize()

    def test_terminal_targets_are_rewards(self, state, batch):
        done = batch._replace(done=np.ones(16, dtype=np.bool_))
        targets = DQN.compute_targets(state.target_params, done, gamma=0.99)
        np.testing.assert_allclose(np.asarray(targets), np.ones(16))

    def test_bootstrapped_targets(self, state, batch):
        targets = DQN.compute_targets(state.target_params, batch, gamma=0.5)
        q_next = np.asarray(state.target_params.predict_batch(batch.next_state))
        np.testing.assert_allclose(np.asarray(targets), 1.0 + 0.5 * q_next.max(axis=1), rtol=1e-5)

    def test_non_finite_output_reinitialises_and_logs(self, state, batch, caplog):
        head = state.params.layers[-1]
        broken = eqx.tree_at(lambda n: n.layers[-1].bias, state.params, jnp.full_like(head.bias, jnp.nan))
        state = state._replace(params=broken)
        with caplog.at_level(logging.WARNING, logger="flap_rl"):
            new_state, metrics = DQN.update(state, batch, lr=1e-3, gamma=0.99)
        assert metrics.resets >= 1
        assert np.all(np.isfinite(np.asarray(new_state.params.predict_batch(batch.state))))
        assert any(r.getMessage().startswith("NumericFault") for r in caplog.records)

    def test_reinitialize_keeps_target_in_step(self, state):
        fresh = DQN.reinitialize(state)
        assert not _same(fresh.params, state.params)
        assert _same(fresh.params, fresh.target_params)
