import numpy as np
import pytest

from flap_rl.dataprotocol.replay_buffer import ReplayBuffer
from flap_rl.dataprotocol.transition import Transition, make_transition


def _make_transition(val: float) -> Transition:
    return make_transition(
        state=[val, val],
        action=int(val) % 2,
        reward=val,
        next_state=[val + 1, val + 1],
        done=False,
    )


class TestReplayBuffer:
    def test_add_and_len(self):
        buf = ReplayBuffer(capacity=10, obs_dim=2)
        assert len(buf) == 0
        buf.add(_make_transition(1.0))
        assert len(buf) == 1
        buf.add(_make_transition(2.0))
        assert len(buf) == 2

    def test_capacity_wraps(self):
        buf = ReplayBuffer(capacity=3, obs_dim=2)
        for i in range(5):
            buf.add(_make_transition(float(i)))
        assert len(buf) == 3  # capped at capacity

    def test_capacity_four_keeps_last_four(self):
        buf = ReplayBuffer(capacity=4, obs_dim=2, seed=0)
        for i in range(5):
            buf.add(_make_transition(float(i)))
        assert len(buf) == 4
        batch = buf.sample(batch_size=500)
        assert set(batch.reward.tolist()) == {1.0, 2.0, 3.0, 4.0}

    def test_sample_shape(self):
        buf = ReplayBuffer(capacity=100, obs_dim=2)
        for i in range(20):
            buf.add(_make_transition(float(i)))
        batch = buf.sample(batch_size=8)
        assert batch.state.shape == (8, 2)
        assert batch.action.shape == (8,)
        assert batch.reward.shape == (8,)
        assert batch.next_state.shape == (8, 2)
        assert batch.done.shape == (8,)

    def test_sample_keeps_rows_together(self):
        buf = ReplayBuffer(capacity=100, obs_dim=2)
        for i in range(50):
            buf.add(_make_transition(float(i)))
        batch = buf.sample(batch_size=16)
        np.testing.assert_array_equal(batch.state[:, 0], batch.reward)
        np.testing.assert_array_equal(batch.next_state[:, 0], batch.reward + 1)

    def test_sample_with_replacement(self):
        buf = ReplayBuffer(capacity=10, obs_dim=2)
        buf.add(_make_transition(7.0))
        batch = buf.sample(batch_size=4)
        assert batch.reward.tolist() == [7.0] * 4

    def test_sample_empty_raises(self):
        with pytest.raises(ValueError):
            ReplayBuffer(capacity=10, obs_dim=2).sample(1)

    def test_can_sample(self):
        buf = ReplayBuffer(capacity=10, obs_dim=2)
        for i in range(3):
            buf.add(_make_transition(float(i)))
        assert buf.can_sample(3)
        assert not buf.can_sample(4)

    def test_clear(self):
        buf = ReplayBuffer(capacity=10, obs_dim=2)
        for i in range(5):
            buf.add(_make_transition(float(i)))
        buf.clear()
        assert len(buf) == 0
        assert not buf.can_sample(1)

    def test_seeded_sampling_is_reproducible(self):
        def draw():
            buf = ReplayBuffer(capacity=100, obs_dim=2, seed=3)
            for i in range(50):
                buf.add(_make_transition(float(i)))
            return buf.sample(batch_size=10).reward

        np.testing.assert_array_equal(draw(), draw())

    def test_push_accepts_raw_fields(self):
        buf = ReplayBuffer(capacity=10, obs_dim=2)
        buf.push(np.zeros(2), 1, 0.5, np.ones(2), True)
        batch = buf.sample(1)
        assert batch.action[0] == 1 and bool(batch.done[0])
