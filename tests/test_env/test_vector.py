import numpy as np
import pytest

from flap_rl.env import FlappyBird, VecEnv


def _pool(n: int) -> VecEnv:
    return VecEnv(lambda i: FlappyBird(seed=i), n)


class TestVecEnv:
    def test_observations_shape(self):
        pool = _pool(3)
        assert pool.observations.shape == (3, 6)
        assert len(pool) == 3

    def test_step_returns_env_order(self):
        pool = _pool(4)
        before = pool.observations
        out = pool.step(np.zeros(4, dtype=np.int32))
        np.testing.assert_array_equal(out.obs, before)
        assert out.rewards.shape == (4,)
        assert out.dones.shape == (4,)

    def test_auto_reset_keeps_terminal_observation(self):
        pool = _pool(2)
        finished = []
        for _ in range(200):
            out = pool.step(np.zeros(2, dtype=np.int32))
            if out.finished:
                finished = out.finished
                break
        assert finished
        i = finished[0].env_index
        assert out.dones[i]
        # slot was reset: the new observation differs from the terminal one
        assert not np.array_equal(pool.observations[i], out.next_obs[i])
        assert finished[0].length > 0
        assert finished[0].reward < 0

    def test_resize(self):
        pool = _pool(2)
        pool.resize(5)
        assert pool.num_envs == 5
        with pytest.raises(ValueError):
            pool.resize(0)

    def test_reward_overrides_survive_resize(self):
        pool = _pool(2)
        pool.set_reward_config(death_penalty=-3.0)
        pool.resize(3)
        assert all(env.reward_config.death_penalty == -3.0 for env in pool.envs)

    def test_observations_is_a_copy(self):
        pool = _pool(1)
        obs = pool.observations
        obs[0, 0] = 42.0
        assert pool.observations[0, 0] != 42.0
