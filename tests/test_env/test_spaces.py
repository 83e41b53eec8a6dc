import numpy as np

from flap_rl.env.spaces import Box, Discrete


class TestDiscrete:
    def test_sample_in_range(self):
        space = Discrete(2)
        rng = np.random.default_rng(0)
        assert all(space.contains(space.sample(rng)) for _ in range(20))

    def test_contains(self):
        space = Discrete(2)
        assert space.contains(1)
        assert not space.contains(2)
        assert not space.contains(-1)
        assert not space.contains(0.5)

    def test_hashable(self):
        assert Discrete(2) == Discrete(2)
        assert len({Discrete(2), Discrete(2)}) == 1


class TestBox:
    def test_sample_shape_and_bounds(self):
        space = Box(low=-2.0, high=2.0, shape=(6,))
        x = space.sample(np.random.default_rng(0))
        assert x.shape == (6,) and x.dtype == np.float32
        assert space.contains(x)

    def test_contains_rejects_wrong_shape(self):
        assert not Box(-1.0, 1.0, (3,)).contains(np.zeros(4))

    def test_contains_rejects_out_of_bounds(self):
        assert not Box(-1.0, 1.0, (2,)).contains(np.array([0.0, 1.5]))
