import numpy as np

from flap_rl.dataprotocol.transition import Transition, make_transition


class TestTransition:
    def test_fields(self):
        t = make_transition([1.0, 2.0], 1, 0.5, [2.0, 3.0], True)
        assert isinstance(t, Transition)
        assert t.state.dtype == np.float32
        assert t.action == 1
        assert t.reward == 0.5
        assert t.done is True

    def test_owns_copies(self):
        obs = np.array([1.0, 2.0], dtype=np.float32)
        t = make_transition(obs, 0, 0.0, obs, False)
        obs[0] = 99.0
        assert t.state[0] == 1.0
        assert t.next_state[0] == 1.0
