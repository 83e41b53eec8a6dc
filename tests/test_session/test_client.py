"""Tests for the foreground AgentClient."""

import time

import numpy as np
import pytest

from flap_rl.errors import ConfigurationFault
from flap_rl.runner import BackendInfo
from flap_rl.session import AgentClient, TrainingWorker


@pytest.fixture
def client(env_fn, small_dqn_config, small_runner_config):
    worker = TrainingWorker(
        env_fn,
        backend_init=lambda: BackendInfo("cpu", False, 1),
        idle_timeout=0.02,
    )
    c = AgentClient(worker, seed=0)
    c.init(small_dqn_config, small_runner_config)
    c.wait_ready(timeout=60.0)
    yield c
    c.close()


class TestAgentClient:
    def test_ready_with_network(self, client):
        assert client.ready
        assert client.network is not None
        assert client.network.layer_sizes() == [6, 16, 2]

    def test_greedy_act_uses_local_network(self, client):
        obs = np.linspace(-1, 1, 6).astype(np.float32)
        action = client.act(obs, explore=False)
        assert action == int(np.argmax(np.asarray(client.network.predict(obs))))
        assert len(client.last_q_values) == 2

    def test_random_before_weights(self, env_fn):
        worker = TrainingWorker(env_fn, idle_timeout=0.02, start=False)
        client = AgentClient(worker, seed=0)
        actions = {client.act(np.zeros(6)) for _ in range(30)}
        assert actions == {0, 1}

    def test_network_visualization(self, client):
        viz = client.network_visualization(np.zeros(6, dtype=np.float32))
        assert viz.layer_sizes == [6, 16, 2]
        assert len(viz.activations) == 3
        assert len(viz.q_values) == 2
        assert viz.selected_action in (0, 1)

    def test_remember_trains_worker(self, client):
        obs = np.zeros(6, dtype=np.float32)
        for i in range(60):
            client.remember(obs, i % 2, 0.5, obs, False)
        client.request_weights()
        deadline = time.monotonic() + 60.0
        while client.train_steps == 0 and time.monotonic() < deadline:
            client.poll(timeout=0.1)
        assert client.train_steps == 6

    def test_load_weights_updates_local_copy(self, client):
        data = client.network.serialize()
        data["biases"][-1] = [5.0, -5.0]
        client.load_weights(data)
        assert client.act(np.zeros(6), explore=False) == 0

    def test_set_epsilon_clamps(self, client):
        client.set_epsilon(3.0)
        assert client.epsilon == 1.0

    def test_set_epsilon_rejects_nan(self, client):
        client.set_epsilon(0.4)
        with pytest.raises(ConfigurationFault):
            client.set_epsilon(float("nan"))
        assert client.epsilon == 0.4
