"""Tests for the background training worker."""

import dataclasses
import time

import numpy as np
import pytest

from flap_rl.dataprotocol import make_transition
from flap_rl.errors import BackendUnavailable
from flap_rl.runner import BackendInfo
from flap_rl.session import (
    ErrorEvent,
    EvalResultEvent,
    Experience,
    Init,
    MetricsEvent,
    ReadyEvent,
    RequestWeights,
    Reset,
    SetAutoEval,
    SetEpsilon,
    SetGamma,
    SetRewardConfig,
    SetWeights,
    StartFast,
    StopFast,
    TrainingWorker,
    WeightsEvent,
    WorkerState,
)

TIMEOUT = 60.0


def _cpu_backend() -> BackendInfo:
    return BackendInfo(backend_name="cpu", accelerated=False, device_count=1)


def _broken_backend() -> BackendInfo:
    raise BackendUnavailable("no devices")


def wait_for(worker, event_type, predicate=lambda e: True, timeout=TIMEOUT):
    """Poll until an event of *event_type* matching *predicate* arrives."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        event = worker.poll(timeout=0.1)
        if isinstance(event, event_type) and predicate(event):
            return event
    raise AssertionError(f"no {event_type.__name__} within {timeout}s")


@pytest.fixture
def worker(env_fn):
    w = TrainingWorker(env_fn, backend_init=_cpu_backend, idle_timeout=0.02)
    yield w
    w.close()


def _transition(i: int):
    obs = np.full(6, (i % 10) / 10, dtype=np.float32)
    return make_transition(obs, i % 2, 0.1, obs, False)


class TestInit:
    def test_emits_weights_then_ready(self, worker, small_dqn_config, small_runner_config):
        worker.send(Init(small_dqn_config, small_runner_config))
        weights = wait_for(worker, WeightsEvent)
        assert weights.steps == 0 and weights.loss == 0.0
        ready = wait_for(worker, ReadyEvent)
        assert ready.backend_name == "cpu"
        assert not ready.accelerated

    def test_commands_before_init_are_ignored(self, worker, small_dqn_config, small_runner_config):
        worker.send(SetEpsilon(0.3))
        worker.send(RequestWeights())
        worker.send(Init(small_dqn_config, small_runner_config))
        wait_for(worker, ReadyEvent)
        assert worker.is_alive
        assert not any(isinstance(e, ErrorEvent) for e in worker.drain_events())

    def test_backend_failure_falls_back_to_single_env(
        self, env_fn, small_dqn_config, small_runner_config,
    ):
        rc = dataclasses.replace(small_runner_config, num_envs=4)
        w = TrainingWorker(env_fn, backend_init=_broken_backend, idle_timeout=0.02)
        try:
            w.send(Init(small_dqn_config, rc))
            ready = wait_for(w, ReadyEvent)
            assert not ready.accelerated
            w.send(StartFast())
            wait_for(w, MetricsEvent)
        finally:
            w.close()
        assert w._pool.num_envs == 1


class TestExperience:
    def test_foreground_experience_trains_after_warmup(
        self, worker, small_dqn_config, small_runner_config,
    ):
        worker.send(Init(small_dqn_config, small_runner_config))
        wait_for(worker, ReadyEvent)
        for i in range(60):
            worker.send(Experience(_transition(i)))
        worker.send(RequestWeights())
        weights = wait_for(worker, WeightsEvent, lambda e: e.steps > 0)
        assert weights.steps == 6
        assert weights.loss > 0.0

    def test_set_weights_loads_policy(self, worker, small_dqn_config, small_runner_config):
        worker.send(Init(small_dqn_config, small_runner_config))
        initial = wait_for(worker, WeightsEvent).data
        wait_for(worker, ReadyEvent)
        data = {
            "weights": [[[w * 0.5 for w in row] for row in layer] for layer in initial["weights"]],
            "biases": initial["biases"],
        }
        worker.send(SetWeights(data))
        worker.send(RequestWeights())
        echoed = wait_for(worker, WeightsEvent)
        np.testing.assert_allclose(np.asarray(echoed.data["weights"][0]), np.asarray(data["weights"][0]))
        assert echoed.loss == 0.0


class TestFastTraining:
    def test_start_and_stop(self, worker, small_dqn_config, small_runner_config):
        worker.send(Init(small_dqn_config, small_runner_config))
        wait_for(worker, ReadyEvent)
        worker.send(StartFast(starting_episode=0, starting_total_steps=0))
        first = wait_for(worker, MetricsEvent)
        later = wait_for(worker, MetricsEvent, lambda e: e.snapshot.total_steps > first.snapshot.total_steps)
        assert later.snapshot.total_steps > 0
        worker.send(StopFast())
        wait_for(worker, WeightsEvent)
        deadline = time.monotonic() + TIMEOUT
        while worker.state is not WorkerState.IDLE and time.monotonic() < deadline:
            time.sleep(0.01)
        assert worker.state is WorkerState.IDLE

    def test_auto_evaluation(self, worker, small_dqn_config, small_runner_config):
        rc = dataclasses.replace(small_runner_config, auto_eval=True, eval_interval=2)
        worker.send(Init(small_dqn_config, rc))
        wait_for(worker, ReadyEvent)
        worker.send(StartFast())
        result = wait_for(worker, EvalResultEvent).result
        assert len(result.scores) == rc.eval_trials
        worker.send(StopFast())

    def test_disabling_auto_eval_finishes_early(
        self, worker, small_dqn_config, small_runner_config,
    ):
        rc = dataclasses.replace(
            small_runner_config,
            auto_eval=True,
            eval_interval=1,
            eval_trials=100_000,
            eval_envs=4,
            max_eval_steps=10_000,
            metrics_interval_ms=20.0,
        )
        worker.send(Init(small_dqn_config, rc))
        wait_for(worker, ReadyEvent)
        worker.send(StartFast())
        wait_for(worker, MetricsEvent, lambda e: e.snapshot.is_eval and e.snapshot.eval_trial > 0)
        worker.send(SetAutoEval(False))
        result = wait_for(worker, EvalResultEvent).result
        assert 0 < len(result.scores) < 100_000
        worker.send(StopFast())

    def test_reset_emits_fresh_weights(self, worker, small_dqn_config, small_runner_config):
        worker.send(Init(small_dqn_config, small_runner_config))
        wait_for(worker, ReadyEvent)
        worker.send(StartFast())
        wait_for(worker, MetricsEvent)
        worker.send(Reset())
        weights = wait_for(worker, WeightsEvent, lambda e: e.steps == 0)
        assert weights.loss == 0.0


class TestErrors:
    def test_bad_command_reports_error_and_survives(
        self, worker, small_dqn_config, small_runner_config,
    ):
        worker.send(Init(small_dqn_config, small_runner_config))
        wait_for(worker, ReadyEvent)
        worker.send(SetRewardConfig({"bogus": 1.0}))
        error = wait_for(worker, ErrorEvent)
        assert "bogus" in error.message
        worker.send(RequestWeights())
        wait_for(worker, WeightsEvent)
        assert worker.is_alive

    def test_non_finite_setting_reports_error(self, worker, small_dqn_config, small_runner_config):
        worker.send(Init(small_dqn_config, small_runner_config))
        wait_for(worker, ReadyEvent)
        worker.send(SetGamma(float("nan")))
        error = wait_for(worker, ErrorEvent)
        assert error.message.startswith("ConfigurationFault")
        worker.send(SetEpsilon(float("inf")))
        wait_for(worker, ErrorEvent)
        worker.send(RequestWeights())
        wait_for(worker, WeightsEvent)
        assert worker.is_alive

    def test_unfillable_warmup_rejected_at_init(self, worker, small_dqn_config, small_runner_config):
        rc = dataclasses.replace(small_runner_config, warmup_steps=small_dqn_config.buffer_capacity * 2)
        worker.send(Init(small_dqn_config, rc))
        error = wait_for(worker, ErrorEvent)
        assert "buffer_capacity" in error.message
        assert worker.state is WorkerState.IDLE

    def test_close_joins_thread(self, env_fn):
        w = TrainingWorker(env_fn, backend_init=_cpu_backend, idle_timeout=0.02)
        w.close()
        assert not w.is_alive
