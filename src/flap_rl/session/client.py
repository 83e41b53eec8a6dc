"""Foreground side of a training session.

:class:`AgentClient` keeps a read-only copy of the policy network for
low-latency action selection and visualisation, refreshed from
``WeightsEvent``s.  Everything that mutates training state is sent to the
:class:`~flap_rl.session.worker.TrainingWorker` as a command.

Usage::

    client = AgentClient(TrainingWorker(env_fn))
    client.init(DQNConfig(), RunnerConfig())
    client.wait_ready()

    action = client.act(obs)
    client.remember(obs, action, reward, next_obs, done)
    client.poll()  # apply weight / metrics updates
"""

from __future__ import annotations

import logging
import time
from typing import NamedTuple

import numpy as np

from flap_rl.algorithms.dqn.config import DQNConfig
from flap_rl.algorithms.dqn.network import ValueNetwork
from flap_rl.dataprotocol.transition import make_transition
from flap_rl.errors import require_finite
from flap_rl.runner.config import RunnerConfig
from flap_rl.session.commands import (
    ErrorEvent,
    EvalResultEvent,
    Event,
    Experience,
    Init,
    MetricsEvent,
    ReadyEvent,
    RequestWeights,
    Reset,
    SetAutoDecay,
    SetAutoEval,
    SetBatchSize,
    SetEpsilon,
    SetGamma,
    SetLearningRate,
    SetLRScheduler,
    SetNumEnvs,
    SetRewardConfig,
    SetTrainFreq,
    SetWeights,
    StartFast,
    StopFast,
    WeightsEvent,
)
from flap_rl.session.worker import TrainingWorker
from flap_rl.types import EvalResult, MetricsSnapshot, WeightsData

logger = logging.getLogger(__name__)


class NetworkVisualization(NamedTuple):
    layer_sizes: list[int]
    activations: list[list[float]]
    q_values: list[float]
    selected_action: int


class AgentClient:
    """Inference copy plus command helpers for one :class:`TrainingWorker`.

    Args:
        worker: The session's background worker.
        seed: Seed for the client's own exploration coin.
    """

    def __init__(self, worker: TrainingWorker, *, seed: int | None = None) -> None:
        self.worker = worker
        self.network: ValueNetwork | None = None
        self.backend: ReadyEvent | None = None
        self.epsilon = 0.0
        self.train_steps = 0
        self.last_loss = 0.0
        self.last_q_values: list[float] = []
        self.metrics: MetricsSnapshot | None = None
        self.eval_results: list[EvalResult] = []
        self.errors: list[str] = []
        self._n_actions = 2
        self._rng = np.random.default_rng(seed)

    @property
    def ready(self) -> bool:
        return self.backend is not None

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def act(self, obs, *, explore: bool = True) -> int:
        """Epsilon-greedy action from the local network copy.

        Before the first weights arrive every action is random.
        """
        if self.network is None:
            return int(self._rng.integers(self._n_actions))
        q = np.asarray(self.network.predict(np.asarray(obs, dtype=np.float32)))
        self.last_q_values = q.tolist()
        if explore and self._rng.random() < self.epsilon:
            return int(self._rng.integers(self._n_actions))
        return int(np.argmax(q))

    def network_visualization(self, obs) -> NetworkVisualization:
        """Per-layer activations and Q-values for *obs*."""
        if self.network is None:
            raise RuntimeError("no weights received yet")
        x = np.asarray(obs, dtype=np.float32)
        q = np.asarray(self.network.predict(x)).tolist()
        return NetworkVisualization(
            layer_sizes=self.network.layer_sizes(),
            activations=self.network.activations(x),
            q_values=q,
            selected_action=int(np.argmax(q)),
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def init(self, config: DQNConfig | None = None, runner: RunnerConfig | None = None) -> None:
        config = config or DQNConfig()
        self._n_actions = config.n_actions
        self.epsilon = config.epsilon_start
        self.backend = None
        self.worker.send(Init(config, runner or RunnerConfig()))

    def remember(self, state, action: int, reward: float, next_state, done: bool) -> None:
        self.worker.send(Experience(make_transition(state, action, reward, next_state, done)))

    def request_weights(self) -> None:
        self.worker.send(RequestWeights())

    def load_weights(self, data: WeightsData) -> None:
        """Install *data* locally and in the worker's policy and target networks."""
        if self.network is not None:
            self.network = self.network.deserialize(data)
        else:
            self.network = ValueNetwork.from_serialized(data)
        self.worker.send(SetWeights(data))

    def set_epsilon(self, value: float) -> None:
        self.epsilon = min(max(require_finite("epsilon", value), 0.0), 1.0)
        self.worker.send(SetEpsilon(self.epsilon))

    def set_auto_decay(self, enabled: bool) -> None:
        self.worker.send(SetAutoDecay(enabled))

    def set_learning_rate(self, value: float) -> None:
        self.worker.send(SetLearningRate(value))

    def set_gamma(self, value: float) -> None:
        self.worker.send(SetGamma(value))

    def set_reward_config(self, **values: float) -> None:
        self.worker.send(SetRewardConfig(values))

    def set_lr_scheduler(self, enabled: bool, **settings: float) -> None:
        self.worker.send(SetLRScheduler(enabled, **settings))

    def set_train_freq(self, value: int) -> None:
        self.worker.send(SetTrainFreq(value))

    def set_auto_eval(self, enabled: bool, interval: int | None = None, trials: int | None = None) -> None:
        self.worker.send(SetAutoEval(enabled, interval, trials))

    def set_num_envs(self, value: int) -> None:
        self.worker.send(SetNumEnvs(value))

    def set_batch_size(self, value: int) -> None:
        self.worker.send(SetBatchSize(value))

    def start_fast(self, starting_episode: int = 0, starting_total_steps: int = 0) -> None:
        self.worker.send(StartFast(starting_episode, starting_total_steps))

    def stop_fast(self) -> None:
        self.worker.send(StopFast())

    def reset(self) -> None:
        self.worker.send(Reset())

    def close(self) -> None:
        self.worker.close()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def poll(self, timeout: float | None = None) -> list[Event]:
        """Apply every pending event; waits up to *timeout* for the first."""
        events = []
        event = self.worker.poll(timeout)
        while event is not None:
            self._apply(event)
            events.append(event)
            event = self.worker.poll()
        return events

    def wait_ready(self, timeout: float = 30.0) -> ReadyEvent:
        """Block until the worker answers ``Init``."""
        deadline = time.monotonic() + timeout
        while self.backend is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("worker did not become ready")
            self.poll(timeout=remaining)
        return self.backend

    def _apply(self, event: Event) -> None:
        if isinstance(event, WeightsEvent):
            if self.network is None:
                self.network = ValueNetwork.from_serialized(event.data)
            else:
                self.network = self.network.deserialize(event.data)
            self.train_steps = event.steps
            self.last_loss = event.loss
        elif isinstance(event, MetricsEvent):
            self.metrics = event.snapshot
            self.epsilon = event.snapshot.epsilon
        elif isinstance(event, EvalResultEvent):
            self.eval_results.append(event.result)
        elif isinstance(event, ReadyEvent):
            self.backend = event
        elif isinstance(event, ErrorEvent):
            logger.error("Worker reported: %s", event.message)
            self.errors.append(event.message)
