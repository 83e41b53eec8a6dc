"""Background training worker.

One :class:`TrainingWorker` per session owns a thread, a
:class:`~flap_rl.runner.state.TrainerState` and (while training) a pool
of environments.  The foreground talks to it only through commands and
events (see :mod:`flap_rl.session.commands`).

State machine::

    IDLE --Init--> CONFIGURING --> IDLE
    IDLE --StartFast--> TRAINING <--> EVAL
    TRAINING / EVAL --StopFast / Reset--> IDLE

While TRAINING or EVAL the worker runs bounded work units and drains
pending commands between them; while IDLE it blocks on the command queue.

Usage::

    worker = TrainingWorker(lambda i: make("FlappyBird-v0", seed=i))
    worker.send(Init(DQNConfig(), RunnerConfig(num_envs=64)))
    worker.send(StartFast())
    for event in worker.drain_events():
        ...
    worker.close()
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from enum import Enum

from flap_rl.env.base import Environment
from flap_rl.env.vector import EnvFactory, VecEnv
from flap_rl.errors import BackendUnavailable
from flap_rl.runner.device_utils import BackendInfo, init_backend
from flap_rl.runner.evaluator import Evaluator
from flap_rl.runner.state import TrainerState
from flap_rl.runner.train_dqn import run_fast_steps, submit_experience
from flap_rl.runner.train_dqn_batched import run_batched_unit
from flap_rl.session.commands import (
    Command,
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
    Shutdown,
    StartFast,
    StopFast,
    WeightsEvent,
)
from flap_rl.types import EvalResult

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    IDLE = "idle"
    CONFIGURING = "configuring"
    TRAINING = "training"
    EVAL = "eval"


class TrainingWorker:
    """Runs the slow path of a training session on a background thread.

    Args:
        env_fn: ``env_fn(index) -> Environment`` for training and
            evaluation pools.
        backend_init: Accelerator discovery; raising ``BackendUnavailable``
            pins the session to the single-environment trainer.
        idle_timeout: Seconds to block on the command queue while idle.
        start: Start the thread immediately.
    """

    def __init__(
        self,
        env_fn: EnvFactory,
        *,
        backend_init: Callable[[], BackendInfo] = init_backend,
        idle_timeout: float = 0.1,
        start: bool = True,
    ) -> None:
        self._env_fn = env_fn
        self._backend_init = backend_init
        self._idle_timeout = idle_timeout
        self._commands: queue.Queue[Command] = queue.Queue()
        self._events: queue.Queue[Event] = queue.Queue()

        self.state = WorkerState.IDLE
        self.backend: BackendInfo | None = None
        self._ts: TrainerState | None = None
        self._pool: VecEnv | None = None
        self._evaluator: Evaluator | None = None
        self._batched_capable = False
        self._reward_overrides: dict[str, float] = {}
        self._last_weights_step = 0

        self._thread = threading.Thread(target=self._run, name="flap-rl-worker", daemon=True)
        if start:
            self.start()

    # ------------------------------------------------------------------
    # Foreground API
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._thread.start()

    def send(self, command: Command) -> None:
        self._commands.put(command)

    def poll(self, timeout: float | None = None) -> Event | None:
        """Next event, waiting up to *timeout* seconds (``None`` = don't wait)."""
        try:
            if timeout is None:
                return self._events.get_nowait()
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain_events(self) -> list[Event]:
        events = []
        while (event := self.poll()) is not None:
            events.append(event)
        return events

    def close(self, timeout: float = 5.0) -> None:
        """Ask the thread to stop and wait for it."""
        if self._thread.is_alive():
            self.send(Shutdown())
            self._thread.join(timeout)

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    @property
    def trainer_state(self) -> TrainerState | None:
        """The session state.  Only safe to inspect once the thread has stopped."""
        return self._ts

    def __enter__(self) -> TrainingWorker:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Thread loop
    # ------------------------------------------------------------------

    def _run(self) -> None:
        logger.debug("Worker thread started")
        while True:
            for command in self._next_commands():
                if isinstance(command, Shutdown):
                    logger.debug("Worker thread shutting down")
                    return
                self._guarded(self._dispatch, command)

            if self.state is WorkerState.TRAINING:
                self._guarded(self._train_unit, stop_on_error=True)
            elif self.state is WorkerState.EVAL:
                self._guarded(self._eval_slice, stop_on_error=True)

    def _next_commands(self) -> list[Command]:
        commands = []
        if self.state in (WorkerState.IDLE, WorkerState.CONFIGURING):
            try:
                commands.append(self._commands.get(timeout=self._idle_timeout))
            except queue.Empty:
                return commands
        while True:
            try:
                commands.append(self._commands.get_nowait())
            except queue.Empty:
                return commands

    def _guarded(
        self,
        fn: Callable[..., None],
        *args: object,
        stop_on_error: bool = False,
    ) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.exception("Worker error")
            self._emit(ErrorEvent(f"{type(e).__name__}: {e}"))
            if stop_on_error:
                self._stop_fast()

    def _emit(self, event: Event) -> None:
        self._events.put(event)

    # ------------------------------------------------------------------
    # Command dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, command: Command) -> None:
        if isinstance(command, Init):
            self._init(command)
            return
        ts = self._ts
        if ts is None:
            logger.warning("Ignoring %s received before Init", type(command).__name__)
            return

        if isinstance(command, Experience):
            submit_experience(ts, command.transition)
            self._after_updates()
        elif isinstance(command, RequestWeights):
            self._emit_weights()
        elif isinstance(command, SetWeights):
            params = ts.agent.params.deserialize(command.data)
            ts.agent = ts.agent._replace(
                params=params, target_params=ts.agent.target_params.copy_weights_from(params),
            )
            ts.last_loss = 0.0
            logger.info("Loaded external weights into policy and target networks")
        elif isinstance(command, SetEpsilon):
            ts.epsilon.set(command.value, ts.train_steps)
        elif isinstance(command, SetAutoDecay):
            ts.epsilon.set_auto_decay(command.enabled, ts.train_steps)
        elif isinstance(command, SetLearningRate):
            ts.set_learning_rate(command.value)
        elif isinstance(command, SetGamma):
            ts.set_gamma(command.value)
        elif isinstance(command, SetRewardConfig):
            self._set_reward_config(command.values)
        elif isinstance(command, SetLRScheduler):
            ts.lr_scheduler.configure(
                command.enabled,
                patience=command.patience,
                factor=command.factor,
                min_lr=command.min_lr,
            )
        elif isinstance(command, SetTrainFreq):
            ts.set_train_freq(command.value)
        elif isinstance(command, SetAutoEval):
            ts.set_auto_eval(command.enabled, command.interval, command.trials)
            if not command.enabled and self.state is WorkerState.EVAL:
                self._finish_eval(self._evaluator.finish())
        elif isinstance(command, SetNumEnvs):
            ts.set_num_envs(command.value)
            if self._pool is not None and self._pool.num_envs != self._pool_size():
                self._pool.resize(self._pool_size())
            logger.info("Parallel environments: %d (batch size %d)", ts.num_envs, ts.hparams.batch_size)
        elif isinstance(command, SetBatchSize):
            ts.set_batch_size(command.value)
        elif isinstance(command, StartFast):
            self._start_fast(command)
        elif isinstance(command, StopFast):
            self._stop_fast()
        elif isinstance(command, Reset):
            self._stop_fast()
            ts.reset()
            self._last_weights_step = 0
            logger.info("Session reset")
            self._emit(WeightsEvent(ts.agent.params.serialize(), 0, 0.0))
        else:
            raise TypeError(f"unknown command: {command!r}")

    def _init(self, command: Init) -> None:
        self.state = WorkerState.CONFIGURING
        try:
            self.backend = self._backend_init()
            self._batched_capable = True
        except BackendUnavailable as e:
            logger.warning("%s; falling back to single-environment training", e)
            self.backend = BackendInfo(backend_name="cpu", accelerated=False, device_count=0)
            self._batched_capable = False

        try:
            self._ts = TrainerState.create(command.config, command.runner)
        finally:
            self.state = WorkerState.IDLE
        self._pool = None
        self._evaluator = None
        self._last_weights_step = 0
        logger.info(
            "Session initialised: layers %s, %d env(s), batch size %d",
            self._ts.agent.params.layer_sizes(), self._ts.num_envs, self._ts.hparams.batch_size,
        )
        self._emit(WeightsEvent(self._ts.agent.params.serialize(), 0, 0.0))
        self._emit(ReadyEvent(self.backend.backend_name, self.backend.accelerated))

    def _start_fast(self, command: StartFast) -> None:
        ts = self._ts
        if self.state in (WorkerState.TRAINING, WorkerState.EVAL):
            logger.warning("StartFast ignored: already training")
            return
        ts.begin_run(command.starting_episode, command.starting_total_steps)
        self._pool = VecEnv(self._make_env, self._pool_size())
        self.state = WorkerState.TRAINING
        logger.info(
            "Fast training started (%s, %d env(s))",
            "batched" if self._use_batched() else "single", self._pool.num_envs,
        )

    def _stop_fast(self) -> None:
        if self.state not in (WorkerState.TRAINING, WorkerState.EVAL):
            return
        self.state = WorkerState.IDLE
        self._pool = None
        self._evaluator = None
        logger.info("Fast training stopped at %d env steps", self._ts.total_steps)
        self._emit_weights()
        self._emit(MetricsEvent(self._ts.emit_metrics()))

    # ------------------------------------------------------------------
    # Work units
    # ------------------------------------------------------------------

    def _train_unit(self) -> None:
        ts = self._ts
        if self._use_batched():
            unit = run_batched_unit(ts, self._pool)
        else:
            unit = run_fast_steps(ts, self._pool, ts.runner_config.fast_batch_steps)
        self._after_updates()
        if unit.eval_due:
            self._start_eval()

    def _start_eval(self) -> None:
        ts = self._ts
        rc = ts.runner_config
        ts.eval.last_episode = ts.stats.episodes
        self._evaluator = Evaluator(
            self._make_env,
            trials=ts.eval.trials,
            num_envs=rc.eval_envs,
            training_envs=self._pool.num_envs,
            max_steps=rc.max_eval_steps,
            episode=ts.stats.episodes,
            slice_ms=rc.eval_slice_ms,
        )
        self.state = WorkerState.EVAL
        logger.info("Evaluation started at episode %d (%d trials)", ts.stats.episodes, ts.eval.trials)

    def _eval_slice(self) -> None:
        ts = self._ts
        evaluator = self._evaluator
        result = evaluator.run_slice(ts.agent.params)
        if ts.metrics_due():
            snapshot = ts.emit_metrics(eval_trial=evaluator.completed, eval_trials=evaluator.trials)
            self._emit(MetricsEvent(snapshot))
        if result is not None:
            self._finish_eval(result)

    def _finish_eval(self, result: EvalResult | None) -> None:
        if result is not None:
            self._emit(EvalResultEvent(result))
        self._evaluator = None
        self.state = WorkerState.TRAINING

    def _after_updates(self) -> None:
        ts = self._ts
        interval = ts.runner_config.weight_sync_interval
        if ts.train_steps // interval > self._last_weights_step // interval:
            self._emit_weights()
        if ts.metrics_due():
            self._emit(MetricsEvent(ts.emit_metrics()))

    def _emit_weights(self) -> None:
        ts = self._ts
        self._last_weights_step = ts.train_steps
        self._emit(WeightsEvent(ts.agent.params.serialize(), ts.train_steps, ts.last_loss))

    # ------------------------------------------------------------------
    # Environments
    # ------------------------------------------------------------------

    def _use_batched(self) -> bool:
        return self._batched_capable and self._ts.num_envs > 1

    def _pool_size(self) -> int:
        return self._ts.num_envs if self._use_batched() else 1

    def _make_env(self, index: int) -> Environment:
        env = self._env_fn(index)
        if self._reward_overrides:
            env.set_reward_config(**self._reward_overrides)
        return env

    def _set_reward_config(self, values: dict[str, float]) -> None:
        if self._pool is not None:
            self._pool.set_reward_config(**values)
        else:
            # Validate now rather than when the next pool is built.
            self._env_fn(0).set_reward_config(**values)
        self._reward_overrides.update(values)
        logger.info("Reward config updated: %s", values)

