"""Per-session trainer state.

Everything a training session mutates lives in one :class:`TrainerState`
that is created per session and passed explicitly to every trainer
function.  There is no module-level mutable state, so several sessions
(e.g. in tests) can coexist in one process.

Usage::

    ts = TrainerState.create(DQNConfig(), RunnerConfig(warmup_steps=1_000))
    submit_experience(ts, transition)
    snapshot = ts.snapshot()
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum

from flap_rl.algorithms.dqn.agent import DQN
from flap_rl.algorithms.dqn.config import DQNConfig
from flap_rl.algorithms.dqn.types import DQNState
from flap_rl.dataprotocol.replay_buffer import ReplayBuffer
from flap_rl.errors import ConfigurationFault, require_finite
from flap_rl.metrics import EpisodeStats, ThroughputMeter
from flap_rl.runner.config import RunnerConfig, optimal_batch_size
from flap_rl.schedule import EpsilonSchedule, PlateauScheduler
from flap_rl.seeding import derive_seed, make_rng
from flap_rl.types import MetricsSnapshot

logger = logging.getLogger(__name__)

MIN_TRAIN_FREQ, MAX_TRAIN_FREQ = 1, 64
MIN_NUM_ENVS, MAX_NUM_ENVS = 1, 10_000
MIN_BATCH_SIZE, MAX_BATCH_SIZE = 32, 4096


class Phase(str, Enum):
    """Learning phase.  WARMUP -> TRAINING only; ``reset`` goes back."""

    WARMUP = "warmup"
    TRAINING = "training"


@dataclass
class Hyperparams:
    """Values that may change while a session is running."""

    lr: float
    gamma: float
    batch_size: int
    train_freq: int
    target_update_freq: int

    @classmethod
    def from_configs(
        cls,
        dqn: DQNConfig,
        runner: RunnerConfig,
        num_envs: int = 1,
    ) -> Hyperparams:
        """Initial values; batched sessions size batches from *num_envs*."""
        if runner.batch_size is not None:
            batch_size = runner.batch_size
        elif num_envs > 1:
            batch_size = optimal_batch_size(num_envs)
        else:
            batch_size = dqn.batch_size
        return cls(
            lr=dqn.lr,
            gamma=dqn.gamma,
            batch_size=batch_size,
            train_freq=runner.train_freq,
            target_update_freq=dqn.target_update_freq,
        )


@dataclass
class EvalSettings:
    enabled: bool
    interval: int
    trials: int
    last_episode: int = 0


@dataclass
class TrainerState:
    """Mutable state of one training session.

    Owned by a single thread (the worker's, or the caller's for the
    synchronous ``train_dqn*`` helpers).
    """

    dqn_config: DQNConfig
    runner_config: RunnerConfig
    agent: DQNState
    buffer: ReplayBuffer
    hparams: Hyperparams
    epsilon: EpsilonSchedule
    lr_scheduler: PlateauScheduler
    eval: EvalSettings
    stats: EpisodeStats
    throughput: ThroughputMeter = field(default_factory=ThroughputMeter)

    phase: Phase = Phase.WARMUP
    num_envs: int = 1
    experience_count: int = 0
    total_steps: int = 0
    last_loss: float = 0.0
    train_debt: int = 0
    last_sync_env_step: int = 0
    total_resets: int = 0
    last_metrics_time: float = field(default_factory=time.monotonic)

    @classmethod
    def create(
        cls,
        dqn_config: DQNConfig,
        runner_config: RunnerConfig,
    ) -> TrainerState:
        rc = runner_config
        if rc.warmup_steps > dqn_config.buffer_capacity:
            raise ConfigurationFault(
                f"warmup_steps ({rc.warmup_steps}) exceeds buffer_capacity "
                f"({dqn_config.buffer_capacity}); the buffer could never fill"
            )
        seed = rc.seed if rc.seed is not None else secrets.randbits(31)
        agent = DQN.init(make_rng(seed), dqn_config)
        num_envs = min(max(rc.num_envs, MIN_NUM_ENVS), MAX_NUM_ENVS)
        hparams = Hyperparams.from_configs(dqn_config, rc, num_envs)
        return cls(
            dqn_config=dqn_config,
            runner_config=rc,
            agent=agent,
            buffer=ReplayBuffer(
                dqn_config.buffer_capacity,
                dqn_config.obs_dim,
                seed=derive_seed(rc.seed, "buffer"),
            ),
            hparams=hparams,
            epsilon=EpsilonSchedule(
                dqn_config.epsilon_start,
                dqn_config.epsilon_end,
                dqn_config.epsilon_decay_steps,
            ),
            lr_scheduler=PlateauScheduler(
                rc.lr_patience, rc.lr_factor, rc.min_lr, enabled=rc.lr_scheduler,
            ),
            eval=EvalSettings(
                enabled=rc.auto_eval, interval=rc.eval_interval, trials=rc.eval_trials,
            ),
            stats=EpisodeStats(rc.metrics_window),
            num_envs=num_envs,
        )

    # ------------------------------------------------------------------
    # Phase
    # ------------------------------------------------------------------

    @property
    def train_steps(self) -> int:
        return self.agent.step

    @property
    def is_warmup(self) -> bool:
        return self.phase is Phase.WARMUP

    def update_phase(self) -> Phase:
        """Latch into TRAINING once the buffer reaches the warmup size."""
        if self.phase is Phase.WARMUP and len(self.buffer) >= self.runner_config.warmup_steps:
            self.phase = Phase.TRAINING
            logger.info(
                "Warmup complete: %d transitions buffered, training starts", len(self.buffer),
            )
        return self.phase

    # ------------------------------------------------------------------
    # Hot setters (clamp into range; non-finite values raise)
    # ------------------------------------------------------------------

    def set_learning_rate(self, lr: float) -> float:
        self.hparams.lr = max(require_finite("learning rate", lr), 0.0)
        return self.hparams.lr

    def set_gamma(self, gamma: float) -> float:
        self.hparams.gamma = min(max(require_finite("gamma", gamma), 0.0), 1.0)
        return self.hparams.gamma

    def set_train_freq(self, value: float) -> int:
        value = round(require_finite("train_freq", value))
        self.hparams.train_freq = min(max(value, MIN_TRAIN_FREQ), MAX_TRAIN_FREQ)
        return self.hparams.train_freq

    def set_batch_size(self, value: int) -> int:
        value = int(require_finite("batch_size", value))
        self.hparams.batch_size = min(max(value, MIN_BATCH_SIZE), MAX_BATCH_SIZE)
        return self.hparams.batch_size

    def set_num_envs(self, value: int) -> int:
        """Clamp the environment count and re-derive the batch size from it."""
        value = int(require_finite("num_envs", value))
        self.num_envs = min(max(value, MIN_NUM_ENVS), MAX_NUM_ENVS)
        self.hparams.batch_size = optimal_batch_size(self.num_envs)
        return self.num_envs

    def set_auto_eval(
        self,
        enabled: bool,
        interval: int | None = None,
        trials: int | None = None,
    ) -> None:
        self.eval.enabled = enabled
        if interval is not None:
            self.eval.interval = max(1, int(interval))
        if trials is not None:
            self.eval.trials = max(1, int(trials))

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def begin_run(self, starting_episode: int = 0, starting_total_steps: int = 0) -> None:
        """Reset per-run counters when fast training starts."""
        self.stats.reset(starting_episode)
        self.total_steps = starting_total_steps
        self.train_debt = 0
        self.eval.last_episode = starting_episode
        period = self.runner_config.target_update_env_steps
        self.last_sync_env_step = starting_total_steps - starting_total_steps % period
        self.throughput.reset(starting_total_steps)
        self.last_metrics_time = time.monotonic()

    def reset(self) -> None:
        """Forget everything learned: fresh weights, empty buffer, WARMUP."""
        self.agent = DQN.reinitialize(self.agent._replace(step=0))
        self.buffer.clear()
        self.phase = Phase.WARMUP
        self.hparams = Hyperparams.from_configs(self.dqn_config, self.runner_config, self.num_envs)
        self.epsilon.reset(self.dqn_config.epsilon_start)
        self.lr_scheduler.reset()
        self.eval.last_episode = 0
        self.stats.reset()
        self.experience_count = 0
        self.total_steps = 0
        self.last_loss = 0.0
        self.train_debt = 0
        self.last_sync_env_step = 0
        self.throughput.reset()

    def snapshot(
        self,
        *,
        steps_per_second: float = 0.0,
        eval_trial: int | None = None,
        eval_trials: int = 0,
    ) -> MetricsSnapshot:
        """Point-in-time metrics; passing *eval_trial* marks an evaluation in progress."""
        is_eval = eval_trial is not None
        return MetricsSnapshot(
            episode=self.stats.episodes,
            episode_reward=self.stats.last_reward,
            episode_length=self.stats.last_length,
            avg_reward=self.stats.avg_reward,
            avg_length=self.stats.avg_length,
            epsilon=self.epsilon.value,
            loss=self.last_loss,
            buffer_size=len(self.buffer),
            steps_per_second=steps_per_second,
            total_steps=self.total_steps,
            is_warmup=self.is_warmup,
            learning_rate=self.hparams.lr,
            num_envs=self.num_envs,
            batch_size=self.hparams.batch_size,
            train_steps=self.train_steps,
            is_eval=is_eval,
            eval_trial=eval_trial or 0,
            eval_trials=eval_trials if is_eval else 0,
        )

    # ------------------------------------------------------------------
    # Metrics cadence
    # ------------------------------------------------------------------

    def metrics_due(self, now: float | None = None) -> bool:
        """True once the metrics interval (shorter during warmup) has elapsed."""
        now = time.monotonic() if now is None else now
        interval_ms = (
            self.runner_config.warmup_metrics_interval_ms
            if self.is_warmup
            else self.runner_config.metrics_interval_ms
        )
        return (now - self.last_metrics_time) * 1000.0 >= interval_ms

    def emit_metrics(
        self,
        *,
        eval_trial: int | None = None,
        eval_trials: int = 0,
    ) -> MetricsSnapshot:
        """Snapshot with fresh throughput; outside evaluation it also feeds the LR scheduler."""
        self.last_metrics_time = time.monotonic()
        snapshot = self.snapshot(
            steps_per_second=self.throughput.rate(self.total_steps),
            eval_trial=eval_trial,
            eval_trials=eval_trials,
        )
        if eval_trial is None:
            self.hparams.lr = self.lr_scheduler.observe(snapshot.avg_reward, self.hparams.lr)
        return snapshot
