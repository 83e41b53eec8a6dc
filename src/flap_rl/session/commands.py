"""Messages between the foreground client and the training worker.

Commands flow client -> worker on one queue; events flow back on another.
All messages are frozen dataclasses and the worker dispatches on their
type, so the protocol is a closed tagged union that any transport can
carry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from flap_rl.algorithms.dqn.config import DQNConfig
from flap_rl.dataprotocol.transition import Transition
from flap_rl.runner.config import RunnerConfig
from flap_rl.types import EvalResult, MetricsSnapshot, WeightsData

# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Init:
    """Build the session: networks, buffer, schedules.  Answered by
    ``WeightsEvent(steps=0)`` and ``ReadyEvent``."""

    config: DQNConfig = field(default_factory=DQNConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)


@dataclass(frozen=True)
class Experience:
    transition: Transition


@dataclass(frozen=True)
class RequestWeights:
    pass


@dataclass(frozen=True)
class SetWeights:
    """Load weights into both the policy and the target network."""

    data: WeightsData


@dataclass(frozen=True)
class SetEpsilon:
    value: float


@dataclass(frozen=True)
class SetAutoDecay:
    enabled: bool


@dataclass(frozen=True)
class SetLearningRate:
    value: float


@dataclass(frozen=True)
class SetGamma:
    value: float


@dataclass(frozen=True)
class SetRewardConfig:
    """Partial reward override, e.g. ``{"pass_pipe": 2.0}``."""

    values: dict[str, float]


@dataclass(frozen=True)
class SetLRScheduler:
    enabled: bool
    patience: int | None = None
    factor: float | None = None
    min_lr: float | None = None


@dataclass(frozen=True)
class SetTrainFreq:
    value: int


@dataclass(frozen=True)
class SetAutoEval:
    enabled: bool
    interval: int | None = None
    trials: int | None = None


@dataclass(frozen=True)
class SetNumEnvs:
    value: int


@dataclass(frozen=True)
class SetBatchSize:
    value: int


@dataclass(frozen=True)
class StartFast:
    """Begin headless training, continuing the caller's episode/step counts."""

    starting_episode: int = 0
    starting_total_steps: int = 0


@dataclass(frozen=True)
class StopFast:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Shutdown:
    pass


Command = Union[
    Init,
    Experience,
    RequestWeights,
    SetWeights,
    SetEpsilon,
    SetAutoDecay,
    SetLearningRate,
    SetGamma,
    SetRewardConfig,
    SetLRScheduler,
    SetTrainFreq,
    SetAutoEval,
    SetNumEnvs,
    SetBatchSize,
    StartFast,
    StopFast,
    Reset,
    Shutdown,
]

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReadyEvent:
    backend_name: str
    accelerated: bool


@dataclass(frozen=True)
class WeightsEvent:
    """Snapshot of the policy network for the foreground copy."""

    data: WeightsData
    steps: int
    loss: float


@dataclass(frozen=True)
class MetricsEvent:
    snapshot: MetricsSnapshot


@dataclass(frozen=True)
class EvalResultEvent:
    result: EvalResult


@dataclass(frozen=True)
class ErrorEvent:
    message: str


Event = Union[ReadyEvent, WeightsEvent, MetricsEvent, EvalResultEvent, ErrorEvent]
