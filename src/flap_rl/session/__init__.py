"""Threaded training sessions: a background worker driven by commands."""

from flap_rl.session.client import AgentClient, NetworkVisualization
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
from flap_rl.session.worker import TrainingWorker, WorkerState

__all__ = [
    "AgentClient",
    "NetworkVisualization",
    "TrainingWorker",
    "WorkerState",
    # Commands
    "Command",
    "Experience",
    "Init",
    "RequestWeights",
    "Reset",
    "SetAutoDecay",
    "SetAutoEval",
    "SetBatchSize",
    "SetEpsilon",
    "SetGamma",
    "SetLRScheduler",
    "SetLearningRate",
    "SetNumEnvs",
    "SetRewardConfig",
    "SetTrainFreq",
    "SetWeights",
    "Shutdown",
    "StartFast",
    "StopFast",
    # Events
    "ErrorEvent",
    "EvalResultEvent",
    "Event",
    "MetricsEvent",
    "ReadyEvent",
    "WeightsEvent",
]
