"""Fault taxonomy for the training engine.

None of these are meant to be process-fatal: numeric faults are recovered
where they happen, configuration faults are rejected at the boundary, and a
missing accelerator degrades throughput rather than correctness.  Sampling
before a batch is available is not an error at all, it is a no-op guarded
by :meth:`~flap_rl.dataprotocol.ReplayBuffer.can_sample`.
"""

from __future__ import annotations

import math


class FlapRLError(Exception):
    """Base class for all flap_rl errors."""


class NumericFault(FlapRLError):
    """A non-finite value reached the network (input, target or output).

    Recovered locally by a zero-output short-circuit (inference) or a full
    reinitialization (training).  Only ever logged, never propagated out of
    the engine.
    """


class ConfigurationFault(FlapRLError, ValueError):
    """An invalid hyperparameter was supplied to a config constructor."""


class BackendUnavailable(FlapRLError, RuntimeError):
    """The JAX backend could not be initialised.

    The session worker catches this and falls back to the single
    environment training path.
    """


def require_finite(name: str, value: float) -> float:
    """``float(value)``, or ``ConfigurationFault`` if it is NaN or infinite."""
    value = float(value)
    if not math.isfinite(value):
        raise ConfigurationFault(f"{name} must be finite, got {value}")
    return value
