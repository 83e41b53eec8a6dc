"""Exploration and learning-rate schedules.

``linear_schedule`` is a pure ``schedule(step) -> value`` function.  The
two stateful schedulers wrap the session-level bookkeeping that a
training run needs on top of it:

* :class:`EpsilonSchedule` - linear epsilon decay measured in training
  steps, whose origin moves whenever decay is re-enabled or epsilon is
  set by hand.
* :class:`PlateauScheduler` - reduce-on-plateau learning-rate control
  driven by the moving-average episode reward.

Usage::

    from flap_rl.schedule import EpsilonSchedule, linear_schedule

    schedule = linear_schedule(start=0.5, end=0.05, steps=150_000)
    eps = schedule(step)

    eps_sched = EpsilonSchedule(start=0.5, end=0.05, decay_steps=150_000)
    eps_sched.update(train_step)
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from flap_rl.errors import require_finite

logger = logging.getLogger(__name__)

Schedule = Callable[[int], float]


def linear_schedule(
    start: float,
    end: float,
    steps: int,
) -> Schedule:
    """Return a function that linearly interpolates from *start* to *end*.

    Parameters
    ----------
    start:
        Value at step 0.
    end:
        Value at step *steps* (and beyond).  Reached exactly, not
        approximately.
    steps:
        Number of steps over which to interpolate.

    Returns
    -------
    A callable ``(step: int) -> float``.
    """
    n = max(steps, 1)

    def _schedule(step: int) -> float:
        frac = min(max(step / n, 0.0), 1.0)
        return (1.0 - frac) * start + frac * end

    return _schedule


class EpsilonSchedule:
    """Epsilon-greedy exploration rate with a movable decay origin.

    While auto-decay is on, epsilon follows a line from the epsilon at the
    decay origin down to ``end`` over ``decay_steps`` training steps.  It is
    therefore non-increasing between explicit overrides and lands exactly
    on ``end``.

    Parameters
    ----------
    start:
        Initial epsilon.
    end:
        Floor reached after ``decay_steps`` training steps.
    decay_steps:
        Horizon of the linear decay, in training steps.
    auto_decay:
        Whether :meth:`update` moves epsilon at all.
    """

    def __init__(
        self,
        start: float,
        end: float,
        decay_steps: int,
        *,
        auto_decay: bool = True,
    ) -> None:
        self.end = end
        self.decay_steps = decay_steps
        self.auto_decay = auto_decay
        self.value = _clamp01(start)
        self._origin_value = self.value
        self._origin_step = 0
        self._schedule = linear_schedule(self._origin_value, self.end, self.decay_steps)

    def set(self, value: float, step: int = 0) -> float:
        """Override epsilon (clamped to ``[0, 1]``, NaN rejected); decay restarts from here."""
        self.value = _clamp01(value)
        self._restart(step)
        return self.value

    def set_auto_decay(self, enabled: bool, step: int = 0) -> None:
        """Toggle decay.  Turning it back on restarts decay from the current value."""
        if enabled and not self.auto_decay:
            self._restart(step)
        self.auto_decay = enabled

    def update(self, step: int) -> float:
        """Recompute epsilon for training step *step*; returns the new value."""
        if self.auto_decay:
            self.value = self._schedule(step - self._origin_step)
        return self.value

    def reset(self, start: float) -> None:
        self.value = _clamp01(start)
        self._restart(0)

    def _restart(self, step: int) -> None:
        self._origin_value = self.value
        self._origin_step = step
        # A restart above the floor decays towards it; one already below
        # the floor stays put rather than climbing back up.
        end = min(self.end, self._origin_value)
        self._schedule = linear_schedule(self._origin_value, end, self.decay_steps)

    def __repr__(self) -> str:
        return (
            f"EpsilonSchedule(value={self.value:.4f}, end={self.end}, "
            f"auto_decay={self.auto_decay})"
        )


class PlateauScheduler:
    """Multiply the learning rate by ``factor`` when reward stops improving.

    :meth:`observe` is called once per metrics emission with the current
    moving-average reward.  After ``patience`` consecutive observations
    without a new best, the learning rate is reduced (never below
    ``min_lr``) and the patience counter restarts.

    Parameters
    ----------
    patience:
        Unimproved observations tolerated before a reduction.
    factor:
        Multiplier applied on each reduction, in ``(0, 1)``.
    min_lr:
        Floor for the learning rate.
    enabled:
        Disabled schedulers never change the learning rate.
    """

    def __init__(
        self,
        patience: int = 100,
        factor: float = 0.7,
        min_lr: float = 1e-5,
        *,
        enabled: bool = False,
    ) -> None:
        self.patience = patience
        self.factor = factor
        self.min_lr = min_lr
        self.enabled = enabled
        self.best_reward = float("-inf")
        self.bad_observations = 0

    def configure(
        self,
        enabled: bool,
        *,
        patience: int | None = None,
        factor: float | None = None,
        min_lr: float | None = None,
    ) -> None:
        """Update settings; enabling always forgets the previous best."""
        if patience is not None:
            patience = max(1, int(require_finite("lr patience", patience)))
        if factor is not None:
            factor = min(max(require_finite("lr factor", factor), 0.01), 0.99)
        if min_lr is not None:
            min_lr = max(require_finite("min_lr", min_lr), 0.0)
        # Assign only after every value has validated.
        self.patience = self.patience if patience is None else patience
        self.factor = self.factor if factor is None else factor
        self.min_lr = self.min_lr if min_lr is None else min_lr
        if enabled:
            self.reset()
        self.enabled = enabled

    def reset(self) -> None:
        self.best_reward = float("-inf")
        self.bad_observations = 0

    def observe(self, avg_reward: float, lr: float) -> float:
        """Feed one moving-average reward; returns the (possibly reduced) lr."""
        if not self.enabled:
            return lr
        if avg_reward > self.best_reward:
            self.best_reward = avg_reward
            self.bad_observations = 0
            return lr

        self.bad_observations += 1
        if self.bad_observations < self.patience:
            return lr

        self.bad_observations = 0
        new_lr = max(lr * self.factor, self.min_lr)
        if new_lr < lr:
            logger.info(
                "Reward plateaued at %.3f; learning rate %.2e -> %.2e",
                self.best_reward, lr, new_lr,
            )
        return new_lr


def _clamp01(value: float) -> float:
    return min(max(require_finite("epsilon", value), 0.0), 1.0)
