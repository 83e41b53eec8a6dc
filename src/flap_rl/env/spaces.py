"""Action and observation spaces for host-side environments.

Spaces describe the shape, dtype and bounds of observations/actions but
carry no mutable state.  They are hashable frozen dataclasses so a space
can be compared against the network layout a session was configured with.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Discrete:
    """Space of integers {0, 1, ..., n-1}."""

    n: int

    def sample(self, rng: np.random.Generator) -> int:
        return int(rng.integers(0, self.n))

    def contains(self, x: int | np.ndarray) -> bool:
        x = np.asarray(x)
        return bool(x.shape == () and x == np.floor(x) and 0 <= x < self.n)

    @property
    def shape(self) -> tuple[int, ...]:
        return ()

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.int32)


@dataclass(frozen=True)
class Box:
    """Bounded 1-D continuous space with a common scalar bound."""

    low: float
    high: float
    shape: tuple[int, ...]

    def sample(self, rng: np.random.Generator) -> np.ndarray:
        return rng.uniform(self.low, self.high, size=self.shape).astype(np.float32)

    def contains(self, x: np.ndarray) -> bool:
        x = np.asarray(x)
        return bool(x.shape == self.shape and np.all((x >= self.low) & (x <= self.high)))

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.float32)
