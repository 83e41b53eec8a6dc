"""PRNG helpers.

JAX keys drive network initialisation and exploration; numpy generators
drive the host-side pieces (replay sampling, environment gap placement).
Both are derived from one integer seed so a session is reproducible end
to end.

Usage::

    from flap_rl.seeding import make_rng, numpy_rng, split_key

    rng = make_rng(42)
    rng, agent_key = split_key(rng)
    env_rng = numpy_rng(42, "env", index=3)
"""

from __future__ import annotations

import zlib

import jax
import numpy as np


def make_rng(seed: int) -> jax.Array:
    """Create a JAX PRNG key from an integer seed."""
    return jax.random.PRNGKey(seed)


def split_key(rng: jax.Array) -> tuple[jax.Array, jax.Array]:
    """Split *rng* into ``(new_rng, subkey)``.

    Works both eagerly and under tracing::

        rng, subkey = split_key(rng)
    """
    return tuple(jax.random.split(rng))  # type: ignore[return-value]


def split_keys(rng: jax.Array, n: int) -> tuple[jax.Array, ...]:
    """Split *rng* into ``(new_rng, key_1, ..., key_n)``."""
    return tuple(jax.random.split(rng, n + 1))  # type: ignore[return-value]


def derive_seed(seed: int | None, stream: str, index: int = 0) -> int | None:
    """Deterministic per-component integer seed.

    ``None`` propagates so unseeded sessions stay unseeded.  Different
    *stream* names (``"buffer"``, ``"env"``, ...) and indices give
    independent seeds.
    """
    if seed is None:
        return None
    return (seed * 1_000_003 + zlib.crc32(stream.encode()) + index) % (2**31 - 1)


def numpy_rng(seed: int | None, stream: str, index: int = 0) -> np.random.Generator:
    """``np.random.Generator`` seeded from :func:`derive_seed`."""
    return np.random.default_rng(derive_seed(seed, stream, index))
