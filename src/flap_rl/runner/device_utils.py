"""Accelerator discovery.

The batched trainer only pays off on a parallel backend; on a plain CPU
the worker falls back to the single-environment trainer.  This module
asks JAX what it has.

Usage::

    from flap_rl.runner.device_utils import init_backend

    info = init_backend()
    if info.accelerated:
        ...
"""

from __future__ import annotations

import logging
from typing import NamedTuple

import jax

from flap_rl.errors import BackendUnavailable

logger = logging.getLogger(__name__)

_ACCELERATED_PLATFORMS = frozenset({"gpu", "cuda", "rocm", "tpu", "metal"})


class BackendInfo(NamedTuple):
    """What :func:`init_backend` found.

    Fields:
        backend_name: JAX platform name (``"cpu"``, ``"gpu"``, ``"tpu"``...).
        accelerated: True for anything other than the CPU backend.
        device_count: Number of local devices on that backend.
    """

    backend_name: str
    accelerated: bool
    device_count: int


def init_backend(require_accelerator: bool = False) -> BackendInfo:
    """Initialise JAX and describe the default backend.

    Args:
        require_accelerator: Raise instead of returning a CPU backend.

    Raises:
        BackendUnavailable: If JAX cannot initialise any backend, or none
            with an accelerator when *require_accelerator* is set.
    """
    try:
        backend = jax.default_backend()
        devices = jax.devices()
    except RuntimeError as e:
        raise BackendUnavailable(f"JAX backend initialisation failed: {e}") from e

    if not devices:
        raise BackendUnavailable(f"backend {backend!r} reports no devices")

    accelerated = backend.lower() in _ACCELERATED_PLATFORMS
    if require_accelerator and not accelerated:
        raise BackendUnavailable(f"no accelerator available (default backend is {backend!r})")

    info = BackendInfo(backend_name=backend, accelerated=accelerated, device_count=len(devices))
    logger.info(
        "JAX backend: %s (%d device(s), accelerated=%s)",
        info.backend_name, info.device_count, info.accelerated,
    )
    return info

