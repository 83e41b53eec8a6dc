"""Experience data structures.

Core types:
    - Transition: immutable NamedTuple experience container
    - ReplayBuffer: numpy-backed ring buffer with uniform sampling
"""

from flap_rl.dataprotocol.replay_buffer import ReplayBuffer
from flap_rl.dataprotocol.transition import (
    Batch,
    Transition,
    make_transition,
)

__all__ = [
    # Transitions
    "Transition",
    "Batch",
    "make_transition",
    # Buffers
    "ReplayBuffer",
]
