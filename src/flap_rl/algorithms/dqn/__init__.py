from flap_rl.algorithms.dqn.agent import DQN
from flap_rl.algorithms.dqn.config import DQNConfig
from flap_rl.algorithms.dqn.network import (
    Dense,
    ForwardCache,
    LayerSpec,
    ValueNetwork,
    layer_specs,
    make_network,
)
from flap_rl.algorithms.dqn.types import DQNMetrics, DQNState

__all__ = [
    "DQN",
    "DQNConfig",
    "DQNMetrics",
    "DQNState",
    "Dense",
    "ForwardCache",
    "LayerSpec",
    "ValueNetwork",
    "layer_specs",
    "make_network",
]
