"""Preset configuration registry for flap_rl experiments."""

from flap_rl.configs.presets import PRESETS, TrainConfig, cli

__all__ = [
    "PRESETS",
    "TrainConfig",
    "cli",
]
