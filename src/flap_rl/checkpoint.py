"""Checkpointing for value networks and DQN states.

Two formats:

* **Weights JSON** (``save_weights`` / ``load_weights``) - the portable
  ``{"weights": [layer][in][out], "biases": [layer][out]}`` layout plus
  ``hidden_sizes`` metadata.  This is what crosses the worker boundary in
  ``WeightsEvent`` / ``SetWeights`` and what a front end stores.
* **Equinox leaves** (``save_eqx`` / ``load_eqx``) - exact binary dump of
  any pytree, restored against a same-structured skeleton.

``save_checkpoint`` / ``load_checkpoint`` combine them into a step
directory (see :meth:`flap_rl.run_dir.RunDir.checkpoint_dir`)::

    checkpoints/step_120000/
    ├── policy.eqx
    ├── target.eqx
    ├── weights.json
    └── metadata.json

Usage::

    from flap_rl.checkpoint import save_weights, load_network

    save_weights("best.json", state.params)
    net = load_network("best.json")
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, TypeVar

import equinox as eqx

from flap_rl.algorithms.dqn.network import ValueNetwork
from flap_rl.algorithms.dqn.types import DQNState
from flap_rl.types import WeightsData

T = TypeVar("T")

logger = logging.getLogger(__name__)

_POLICY_FILE = "policy.eqx"
_TARGET_FILE = "target.eqx"
_WEIGHTS_FILE = "weights.json"
_METADATA_FILE = "metadata.json"


# ---------------------------------------------------------------------------
# Equinox serialization
# ---------------------------------------------------------------------------


def save_eqx(path: str | Path, pytree: Any) -> Path:
    """Save a pytree using Equinox's built-in serialization.

    Parameters
    ----------
    path:
        File path for the checkpoint (conventionally ``*.eqx``).
    pytree:
        The pytree to save.

    Returns
    -------
    The path that was written.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    eqx.tree_serialise_leaves(str(p), pytree)
    return p


def load_eqx(path: str | Path, like: T) -> T:
    """Load a pytree saved with :func:`save_eqx`.

    Parameters
    ----------
    path:
        Path to the checkpoint file.
    like:
        A pytree with the same structure (shapes, dtypes) as the saved
        data, typically a freshly initialised network.

    Returns
    -------
    The restored pytree with loaded array data.
    """
    return eqx.tree_deserialise_leaves(str(path), like)


# ---------------------------------------------------------------------------
# Portable weights JSON
# ---------------------------------------------------------------------------


def save_weights(
    path: str | Path,
    weights: ValueNetwork | WeightsData,
    **metadata: Any,
) -> Path:
    """Write a weights snapshot as JSON.

    ``hidden_sizes`` is derived from the weight shapes and stored with
    any extra *metadata* (episode, total steps, ...).
    """
    data = weights.serialize() if isinstance(weights, ValueNetwork) else weights
    hidden_sizes = [len(w[0]) for w in data["weights"][:-1]]
    record = {
        "hidden_sizes": hidden_sizes,
        **metadata,
        "weights": data["weights"],
        "biases": data["biases"],
    }
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(record))
    return p


def load_weights(path: str | Path) -> tuple[WeightsData, dict[str, Any]]:
    """Read a file written by :func:`save_weights`.

    Returns:
        ``(weights_data, metadata)``.  Metadata always contains
        ``hidden_sizes``.

    Raises:
        ValueError: If the file lacks ``weights`` or ``biases``.
    """
    record = json.loads(Path(path).read_text())
    if "weights" not in record or "biases" not in record:
        raise ValueError(f"{path} is not a weights checkpoint (missing weights/biases)")
    data: WeightsData = {"weights": record.pop("weights"), "biases": record.pop("biases")}
    record.setdefault("hidden_sizes", [len(w[0]) for w in data["weights"][:-1]])
    return data, record


def load_network(path: str | Path) -> ValueNetwork:
    """Rebuild a :class:`ValueNetwork` from a weights JSON file."""
    data, _ = load_weights(path)
    return ValueNetwork.from_serialized(data)


# ---------------------------------------------------------------------------
# Step-directory checkpoints
# ---------------------------------------------------------------------------


def save_checkpoint(
    directory: str | Path,
    state: DQNState,
    **metadata: Any,
) -> Path:
    """Save policy/target networks and metadata into *directory*."""
    d = Path(directory)
    d.mkdir(parents=True, exist_ok=True)
    save_eqx(d / _POLICY_FILE, state.params)
    save_eqx(d / _TARGET_FILE, state.target_params)
    save_weights(d / _WEIGHTS_FILE, state.params)
    meta = {"train_step": state.step, **metadata}
    (d / _METADATA_FILE).write_text(json.dumps(meta, indent=2, default=str) + "\n")
    logger.info("Saved checkpoint to %s (train step %d)", d, state.step)
    return d


def load_checkpoint(directory: str | Path, like: DQNState) -> DQNState:
    """Restore networks saved by :func:`save_checkpoint` into *like*.

    The training-step counter comes from the metadata file; the PRNG key
    of *like* is kept.
    """
    d = Path(directory)
    params = load_eqx(d / _POLICY_FILE, like.params)
    target = load_eqx(d / _TARGET_FILE, like.target_params)
    meta = load_metadata(d)
    return like._replace(
        params=params, target_params=target, step=int(meta.get("train_step", 0)),
    )


def load_metadata(directory: str | Path) -> dict[str, Any]:
    """Read ``metadata.json`` from a checkpoint directory (empty if absent)."""
    p = Path(directory) / _METADATA_FILE
    if not p.exists():
        return {}
    return json.loads(p.read_text())
