"""Q-network with a hand-written backward pass, implemented with Equinox.

The network is a plain MLP (ReLU hidden layers, linear head) but it is
*not* trained through ``jax.grad``: the DQN update needs a very specific
per-sample SGD rule with stability guards at every layer, so the backward
pass is written out explicitly.

Forward::

    preact = clip(x @ W + b, -1e6, 1e6)
    out    = relu(preact)          # hidden layers
    out    = preact                # output layer

Per-sample update (Huber loss on the taken action only)::

    error    = target - q[action]
    loss     = 0.5 * error**2           if |error| < 1
             = |error| - 0.5            otherwise
    dL/dq[a] = -error                   if |error| < 1
             = -sign(error)             otherwise

At each layer, walking backwards, the incoming gradient is masked by the
ReLU derivative, clipped to ``[-1, 1]``, used to update ``W`` and ``b``
(each clamped to ``[-10, 10]`` afterwards), and propagated to the layer
below through the weights as they were *before* the update.

Networks are immutable pytrees.  Every operation that "changes" a network
returns a new one, so a snapshot handed to another thread can never be
perturbed by training.

Usage::

    net = ValueNetwork(obs_dim=6, n_actions=2, hidden_sizes=(64, 64), key=key)
    q = net.predict(obs)                              # (2,)
    qs = net.predict_batch(obs_batch)                 # (B, 2)
    net, loss, resets = net.train_batch(states, actions, targets, lr=1e-3, key=key)
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import NamedTuple

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np

from flap_rl.types import WeightsData

PREACT_CLIP = 1e6
GRAD_CLIP = 1.0
WEIGHT_CLIP = 10.0
BIAS_INIT_RANGE = 0.05

_ACTIVATIONS = ("relu", "linear")


class LayerSpec(NamedTuple):
    """Shape and activation of one dense layer."""

    in_features: int
    out_features: int
    activation: str


class ForwardCache(NamedTuple):
    """Per-layer values recorded by :meth:`ValueNetwork.forward`.

    ``inputs[i]`` feeds layer ``i``; ``pre_activations[i]`` is its clamped
    affine output and ``outputs[i]`` the activated result.  Consumed by
    :meth:`ValueNetwork.backward`.
    """

    inputs: tuple[jax.Array, ...]
    pre_activations: tuple[jax.Array, ...]
    outputs: tuple[jax.Array, ...]


def layer_specs(
    obs_dim: int,
    n_actions: int,
    hidden_sizes: Sequence[int],
) -> list[LayerSpec]:
    """DQN layout: ReLU on every hidden layer, linear output head."""
    dims = [obs_dim, *hidden_sizes, n_actions]
    n_layers = len(dims) - 1
    return [
        LayerSpec(d_in, d_out, "linear" if i == n_layers - 1 else "relu")
        for i, (d_in, d_out) in enumerate(zip(dims[:-1], dims[1:]))
    ]


class Dense(eqx.Module):
    """Fully connected layer storing ``weight`` as ``[in, out]``."""

    weight: jax.Array
    bias: jax.Array
    activation: str = eqx.field(static=True)

    def __init__(
        self,
        in_features: int,
        out_features: int,
        activation: str = "relu",
        *,
        key: jax.Array,
    ) -> None:
        if activation not in _ACTIVATIONS:
            raise ValueError(f"activation must be one of {_ACTIVATIONS}, got {activation!r}")
        w_key, b_key = jax.random.split(key)
        # Xavier/Glorot scale
        scale = math.sqrt(2.0 / (in_features + out_features))
        self.weight = jax.random.uniform(
            w_key, (in_features, out_features), minval=-scale, maxval=scale,
        )
        self.bias = jax.random.uniform(
            b_key, (out_features,), minval=-BIAS_INIT_RANGE, maxval=BIAS_INIT_RANGE,
        )
        self.activation = activation

    @property
    def in_features(self) -> int:
        return self.weight.shape[0]

    @property
    def out_features(self) -> int:
        return self.weight.shape[1]

    def pre_activation(self, x: jax.Array) -> jax.Array:
        return jnp.clip(x @ self.weight + self.bias, -PREACT_CLIP, PREACT_CLIP)

    def activate(self, z: jax.Array) -> jax.Array:
        if self.activation == "relu":
            return jnp.maximum(z, 0.0)
        return z


class ValueNetwork(eqx.Module):
    """MLP Q-network: obs -> Q(s, a) for each discrete action."""

    layers: tuple[Dense, ...]

    def __init__(
        self,
        obs_dim: int,
        n_actions: int,
        hidden_sizes: Sequence[int] = (64, 64),
        *,
        key: jax.Array,
    ) -> None:
        specs = layer_specs(obs_dim, n_actions, hidden_sizes)
        keys = jax.random.split(key, len(specs))
        self.layers = tuple(
            Dense(s.in_features, s.out_features, s.activation, key=k)
            for s, k in zip(specs, keys)
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def obs_dim(self) -> int:
        return self.layers[0].in_features

    @property
    def n_actions(self) -> int:
        return self.layers[-1].out_features

    @property
    def hidden_sizes(self) -> tuple[int, ...]:
        return tuple(layer.out_features for layer in self.layers[:-1])

    def layer_sizes(self) -> list[int]:
        """``[obs_dim, *hidden_sizes, n_actions]``."""
        return [self.obs_dim, *self.hidden_sizes, self.n_actions]

    def specs(self) -> list[LayerSpec]:
        return [
            LayerSpec(layer.in_features, layer.out_features, layer.activation)
            for layer in self.layers
        ]

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def forward(self, x: jax.Array) -> tuple[jax.Array, ForwardCache]:
        """Raw forward pass returning the output and the activation cache.

        No finiteness handling happens here; see :meth:`__call__`.
        """
        h = jnp.asarray(x, dtype=jnp.float32)
        inputs, pre_acts, outputs = [], [], []
        for layer in self.layers:
            inputs.append(h)
            z = layer.pre_activation(h)
            h = layer.activate(z)
            pre_acts.append(z)
            outputs.append(h)
        return h, ForwardCache(tuple(inputs), tuple(pre_acts), tuple(outputs))

    def __call__(self, x: jax.Array) -> jax.Array:
        """Q-values for one observation.

        A non-finite input (or, with corrupted weights, a non-finite
        output) yields all zeros.  Never modifies the network.
        """
        x = jnp.asarray(x, dtype=jnp.float32)
        out, _ = self.forward(x)
        ok = jnp.all(jnp.isfinite(x)) & jnp.all(jnp.isfinite(out))
        return jnp.where(ok, out, jnp.zeros_like(out))

    def predict(self, x: jax.Array) -> jax.Array:
        """Jitted single-observation inference, shape ``(n_actions,)``."""
        return _predict(self, jnp.asarray(x, dtype=jnp.float32))

    def predict_batch(self, xs: jax.Array) -> jax.Array:
        """Jitted batched inference, shape ``(B, n_actions)``."""
        return _predict_batch(self, jnp.asarray(xs, dtype=jnp.float32))

    def activations(self, x: jax.Array) -> list[list[float]]:
        """Input followed by every layer's output, for visualization."""
        x = jnp.asarray(x, dtype=jnp.float32)
        _, cache = _forward(self, x)
        return [np.asarray(x).tolist()] + [np.asarray(o).tolist() for o in cache.outputs]

    # ------------------------------------------------------------------
    # Backward
    # ------------------------------------------------------------------

    def backward(
        self,
        cache: ForwardCache,
        output_grad: jax.Array,
        *,
        lr: jax.Array,
    ) -> ValueNetwork:
        """Apply one clipped SGD update given ``dL/d(output)``.

        Returns the updated network; ``self`` is untouched.
        """
        grad = output_grad
        new_layers = list(self.layers)
        for i in reversed(range(len(self.layers))):
            layer = self.layers[i]
            g = grad
            if layer.activation == "relu":
                g = jnp.where(cache.pre_activations[i] > 0, g, 0.0)
            g = jnp.clip(g, -GRAD_CLIP, GRAD_CLIP)

            # Propagate through the pre-update weights.
            grad = jnp.clip(layer.weight @ g, -GRAD_CLIP, GRAD_CLIP)

            weight = jnp.clip(
                layer.weight - lr * jnp.outer(cache.inputs[i], g),
                -WEIGHT_CLIP, WEIGHT_CLIP,
            )
            bias = jnp.clip(layer.bias - lr * g, -WEIGHT_CLIP, WEIGHT_CLIP)
            new_layers[i] = eqx.tree_at(
                lambda lyr: (lyr.weight, lyr.bias), layer, (weight, bias),
            )
        return eqx.tree_at(lambda n: n.layers, self, tuple(new_layers))

    def reinitialize(self, key: jax.Array) -> ValueNetwork:
        """Fresh Xavier-initialised weights for every layer, same shapes."""
        keys = jax.random.split(key, len(self.layers))
        layers = tuple(
            Dense(layer.in_features, layer.out_features, layer.activation, key=k)
            for layer, k in zip(self.layers, keys)
        )
        return eqx.tree_at(lambda n: n.layers, self, layers)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train_step(
        self,
        state: jax.Array,
        action: int | jax.Array,
        target: float | jax.Array,
        *,
        lr: float,
        key: jax.Array,
    ) -> tuple[ValueNetwork, jax.Array, jax.Array]:
        """One per-sample update.

        Returns:
            ``(new_network, loss, reset)`` where *reset* is True when the
            update produced a non-finite output and the network was
            reinitialised.
        """
        return _train_step(
            self,
            jnp.asarray(state, dtype=jnp.float32),
            jnp.asarray(action, dtype=jnp.int32),
            jnp.asarray(target, dtype=jnp.float32),
            jnp.asarray(lr, dtype=jnp.float32),
            key,
        )

    def train_batch(
        self,
        states: jax.Array,
        actions: jax.Array,
        targets: jax.Array,
        *,
        lr: float,
        key: jax.Array,
    ) -> tuple[ValueNetwork, jax.Array, jax.Array]:
        """Sequential :meth:`train_step` over a batch.

        Returns:
            ``(new_network, mean_loss, n_resets)``.
        """
        return _train_batch(
            self,
            jnp.asarray(states, dtype=jnp.float32),
            jnp.asarray(actions, dtype=jnp.int32),
            jnp.asarray(targets, dtype=jnp.float32),
            jnp.asarray(lr, dtype=jnp.float32),
            key,
        )

    # ------------------------------------------------------------------
    # Weight transfer
    # ------------------------------------------------------------------

    def copy_weights_from(self, other: ValueNetwork) -> ValueNetwork:
        """Return a network with ``other``'s parameters and this layout."""
        if other.specs() != self.specs():
            raise ValueError(
                f"cannot copy weights: layout {other.specs()} != {self.specs()}"
            )
        return eqx.tree_at(lambda n: n.layers, self, other.layers)

    def serialize(self) -> WeightsData:
        """Deep copy of the parameters as nested Python lists."""
        return {
            "weights": [np.asarray(layer.weight).tolist() for layer in self.layers],
            "biases": [np.asarray(layer.bias).tolist() for layer in self.layers],
        }

    def deserialize(self, data: WeightsData) -> ValueNetwork:
        """Return a network with this layout holding a copy of *data*."""
        weights, biases = data["weights"], data["biases"]
        if len(weights) != len(self.layers) or len(biases) != len(self.layers):
            raise ValueError(
                f"expected {len(self.layers)} layers, got "
                f"{len(weights)} weight / {len(biases)} bias entries"
            )
        layers = []
        for i, (layer, w, b) in enumerate(zip(self.layers, weights, biases)):
            w = jnp.array(w, dtype=jnp.float32)
            b = jnp.array(b, dtype=jnp.float32)
            if w.shape != layer.weight.shape or b.shape != layer.bias.shape:
                raise ValueError(
                    f"layer {i}: expected weight {layer.weight.shape} / bias "
                    f"{layer.bias.shape}, got {w.shape} / {b.shape}"
                )
            layers.append(eqx.tree_at(lambda lyr: (lyr.weight, lyr.bias), layer, (w, b)))
        return eqx.tree_at(lambda n: n.layers, self, tuple(layers))

    @classmethod
    def from_serialized(cls, data: WeightsData) -> ValueNetwork:
        """Build a network whose layout is inferred from *data*'s shapes."""
        weights = data["weights"]
        if not weights:
            raise ValueError("weights data contains no layers")
        obs_dim = len(weights[0])
        hidden = tuple(len(w[0]) for w in weights[:-1])
        n_actions = len(weights[-1][0])
        net = cls(obs_dim, n_actions, hidden, key=jax.random.PRNGKey(0))
        return net.deserialize(data)


def make_network(specs: Sequence[LayerSpec], *, key: jax.Array) -> ValueNetwork:
    """Build a network from explicit per-layer specs.

    Unlike the ``ValueNetwork`` constructor this allows any activation
    layout, e.g. a single linear layer or ReLU on the output.
    """
    if not specs:
        raise ValueError("at least one layer is required")
    for i, (a, b) in enumerate(zip(specs[:-1], specs[1:])):
        if a.out_features != b.in_features:
            raise ValueError(
                f"layer {i} outputs {a.out_features} features but layer "
                f"{i + 1} expects {b.in_features}"
            )
    init_key, *layer_keys = jax.random.split(key, len(specs) + 1)
    hidden = [s.out_features for s in specs[:-1]]
    net = ValueNetwork(specs[0].in_features, specs[-1].out_features, hidden, key=init_key)
    layers = tuple(
        Dense(s.in_features, s.out_features, s.activation, key=k)
        for s, k in zip(specs, layer_keys)
    )
    return eqx.tree_at(lambda n: n.layers, net, layers)


# ---------------------------------------------------------------------------
# Pure functions (jitted entry points)
# ---------------------------------------------------------------------------


def _sgd_step(
    net: ValueNetwork,
    state: jax.Array,
    action: jax.Array,
    target: jax.Array,
    lr: jax.Array,
    key: jax.Array,
) -> tuple[ValueNetwork, jax.Array, jax.Array]:
    q, cache = net.forward(state)
    error = target - q[action]
    state_ok = jnp.all(jnp.isfinite(state))
    valid = state_ok & jnp.isfinite(target) & jnp.isfinite(error)

    abs_err = jnp.abs(error)
    loss = jnp.where(abs_err < 1.0, 0.5 * error * error, abs_err - 0.5)
    # Huber gradient, already inside [-1, 1]
    d_q = jnp.where(abs_err < 1.0, -error, -jnp.sign(error))
    output_grad = jnp.zeros_like(q).at[action].set(d_q)

    updated = net.backward(cache, output_grad, lr=lr)
    updated = jax.lax.cond(valid, lambda: updated, lambda: net)

    out_after, _ = updated.forward(state)
    broken = state_ok & ~jnp.all(jnp.isfinite(out_after))
    updated = jax.lax.cond(broken, lambda: updated.reinitialize(key), lambda: updated)

    return updated, jnp.where(valid, loss, 0.0), broken


@eqx.filter_jit
def _forward(net: ValueNetwork, x: jax.Array) -> tuple[jax.Array, ForwardCache]:
    return net.forward(x)


@eqx.filter_jit
def _predict(net: ValueNetwork, x: jax.Array) -> jax.Array:
    return net(x)


@eqx.filter_jit
def _predict_batch(net: ValueNetwork, xs: jax.Array) -> jax.Array:
    return jax.vmap(net)(xs)


_train_step = eqx.filter_jit(_sgd_step)


@eqx.filter_jit
def _train_batch(
    net: ValueNetwork,
    states: jax.Array,
    actions: jax.Array,
    targets: jax.Array,
    lr: jax.Array,
    key: jax.Array,
) -> tuple[ValueNetwork, jax.Array, jax.Array]:
    keys = jax.random.split(key, states.shape[0])

    def _body(carry: ValueNetwork, xs):
        s, a, t, k = xs
        carry, loss, reset = _sgd_step(carry, s, a, t, lr, k)
        return carry, (loss, reset)

    net, (losses, resets) = jax.lax.scan(_body, net, (states, actions, targets, keys))
    return net, jnp.mean(losses), jnp.sum(resets)
