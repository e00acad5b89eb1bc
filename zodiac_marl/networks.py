# ============================================================================
# File: networks.py
# Description: Dense feed-forward networks with hand-written backprop
# ============================================================================
"""
Neural network module

Implements small dense networks on numpy:
- DenseLayer: weights [out, in], bias [out], activation
- FeedForwardNetwork: stack of layers with optional dueling head
- Forward pass with cache and backward pass returning parameter gradients
"""

from typing import Any, Callable, Dict, List, Sequence, Tuple

import numpy as np

from .config import ConfigError, ModelFormatError, NetworkConfig


# ============================================================================
# Activations: name -> (function, derivative w.r.t. the pre-activation)
# ============================================================================

def _sigmoid(z: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(z, -500.0, 500.0)))


def _sigmoid_grad(z: np.ndarray) -> np.ndarray:
    s = _sigmoid(z)
    return s * (1.0 - s)


ACTIVATIONS: Dict[str, Tuple[Callable[[np.ndarray], np.ndarray], Callable[[np.ndarray], np.ndarray]]] = {
    "relu": (lambda z: np.maximum(z, 0.0), lambda z: (z > 0.0).astype(np.float64)),
    "tanh": (np.tanh, lambda z: 1.0 - np.tanh(z) ** 2),
    "sigmoid": (_sigmoid, _sigmoid_grad),
    "linear": (lambda z: z, np.ones_like),
}


def get_activation(name: str):
    if name not in ACTIVATIONS:
        raise ConfigError(f"Unknown activation '{name}'")
    return ACTIVATIONS[name]


def dueling_combine(value: np.ndarray, advantages: np.ndarray) -> np.ndarray:
    """
    Q = V + (A - mean_a A).

    Args:
        value: State values [batch, 1]
        advantages: Advantages [batch, n_actions]

    Returns:
        Q-values [batch, n_actions]
    """
    return value + advantages - advantages.mean(axis=-1, keepdims=True)


class DenseLayer:
    """
    Fully connected layer.

    Attributes:
        weights: Weight matrix [out_features, in_features]
        bias: Bias vector [out_features]
        activation: Activation name
    """

    def __init__(self, in_features: int, out_features: int, activation: str,
                 rng: np.random.Generator):
        self.activation = activation
        self._fn, self._grad = get_activation(activation)
        # Xavier uniform initialization
        limit = np.sqrt(6.0 / (in_features + out_features))
        self.weights = rng.uniform(-limit, limit, size=(out_features, in_features))
        self.bias = np.zeros(out_features)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.weights.shape

    def forward(self, x: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Return (pre-activation, activation) for input x [batch, in]."""
        z = x @ self.weights.T + self.bias
        return z, self._fn(z)

    def activation_grad(self, z: np.ndarray) -> np.ndarray:
        return self._grad(z)


class FeedForwardNetwork:
    """
    Dense network with configurable activations and optional dueling head.

    With ``dueling`` the last layer has ``1 + output_size`` linear units: the
    first is the state value V(s), the rest are advantages A(s, a).

    Attributes:
        input_size: Feature dimension
        output_size: Number of outputs (actions)
        dueling: Whether outputs are recombined from value/advantage streams
        layers: Dense layers, input to output
    """

    def __init__(self, input_size: int, output_size: int, config: NetworkConfig,
                 rng: np.random.Generator, dueling: bool = False):
        """
        Initialize the network.

        Args:
            input_size: Feature dimension
            output_size: Number of outputs
            config: Hidden sizes and activations
            rng: Random generator for weight initialization
            dueling: Split the final layer into value and advantage streams
        """
        self.input_size = input_size
        self.output_size = output_size
        self.dueling = dueling
        self.config = config

        sizes = [input_size] + list(config.hidden_layers)
        head_size = output_size + 1 if dueling else output_size
        self.layers: List[DenseLayer] = []
        for fan_in, fan_out in zip(sizes[:-1], sizes[1:]):
            self.layers.append(DenseLayer(fan_in, fan_out, config.activation, rng))
        head_activation = "linear" if dueling else config.output_activation
        self.layers.append(DenseLayer(sizes[-1], head_size, head_activation, rng))

    # ------------------------------------------------------------------
    # Forward / backward
    # ------------------------------------------------------------------

    def forward(self, x: np.ndarray) -> np.ndarray:
        """
        Forward pass.

        Args:
            x: Input [in] or [batch, in]

        Returns:
            Output with the same leading shape as ``x``
        """
        out, _ = self.forward_with_cache(x)
        return out

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return self.forward(x)

    def forward_with_cache(self, x: np.ndarray) -> Tuple[np.ndarray, Dict[str, Any]]:
        """Forward pass keeping the intermediate values needed by ``backward``."""
        x = np.asarray(x, dtype=np.float64)
        single = x.ndim == 1
        a = np.atleast_2d(x)
        inputs, pre_activations = [], []
        for layer in self.layers:
            inputs.append(a)
            z, a = layer.forward(a)
            pre_activations.append(z)
        if self.dueling:
            a = dueling_combine(a[:, :1], a[:, 1:])
        cache = {"inputs": inputs, "pre_activations": pre_activations, "single": single}
        return (a[0] if single else a), cache

    def backward(self, cache: Dict[str, Any], grad_output: np.ndarray) -> List[np.ndarray]:
        """
        Backpropagate ``grad_output`` (dLoss/dOutput).

        Args:
            cache: Cache returned by ``forward_with_cache``
            grad_output: Gradient w.r.t. the network output, same shape

        Returns:
            Gradients ordered like ``parameters()``: [dW0, db0, dW1, db1, ...]
        """
        delta = np.atleast_2d(np.asarray(grad_output, dtype=np.float64))
        if self.dueling:
            # dQ_i/dV = 1, dQ_i/dA_j = [i == j] - 1/n
            grad_value = delta.sum(axis=1, keepdims=True)
            grad_adv = delta - delta.mean(axis=1, keepdims=True)
            delta = np.concatenate([grad_value, grad_adv], axis=1)

        grads: List[np.ndarray] = [None] * (2 * len(self.layers))
        for i in reversed(range(len(self.layers))):
            layer = self.layers[i]
            delta = delta * layer.activation_grad(cache["pre_activations"][i])
            grads[2 * i] = delta.T @ cache["inputs"][i]
            grads[2 * i + 1] = delta.sum(axis=0)
            if i > 0:
                delta = delta @ layer.weights
        return grads

    def input_gradient(self, cache: Dict[str, Any], grad_output: np.ndarray) -> np.ndarray:
        """Gradient of the loss w.r.t. the network input."""
        delta = np.atleast_2d(np.asarray(grad_output, dtype=np.float64))
        if self.dueling:
            delta = np.concatenate([delta.sum(axis=1, keepdims=True),
                                    delta - delta.mean(axis=1, keepdims=True)], axis=1)
        for i in reversed(range(len(self.layers))):
            delta = delta * self.layers[i].activation_grad(cache["pre_activations"][i])
            delta = delta @ self.layers[i].weights
        return delta[0] if cache["single"] else delta

    def value_and_advantages(self, x: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Raw dueling streams (V, A) before recombination."""
        if not self.dueling:
            raise ValueError("Network has no dueling head")
        a = np.atleast_2d(np.asarray(x, dtype=np.float64))
        for layer in self.layers:
            _, a = layer.forward(a)
        return a[:, :1], a[:, 1:]

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def parameters(self) -> List[np.ndarray]:
        params = []
        for layer in self.layers:
            params.extend([layer.weights, layer.bias])
        return params

    def copy_from(self, other: "FeedForwardNetwork"):
        """Copy all parameter values of ``other`` (a value clone, no aliasing)."""
        if self.architecture() != other.architecture():
            raise ValueError("Cannot copy weights between different architectures")
        for mine, theirs in zip(self.layers, other.layers):
            mine.weights = theirs.weights.copy()
            mine.bias = theirs.bias.copy()

    def clone(self) -> "FeedForwardNetwork":
        """Independent copy with identical weights."""
        twin = FeedForwardNetwork.__new__(FeedForwardNetwork)
        twin.input_size = self.input_size
        twin.output_size = self.output_size
        twin.dueling = self.dueling
        twin.config = self.config
        twin.layers = []
        for layer in self.layers:
            copy = DenseLayer.__new__(DenseLayer)
            copy.activation = layer.activation
            copy._fn, copy._grad = layer._fn, layer._grad
            copy.weights = layer.weights.copy()
            copy.bias = layer.bias.copy()
            twin.layers.append(copy)
        return twin

    def architecture(self) -> List[Tuple[int, int, str]]:
        return [(l.shape[0], l.shape[1], l.activation) for l in self.layers]

    def get_weights(self) -> Tuple[List[List[List[float]]], List[List[float]]]:
        """Nested lists (weights, biases) for JSON."""
        weights = [layer.weights.tolist() for layer in self.layers]
        biases = [layer.bias.tolist() for layer in self.layers]
        return weights, biases

    def set_weights(self, weights: Sequence, biases: Sequence):
        """
        Load nested lists produced by ``get_weights``.

        Raises:
            ModelFormatError: If the number or shape of layers differs
        """
        if len(weights) != len(self.layers) or len(biases) != len(self.layers):
            raise ModelFormatError(
                f"Expected {len(self.layers)} layers, got {len(weights)} weight / {len(biases)} bias entries")
        new_weights = [np.asarray(w, dtype=np.float64) for w in weights]
        new_biases = [np.asarray(b, dtype=np.float64) for b in biases]
        for layer, w, b in zip(self.layers, new_weights, new_biases):
            if w.shape != layer.weights.shape or b.shape != layer.bias.shape:
                raise ModelFormatError(
                    f"Layer shape mismatch: expected {layer.weights.shape}, got {w.shape}")
        for layer, w, b in zip(self.layers, new_weights, new_biases):
            layer.weights = w
            layer.bias = b

    def to_dict(self) -> Dict[str, Any]:
        weights, biases = self.get_weights()
        return {"weights": weights, "biases": biases}

    def n_parameters(self) -> int:
        return int(sum(p.size for p in self.parameters()))


def huber_loss(errors: np.ndarray, delta: float = 1.0) -> np.ndarray:
    """Elementwise Huber loss: quadratic for |e| <= delta, linear beyond."""
    abs_err = np.abs(errors)
    quadratic = np.minimum(abs_err, delta)
    linear = abs_err - quadratic
    return 0.5 * quadratic ** 2 + delta * linear


def huber_grad(errors: np.ndarray, delta: float = 1.0) -> np.ndarray:
    """Derivative of ``huber_loss`` w.r.t. the error."""
    return np.clip(errors, -delta, delta)


def softmax(logits: np.ndarray) -> np.ndarray:
    """Numerically stable softmax over the last axis."""
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)
