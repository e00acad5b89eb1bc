# ============================================================================
# File: optimizers.py
# Description: Gradient optimizers operating in place on numpy parameters
# ============================================================================
"""
Optimizers for the hand-written dense networks

Each optimizer updates a list of parameter arrays in place from a matching
list of gradient arrays. Per-parameter state (moments, velocities) is kept
by position in that list.
"""

from typing import Any, Dict, List, Optional

import numpy as np

from .config import ConfigError, OptimizerConfig, OptimizerType, parse_enum


def clip_gradients(grads: List[np.ndarray], max_norm: Optional[float]) -> float:
    """
    Scale gradients in place so that their global L2 norm is at most ``max_norm``.

    Args:
        grads: Gradient arrays
        max_norm: Norm ceiling, None disables clipping

    Returns:
        The norm before clipping
    """
    total_norm = float(np.sqrt(sum(float(np.sum(g * g)) for g in grads)))
    if max_norm is not None and total_norm > max_norm > 0:
        scale = max_norm / (total_norm + 1e-6)
        for g in grads:
            g *= scale
    return total_norm


class Optimizer:
    """Base class of the optimizers."""

    def __init__(self, config: OptimizerConfig):
        self.config = config
        self.learning_rate = config.learning_rate
        self.iterations = 0

    def step(self, params: List[np.ndarray], grads: List[np.ndarray]):
        """Apply one update to ``params`` (in place)."""
        if len(params) != len(grads):
            raise ValueError(f"Got {len(grads)} gradients for {len(params)} parameters")
        clip_gradients(grads, self.config.max_grad_norm)
        self.iterations += 1
        for i, (param, grad) in enumerate(zip(params, grads)):
            param -= self._delta(i, param, grad)

    def _delta(self, index: int, param: np.ndarray, grad: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def state_dict(self) -> Dict[str, Any]:
        return {"type": self.config.type, "iterations": self.iterations}

    def load_state_dict(self, state: Dict[str, Any]):
        self.iterations = int(state.get("iterations", 0))


class SGD(Optimizer):
    """Stochastic gradient descent with momentum."""

    def __init__(self, config: OptimizerConfig):
        super().__init__(config)
        self.velocities: Dict[int, np.ndarray] = {}

    def _delta(self, index, param, grad):
        velocity = self.velocities.get(index)
        if velocity is None:
            velocity = np.zeros_like(param)
        velocity = self.config.momentum * velocity + self.learning_rate * grad
        self.velocities[index] = velocity
        return velocity

    def state_dict(self):
        state = super().state_dict()
        state["velocities"] = {str(i): v.tolist() for i, v in self.velocities.items()}
        return state

    def load_state_dict(self, state):
        super().load_state_dict(state)
        self.velocities = {int(i): np.asarray(v, dtype=np.float64)
                           for i, v in state.get("velocities", {}).items()}


class RMSProp(Optimizer):
    """RMSProp: gradients scaled by a running RMS of their history."""

    def __init__(self, config: OptimizerConfig):
        super().__init__(config)
        self.square_avg: Dict[int, np.ndarray] = {}

    def _delta(self, index, param, grad):
        avg = self.square_avg.get(index)
        if avg is None:
            avg = np.zeros_like(param)
        avg = self.config.decay * avg + (1.0 - self.config.decay) * grad * grad
        self.square_avg[index] = avg
        return self.learning_rate * grad / (np.sqrt(avg) + self.config.epsilon)

    def state_dict(self):
        state = super().state_dict()
        state["square_avg"] = {str(i): v.tolist() for i, v in self.square_avg.items()}
        return state

    def load_state_dict(self, state):
        super().load_state_dict(state)
        self.square_avg = {int(i): np.asarray(v, dtype=np.float64)
                           for i, v in state.get("square_avg", {}).items()}


class Adam(Optimizer):
    """
    Adam with bias-corrected first and second moment estimates.

    m_t = β1 m_{t-1} + (1-β1) g
    v_t = β2 v_{t-1} + (1-β2) g²
    θ  -= lr * m̂_t / (sqrt(v̂_t) + ε),  m̂ = m/(1-β1^t), v̂ = v/(1-β2^t)
    """

    def __init__(self, config: OptimizerConfig):
        super().__init__(config)
        self.m: Dict[int, np.ndarray] = {}
        self.v: Dict[int, np.ndarray] = {}

    def _delta(self, index, param, grad):
        b1, b2 = self.config.beta1, self.config.beta2
        m = self.m.get(index)
        v = self.v.get(index)
        if m is None:
            m = np.zeros_like(param)
            v = np.zeros_like(param)
        m = b1 * m + (1.0 - b1) * grad
        v = b2 * v + (1.0 - b2) * grad * grad
        self.m[index], self.v[index] = m, v
        m_hat = m / (1.0 - b1 ** self.iterations)
        v_hat = v / (1.0 - b2 ** self.iterations)
        return self.learning_rate * m_hat / (np.sqrt(v_hat) + self.config.epsilon)

    def state_dict(self):
        state = super().state_dict()
        state["m"] = {str(i): a.tolist() for i, a in self.m.items()}
        state["v"] = {str(i): a.tolist() for i, a in self.v.items()}
        return state

    def load_state_dict(self, state):
        super().load_state_dict(state)
        self.m = {int(i): np.asarray(a, dtype=np.float64) for i, a in state.get("m", {}).items()}
        self.v = {int(i): np.asarray(a, dtype=np.float64) for i, a in state.get("v", {}).items()}


OPTIMIZERS = {
    OptimizerType.ADAM: Adam,
    OptimizerType.SGD: SGD,
    OptimizerType.RMSPROP: RMSProp,
}


def build_optimizer(config: OptimizerConfig) -> Optimizer:
    """
    Create the optimizer named by ``config.type``.

    Raises:
        ConfigError: If the optimizer type is unknown
    """
    optimizer_type = parse_enum(OptimizerType, config.type, "optimizer type")
    if optimizer_type not in OPTIMIZERS:
        raise ConfigError(f"No implementation for optimizer '{config.type}'")
    return OPTIMIZERS[optimizer_type](config)
