# ============================================================================
# File: dqn.py
# Description: Deep Q-Network learner with double/dueling variants
# ============================================================================
"""
Deep Q-Network

Main network trained from replayed mini-batches, target network refreshed
by a hard copy every ``target_update_frequency`` steps. Supports:
- Double DQN targets (main network selects, target network evaluates)
- Dueling value/advantage head
- Prioritized replay with importance-sampling weights
- Huber loss on the taken action only
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .buffer import ReplayBatch, ReplayBuffer
from .config import DQNConfig, ExplorationConfig
from .learning import LearningAlgorithm, available_indices, random_choice
from .networks import FeedForwardNetwork, huber_grad, huber_loss
from .optimizers import build_optimizer
from .structures import ACTION_VOCABULARY, Action, Experience, State

logger = logging.getLogger(__name__)


def masked_max(q_values: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Row-wise max over the allowed entries. Rows without allowed entries give 0."""
    masked = np.where(mask, q_values, -np.inf)
    best = masked.max(axis=1)
    return np.where(np.isfinite(best), best, 0.0)


def masked_argmax(q_values: np.ndarray, mask: np.ndarray) -> np.ndarray:
    masked = np.where(mask, q_values, -np.inf)
    return masked.argmax(axis=1)


def compute_td_targets(rewards: np.ndarray, dones: np.ndarray, next_q_main: np.ndarray,
                       next_q_target: np.ndarray, gamma: float, double: bool,
                       mask: Optional[np.ndarray] = None) -> np.ndarray:
    """
    TD targets r + (1 - done) * γ * next value.

    Standard DQN takes the max of the target network. Double DQN takes the
    target network's value of the main network's argmax.

    Args:
        rewards: [batch]
        dones: [batch], 1.0 for terminal transitions
        next_q_main: Main network outputs for next states [batch, n_actions]
        next_q_target: Target network outputs for next states [batch, n_actions]
        gamma: Discount factor
        double: Use the double DQN estimate
        mask: Allowed next actions [batch, n_actions], all allowed when None

    Returns:
        Targets [batch]
    """
    if mask is None:
        mask = np.ones_like(next_q_target, dtype=bool)
    if double:
        best = masked_argmax(next_q_main, mask)
        next_values = next_q_target[np.arange(len(best)), best]
        next_values = np.where(mask.any(axis=1), next_values, 0.0)
    else:
        next_values = masked_max(next_q_target, mask)
    return rewards + (1.0 - dones) * gamma * next_values


class DQNLearner(LearningAlgorithm):
    """
    DQN agent core

    Attributes:
        config: DQN hyperparameters
        main_network: Network trained every step
        target_network: Periodic hard copy of the main network
        optimizer: Optimizer of the main network
        replay_buffer: Experience store
        losses: Recent training losses
    """

    name = "dqn"

    def __init__(self, config: DQNConfig, exploration: ExplorationConfig, state_size: int,
                 rng: np.random.Generator):
        """
        Initialize the learner

        Args:
            config: DQN hyperparameters
            exploration: Epsilon schedule
            state_size: Feature dimension
            rng: Random generator (initialization, exploration, replay sampling)
        """
        super().__init__(exploration, rng)
        self.config = config
        self.state_size = state_size
        self.n_actions = len(ACTION_VOCABULARY)
        self.main_network = FeedForwardNetwork(state_size, self.n_actions, config.network, rng,
                                               dueling=config.dueling)
        self.target_network = self.main_network.clone()
        self.optimizer = build_optimizer(config.optimizer)
        self.replay_buffer = ReplayBuffer(
            config.buffer_size, rng,
            prioritized=config.prioritized_replay,
            alpha=config.priority_alpha,
            epsilon=config.priority_epsilon,
        )
        self.train_steps = 0
        self.last_target_update = 0
        self.target_updates = 0
        self.losses: List[float] = []
        self.episode_losses: List[float] = []

    # ------------------------------------------------------------------
    # Acting
    # ------------------------------------------------------------------

    def q_values(self, state: State) -> np.ndarray:
        return self.main_network.forward(state.as_array())

    def select_action(self, state: State, available_actions: Sequence[Action]) -> Action:
        if self.rng.random() < self.exploration_rate:
            return random_choice(self.rng, available_actions)
        q = self.q_values(state)
        best = max(range(len(available_actions)), key=lambda i: q[available_actions[i].index])
        return available_actions[best]

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def _mask(self, experiences: Sequence[Experience]) -> np.ndarray:
        mask = np.zeros((len(experiences), self.n_actions), dtype=bool)
        for row, exp in enumerate(experiences):
            if exp.next_available_actions:
                mask[row, available_indices(exp.next_available_actions)] = True
            else:
                mask[row, :] = True
        return mask

    def _targets(self, experiences: Sequence[Experience]) -> np.ndarray:
        next_states = np.array([exp.next_state.features for exp in experiences], dtype=np.float64)
        rewards = np.array([exp.reward.total for exp in experiences], dtype=np.float64)
        dones = np.array([float(exp.done) for exp in experiences])
        next_q_target = np.atleast_2d(self.target_network.forward(next_states))
        next_q_main = (np.atleast_2d(self.main_network.forward(next_states))
                       if self.config.double_dqn else next_q_target)
        return compute_td_targets(rewards, dones, next_q_main, next_q_target,
                                  self.config.gamma, self.config.double_dqn,
                                  mask=self._mask(experiences))

    def td_error(self, experience: Experience) -> float:
        """TD error of a single transition under the current networks."""
        target = self._targets([experience])[0]
        return float(target - self.q_values(experience.state)[experience.action.index])

    def observe(self, experience: Experience) -> Optional[float]:
        """
        Store the transition, train on a mini-batch and refresh the target network

        Returns:
            Training loss, or None when no batch could be drawn yet
        """
        td_error = self.td_error(experience) if self.config.prioritized_replay else None
        self.replay_buffer.push(experience, td_error)
        self.step_count += 1

        loss = None
        if (self.step_count > self.config.warmup_steps and
                self.step_count % self.config.train_frequency == 0):
            loss = self.train_step()

        if self.step_count - self.last_target_update >= self.config.target_update_frequency:
            self.update_target_network()
        return loss

    def train_step(self, batch: Optional[ReplayBatch] = None) -> Optional[float]:
        """
        One gradient step on a replayed mini-batch

        Returns:
            Mean Huber loss, or None if the buffer holds fewer than batch_size items
        """
        if batch is None:
            batch = self.replay_buffer.sample(self.config.batch_size, beta=self.config.priority_beta)
        if batch is None:
            return None

        experiences = batch.experiences
        targets = self._targets(experiences)
        states = np.array([exp.state.features for exp in experiences], dtype=np.float64)
        actions = np.array([exp.action.index for exp in experiences])
        rows = np.arange(len(experiences))

        q_all, cache = self.main_network.forward_with_cache(states)
        q_all = np.atleast_2d(q_all)
        errors = targets - q_all[rows, actions]
        delta = self.config.huber_delta
        loss = float(np.mean(batch.weights * huber_loss(errors, delta)))

        # d loss / d q = -w * huber'(target - q) / batch
        grad_output = np.zeros_like(q_all)
        grad_output[rows, actions] = -batch.weights * huber_grad(errors, delta) / len(experiences)
        grads = self.main_network.backward(cache, grad_output)
        self.optimizer.step(self.main_network.parameters(), grads)

        if self.replay_buffer.prioritized:
            self.replay_buffer.update_priorities(batch.indices, errors)

        self.train_steps += 1
        self.losses.append(loss)
        self.episode_losses.append(loss)
        if len(self.losses) > 1000:
            self.losses = self.losses[-1000:]
        return loss

    def update_target_network(self):
        """Hard copy of the main network into the target network."""
        self.target_network.copy_from(self.main_network)
        self.last_target_update = self.step_count
        self.target_updates += 1
        logger.debug("Target network synced at step %d", self.step_count)

    def end_episode(self) -> Dict[str, float]:
        stats = super().end_episode()
        stats["mean_loss"] = float(np.mean(self.episode_losses)) if self.episode_losses else 0.0
        stats["buffer_size"] = len(self.replay_buffer)
        self.episode_losses = []
        return stats

    def metrics(self) -> Dict[str, float]:
        metrics = super().metrics()
        metrics.update({
            "train_steps": self.train_steps,
            "target_updates": self.target_updates,
            "buffer_size": len(self.replay_buffer),
            "average_loss": float(np.mean(self.losses[-100:])) if self.losses else 0.0,
        })
        return metrics

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def hyperparameters(self) -> Dict[str, Any]:
        return {
            "state_size": self.state_size,
            "n_actions": self.n_actions,
            "hidden_layers": list(self.config.network.hidden_layers),
            "activation": self.config.network.activation,
            "gamma": self.config.gamma,
            "batch_size": self.config.batch_size,
            "buffer_size": self.config.buffer_size,
            "target_update_frequency": self.config.target_update_frequency,
            "double_dqn": self.config.double_dqn,
            "dueling": self.config.dueling,
            "prioritized_replay": self.config.prioritized_replay,
            "learning_rate": self.config.optimizer.learning_rate,
            "optimizer": self.config.optimizer.type,
        }

    def state_dict(self) -> Dict[str, Any]:
        weights, biases = self.main_network.get_weights()
        metadata = self._metadata()
        metadata["last_target_update"] = self.last_target_update
        metadata["train_steps"] = self.train_steps
        return {
            "weights": weights,
            "biases": biases,
            "hyperparameters": self.hyperparameters(),
            "metadata": metadata,
            "networks": {"target": self.target_network.to_dict()},
            "optimizer": self.optimizer.state_dict(),
        }

    def load_state_dict(self, blob: Dict[str, Any]):
        metadata = blob.get("metadata", {})
        self._load_metadata(metadata)
        self.main_network.set_weights(blob["weights"], blob["biases"])
        target = blob.get("networks", {}).get("target")
        if target is None:
            self.target_network.copy_from(self.main_network)
        else:
            self.target_network.set_weights(target["weights"], target["biases"])
        if "optimizer" in blob:
            self.optimizer.load_state_dict(blob["optimizer"])
        self.last_target_update = int(metadata.get("last_target_update", self.step_count))
        self.train_steps = int(metadata.get("train_steps", 0))


class DoubleDQNLearner(DQNLearner):
    """DQN with double Q-learning targets."""

    name = "double_dqn"

    def __init__(self, config: DQNConfig, exploration: ExplorationConfig, state_size: int,
                 rng: np.random.Generator):
        super().__init__(replace(config, double_dqn=True), exploration, state_size, rng)
