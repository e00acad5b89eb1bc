# ============================================================================
# File: actor_critic.py
# Description: Actor-critic (GAE) and REINFORCE learners
# ============================================================================
"""
Policy gradient learners

- ActorNetwork: softmax policy over the action vocabulary with entropy
- CriticNetwork: scalar state-value estimate
- ActorCriticLearner: GAE advantages at episode end, optional per-step
  bootstrapped update
- ReinforceLearner: Monte-Carlo returns with an exponential moving average
  baseline
"""

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .config import ActorCriticConfig, ExplorationConfig
from .learning import LearningAlgorithm, available_indices, random_choice
from .networks import FeedForwardNetwork, softmax
from .optimizers import build_optimizer
from .structures import ACTION_VOCABULARY, Action, Experience, State, pass_action

logger = logging.getLogger(__name__)

# Floor applied before taking logs of probabilities
LOG_PROB_FLOOR = 1e-8

# Confidence of the pass action returned when sampling overruns
FALLBACK_CONFIDENCE = 0.1


class PolicyOutput(NamedTuple):
    probabilities: np.ndarray
    log_probabilities: np.ndarray
    entropy: np.ndarray


def safe_log(probabilities: np.ndarray) -> np.ndarray:
    return np.log(np.maximum(probabilities, LOG_PROB_FLOOR))


def policy_entropy(probabilities: np.ndarray) -> np.ndarray:
    """H = -Σ p log max(p, floor) over the last axis."""
    return -np.sum(probabilities * safe_log(probabilities), axis=-1)


def sample_index(probabilities: np.ndarray, rng: np.random.Generator) -> Optional[int]:
    """
    Cumulative-probability draw.

    Returns:
        Sampled index, or None if rounding left the draw above the total mass
    """
    draw = rng.random()
    cumulative = 0.0
    for index, p in enumerate(probabilities):
        cumulative += p
        if draw < cumulative:
            return index
    return None


def compute_discounted_returns(rewards: Sequence[float], gamma: float,
                               dones: Optional[Sequence[bool]] = None) -> np.ndarray:
    """
    G_t = r_t + γ G_{t+1}, computed backward; a terminal step resets the sum.

    Args:
        rewards: Rewards of one episode
        gamma: Discount factor
        dones: Terminal flags, optional

    Returns:
        Returns [T]
    """
    returns = np.zeros(len(rewards))
    running = 0.0
    for t in reversed(range(len(rewards))):
        if dones is not None and dones[t]:
            running = 0.0
        running = rewards[t] + gamma * running
        returns[t] = running
    return returns


def compute_gae(rewards: Sequence[float], values: Sequence[float], next_values: Sequence[float],
                dones: Sequence[bool], gamma: float, lam: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generalized advantage estimation.

    δ_t = r_t + γ V(s_{t+1}) (1 - done_t) - V(s_t)
    A_t = δ_t + γ λ (1 - done_t) A_{t+1}

    Args:
        rewards: Rewards [T]
        values: V(s_t) [T]
        next_values: V(s_{t+1}) [T]
        dones: Terminal flags [T]
        gamma: Discount factor
        lam: GAE λ; 0 gives one-step TD errors, 1 gives Monte-Carlo advantages

    Returns:
        advantages: [T]
        returns: Critic targets A_t + V(s_t) [T]
    """
    rewards = np.asarray(rewards, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    next_values = np.asarray(next_values, dtype=np.float64)
    not_done = 1.0 - np.asarray(dones, dtype=np.float64)

    advantages = np.zeros(len(rewards))
    running = 0.0
    for t in reversed(range(len(rewards))):
        delta = rewards[t] + gamma * next_values[t] * not_done[t] - values[t]
        running = delta + gamma * lam * not_done[t] * running
        advantages[t] = running
    return advantages, advantages + values


def policy_logit_gradient(probabilities: np.ndarray, action_indices: np.ndarray,
                          advantages: np.ndarray, entropy_coefficient: float) -> np.ndarray:
    """
    Gradient of -log π(a|s) * A - c * H w.r.t. the logits.

    dL/dz = A (p - onehot(a)) + c p (log p + H)

    Args:
        probabilities: Policy probabilities [batch, n_actions]
        action_indices: Taken actions [batch]
        advantages: Advantages [batch]
        entropy_coefficient: Entropy bonus weight c

    Returns:
        Gradient [batch, n_actions]
    """
    probabilities = np.atleast_2d(probabilities)
    rows = np.arange(len(probabilities))
    onehot = np.zeros_like(probabilities)
    onehot[rows, action_indices] = 1.0
    entropy = policy_entropy(probabilities)[:, None]
    grad = advantages[:, None] * (probabilities - onehot)
    grad += entropy_coefficient * probabilities * (safe_log(probabilities) + entropy)
    return grad


class ActorNetwork:
    """
    Softmax policy network.

    Outputs are logits over the action vocabulary; a boolean mask restricts
    the distribution to the currently legal action types.
    """

    def __init__(self, state_size: int, config: ActorCriticConfig, rng: np.random.Generator):
        self.n_actions = len(ACTION_VOCABULARY)
        self.network = FeedForwardNetwork(state_size, self.n_actions, config.actor_network, rng)
        self.optimizer = build_optimizer(config.actor_optimizer)

    def _probabilities(self, logits: np.ndarray, mask: Optional[np.ndarray]) -> np.ndarray:
        if mask is not None:
            logits = np.where(mask, logits, -np.inf)
        return softmax(logits)

    def policy(self, features: np.ndarray, mask: Optional[np.ndarray] = None) -> PolicyOutput:
        """Probabilities, floored log-probabilities and entropy."""
        probs = self._probabilities(self.network.forward(features), mask)
        return PolicyOutput(probs, safe_log(probs), policy_entropy(probs))

    def update(self, features: np.ndarray, masks: np.ndarray, action_indices: np.ndarray,
               advantages: np.ndarray, entropy_coefficient: float) -> float:
        """
        One policy gradient step averaged over the batch.

        Returns:
            Mean policy loss before the step
        """
        logits, cache = self.network.forward_with_cache(np.atleast_2d(features))
        probs = self._probabilities(np.atleast_2d(logits), masks)
        rows = np.arange(len(probs))
        log_probs = safe_log(probs)[rows, action_indices]
        entropy = policy_entropy(probs)
        loss = float(np.mean(-log_probs * advantages - entropy_coefficient * entropy))

        grad_logits = policy_logit_gradient(probs, action_indices, advantages, entropy_coefficient)
        grad_logits /= len(probs)
        grads = self.network.backward(cache, grad_logits)
        self.optimizer.step(self.network.parameters(), grads)
        return loss


class CriticNetwork:
    """State-value network V(s)."""

    def __init__(self, state_size: int, config: ActorCriticConfig, rng: np.random.Generator):
        self.network = FeedForwardNetwork(state_size, 1, config.critic_network, rng)
        self.optimizer = build_optimizer(config.critic_optimizer)

    def value(self, features: np.ndarray) -> float:
        return float(self.network.forward(features)[0])

    def values(self, features: np.ndarray) -> np.ndarray:
        return np.atleast_2d(self.network.forward(np.atleast_2d(features)))[:, 0]

    def update(self, features: np.ndarray, targets: np.ndarray) -> float:
        """
        One step on 0.5 * (V(s) - target)^2 averaged over the batch.

        Returns:
            Mean value loss before the step
        """
        out, cache = self.network.forward_with_cache(np.atleast_2d(features))
        errors = np.atleast_2d(out)[:, 0] - targets
        loss = float(np.mean(0.5 * errors ** 2))
        grads = self.network.backward(cache, (errors / len(errors))[:, None])
        self.optimizer.step(self.network.parameters(), grads)
        return loss


class ActorCriticLearner(LearningAlgorithm):
    """
    Actor-critic learner with GAE advantages.

    Two update paths work on the same experiences and can be toggled
    independently in the config:
    - online: after every step, critic target r + γ V(s'), actor advantage δ
    - episodic: at episode end, GAE advantages over the whole episode

    Attributes:
        config: Actor-critic hyperparameters
        actor: Policy network
        critic: Value network (None for REINFORCE)
        memory: Experiences of the running episode with their action masks
    """

    name = "actor_critic"
    uses_critic = True

    def __init__(self, config: ActorCriticConfig, exploration: ExplorationConfig, state_size: int,
                 rng: np.random.Generator):
        super().__init__(exploration, rng)
        self.config = config
        self.state_size = state_size
        self.n_actions = len(ACTION_VOCABULARY)
        self.actor = ActorNetwork(state_size, config, rng)
        self.critic = CriticNetwork(state_size, config, rng) if self.uses_critic else None
        self.memory: List[Tuple[Experience, np.ndarray]] = []
        self._last_mask: Optional[np.ndarray] = None
        self.actor_losses: List[float] = []
        self.critic_losses: List[float] = []
        self.entropies: List[float] = []

    # ------------------------------------------------------------------
    # Acting
    # ------------------------------------------------------------------

    def _mask(self, actions: Sequence[Action]) -> np.ndarray:
        mask = np.zeros(self.n_actions, dtype=bool)
        mask[available_indices(actions)] = True
        return mask

    def action_probabilities(self, state: State,
                             available_actions: Sequence[Action]) -> Optional[np.ndarray]:
        output = self.actor.policy(state.as_array(), self._mask(available_actions))
        return np.array([output.probabilities[a.index] for a in available_actions])

    def select_action(self, state: State, available_actions: Sequence[Action]) -> Action:
        mask = self._mask(available_actions)
        self._last_mask = mask
        if self.rng.random() < self.exploration_rate:
            return random_choice(self.rng, available_actions)
        output = self.actor.policy(state.as_array(), mask)
        self.entropies.append(float(output.entropy))
        index = sample_index(output.probabilities, self.rng)
        if index is None:
            return pass_action(FALLBACK_CONFIDENCE)
        for action in available_actions:
            if action.index == index:
                return action.with_confidence(output.probabilities[index])
        return pass_action(FALLBACK_CONFIDENCE)

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def _step_mask(self, experience: Experience) -> np.ndarray:
        mask = (self._last_mask.copy() if self._last_mask is not None
                else np.ones(self.n_actions, dtype=bool))
        # A coordination substitute may fall outside the sampled set
        mask[experience.action.index] = True
        return mask

    def observe(self, experience: Experience) -> Optional[float]:
        mask = self._step_mask(experience)
        self._last_mask = None
        self.memory.append((experience, mask))
        self.step_count += 1
        if self.config.online_updates and self.uses_critic:
            return self._online_update(experience, mask)
        return None

    def _online_update(self, experience: Experience, mask: np.ndarray) -> float:
        """Bootstrapped one-step update of critic and actor."""
        gamma = self.config.gamma
        value = self.critic.value(experience.state.as_array())
        next_value = 0.0 if experience.done else self.critic.value(experience.next_state.as_array())
        target = experience.reward.total + gamma * next_value
        td_error = target - value

        critic_loss = self.critic.update(experience.state.as_array()[None, :], np.array([target]))
        actor_loss = self.actor.update(experience.state.as_array()[None, :], mask[None, :],
                                       np.array([experience.action.index]), np.array([td_error]),
                                       self.config.entropy_coefficient)
        self.critic_losses.append(critic_loss)
        self.actor_losses.append(actor_loss)
        return td_error

    def _episode_arrays(self):
        experiences = [exp for exp, _ in self.memory]
        states = np.array([exp.state.features for exp in experiences], dtype=np.float64)
        masks = np.array([mask for _, mask in self.memory])
        actions = np.array([exp.action.index for exp in experiences])
        rewards = np.array([exp.reward.total for exp in experiences])
        dones = np.array([exp.done for exp in experiences])
        return experiences, states, masks, actions, rewards, dones

    def _episode_update(self) -> Dict[str, float]:
        """GAE batch update over the finished episode."""
        experiences, states, masks, actions, rewards, dones = self._episode_arrays()
        next_states = np.array([exp.next_state.features for exp in experiences], dtype=np.float64)
        values = self.critic.values(states)
        next_values = self.critic.values(next_states)
        advantages, returns = compute_gae(rewards, values, next_values, dones,
                                          self.config.gamma, self.config.gae_lambda)
        annotated = [exp.with_annotations(a, g) for exp, a, g in zip(experiences, advantages, returns)]

        actor_loss = self.actor.update(states, masks, actions, advantages,
                                       self.config.entropy_coefficient)
        critic_loss = self.critic.update(states, np.array([exp.returns for exp in annotated]))
        self.actor_losses.append(actor_loss)
        self.critic_losses.append(critic_loss)
        return {
            "actor_loss": actor_loss,
            "critic_loss": critic_loss,
            "mean_advantage": float(np.mean(advantages)),
        }

    def end_episode(self) -> Dict[str, float]:
        stats: Dict[str, float] = {}
        if self.config.episode_updates and self.memory:
            stats.update(self._episode_update())
        stats["episode_length"] = len(self.memory)
        stats["mean_entropy"] = float(np.mean(self.entropies)) if self.entropies else 0.0
        stats.update(super().end_episode())
        # Per-step annotations are discarded with the episode memory
        self.memory = []
        self.entropies = []
        return stats

    def discard_episode(self):
        self.memory = []
        self.entropies = []
        self._last_mask = None

    def metrics(self) -> Dict[str, float]:
        metrics = super().metrics()
        metrics["actor_loss"] = float(np.mean(self.actor_losses[-100:])) if self.actor_losses else 0.0
        metrics["critic_loss"] = float(np.mean(self.critic_losses[-100:])) if self.critic_losses else 0.0
        return metrics

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def hyperparameters(self) -> Dict[str, Any]:
        return {
            "state_size": self.state_size,
            "n_actions": self.n_actions,
            "actor_hidden_layers": list(self.config.actor_network.hidden_layers),
            "critic_hidden_layers": list(self.config.critic_network.hidden_layers),
            "gamma": self.config.gamma,
            "gae_lambda": self.config.gae_lambda,
            "entropy_coefficient": self.config.entropy_coefficient,
            "actor_learning_rate": self.config.actor_optimizer.learning_rate,
            "critic_learning_rate": self.config.critic_optimizer.learning_rate,
            "online_updates": self.config.online_updates,
            "episode_updates": self.config.episode_updates,
        }

    def state_dict(self) -> Dict[str, Any]:
        weights, biases = self.actor.network.get_weights()
        blob = {
            "weights": weights,
            "biases": biases,
            "hyperparameters": self.hyperparameters(),
            "metadata": self._metadata(),
            "networks": {},
            "optimizer": {"actor": self.actor.optimizer.state_dict()},
        }
        if self.critic is not None:
            blob["networks"]["critic"] = self.critic.network.to_dict()
            blob["optimizer"]["critic"] = self.critic.optimizer.state_dict()
        return blob

    def load_state_dict(self, blob: Dict[str, Any]):
        self._load_metadata(blob.get("metadata", {}))
        self.actor.network.set_weights(blob["weights"], blob["biases"])
        optimizers = blob.get("optimizer", {})
        if "actor" in optimizers:
            self.actor.optimizer.load_state_dict(optimizers["actor"])
        if self.critic is not None:
            critic = blob["networks"]["critic"]
            self.critic.network.set_weights(critic["weights"], critic["biases"])
            if "critic" in optimizers:
                self.critic.optimizer.load_state_dict(optimizers["critic"])
        self.memory = []


class ReinforceLearner(ActorCriticLearner):
    """
    Monte-Carlo policy gradient.

    Advantage is G_t - b, where b is an exponential moving average of the
    mean episode return updated before the advantages are computed.
    """

    name = "reinforce"
    uses_critic = False

    def __init__(self, config: ActorCriticConfig, exploration: ExplorationConfig, state_size: int,
                 rng: np.random.Generator):
        super().__init__(config, exploration, state_size, rng)
        self.baseline = 0.0

    def _episode_update(self) -> Dict[str, float]:
        experiences, states, masks, actions, rewards, dones = self._episode_arrays()
        returns = compute_discounted_returns(rewards, self.config.gamma, dones)
        momentum = self.config.baseline_momentum
        self.baseline = momentum * self.baseline + (1.0 - momentum) * float(np.mean(returns))
        advantages = returns - self.baseline
        actor_loss = self.actor.update(states, masks, actions, advantages,
                                       self.config.entropy_coefficient)
        self.actor_losses.append(actor_loss)
        return {"actor_loss": actor_loss, "baseline": self.baseline,
                "mean_return": float(np.mean(returns))}

    def state_dict(self) -> Dict[str, Any]:
        blob = super().state_dict()
        blob["metadata"]["baseline"] = self.baseline
        return blob

    def load_state_dict(self, blob: Dict[str, Any]):
        super().load_state_dict(blob)
        self.baseline = float(blob.get("metadata", {}).get("baseline", 0.0))
