"""
Agent Module for zodiac_marl.

An agent couples one learning algorithm with its social behavior: a
behavioral type, a cooperation level, an inbox of messages and the
knowledge other agents shared with it. Agents never touch each other's
learners; they only exchange messages.
"""

import logging
import time
from collections import Counter, defaultdict, deque
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Sequence

import numpy as np

from .actor_critic import ActorCriticLearner, ReinforceLearner
from .config import AgentConfig, AgentType, AlgorithmType, ConfigError, ModelFormatError, parse_enum
from .dqn import DoubleDQNLearner, DQNLearner
from .learning import LearningAlgorithm, MODEL_VERSION
from .structures import (
    Action,
    ActionIntention,
    ActionType,
    CooperationRequest,
    CoordinationDirective,
    Experience,
    KnowledgeShare,
    Message,
    MultiAgentReward,
    ProposalAccepted,
    ProposalRejected,
    State,
    StrategySummary,
    TradeProposal,
)
from .tabular import TabularQLearner
from .utils import spawn_rngs

logger = logging.getLogger(__name__)


COOPERATION_LEVELS: Dict[AgentType, float] = {
    AgentType.INDEPENDENT: 0.2,
    AgentType.COOPERATIVE: 0.8,
    AgentType.COMPETITIVE: 0.5,
    AgentType.MIXED: 0.5,
}

# Benefit score of each proposal type before scaling by cooperation level
PROPOSAL_SCORES: Dict[str, float] = {
    "resource_sharing": 0.8,
    "joint_development": 0.7,
    "information_exchange": 0.6,
    "trade": 0.5,
}

COOPERATION_STEP = 0.01
# Actions a cooperative agent leans toward when they are nearly as likely
COOPERATIVE_ACTIONS = (ActionType.TRADE_OFFER, ActionType.DEVELOP_PROPERTY)


def build_algorithm(config: AgentConfig, rng: np.random.Generator) -> LearningAlgorithm:
    """
    Create the learner named by ``config.algorithm``.

    Args:
        config: Agent configuration
        rng: Random generator owned by the learner

    Returns:
        LearningAlgorithm instance

    Raises:
        ConfigError: If the algorithm identifier is unknown
    """
    algorithm = parse_enum(AlgorithmType, config.algorithm, "algorithm")
    if algorithm == AlgorithmType.Q_LEARNING:
        return TabularQLearner(config.tabular, config.exploration, rng)
    if algorithm == AlgorithmType.DQN:
        return DQNLearner(config.dqn, config.exploration, config.state_size, rng)
    if algorithm == AlgorithmType.DOUBLE_DQN:
        return DoubleDQNLearner(config.dqn, config.exploration, config.state_size, rng)
    if algorithm == AlgorithmType.ACTOR_CRITIC:
        return ActorCriticLearner(config.actor_critic, config.exploration, config.state_size, rng)
    if algorithm == AlgorithmType.REINFORCE:
        return ReinforceLearner(config.actor_critic, config.exploration, config.state_size, rng)
    raise ConfigError(f"No learner registered for algorithm '{config.algorithm}'")


class AgentStatistics:
    """Per-agent reward and action bookkeeping."""

    def __init__(self, window: int = 10):
        self.window = window
        self.episode_rewards: List[float] = []
        self.current_episode_reward = 0.0
        self.action_counts: Counter = Counter()
        self.action_rewards: Dict[str, float] = defaultdict(float)
        self.previous_average: Optional[float] = None

    def record_step(self, action: Action, reward: float):
        self.current_episode_reward += reward
        self.action_counts[action.type.value] += 1
        self.action_rewards[action.type.value] += reward

    def close_episode(self) -> float:
        total = self.current_episode_reward
        self.episode_rewards.append(total)
        self.current_episode_reward = 0.0
        return total

    @property
    def moving_average(self) -> float:
        if not self.episode_rewards:
            return 0.0
        return float(np.mean(self.episode_rewards[-self.window:]))

    def best_actions(self, limit: int = 3) -> List[str]:
        """Action types with the highest mean reward."""
        ranked = sorted(self.action_counts,
                        key=lambda a: self.action_rewards[a] / self.action_counts[a],
                        reverse=True)
        return ranked[:limit]


class Agent:
    """
    Learning agent taking part in a multi-agent game.

    Attributes:
        agent_id: Unique identifier
        agent_type: Behavioral type
        algorithm: Learner chosen at construction
        cooperation_level: Willingness to cooperate in [0, 1]
        communication_enabled: Whether the agent sends and reads messages
        inbox: Messages waiting to be processed
        shared_knowledge: Latest strategy summary received from each agent
        neighbor_intentions: Latest intended action announced by each neighbor
        last_directive: Latest hierarchical directive received
        stats: Reward and action bookkeeping
    """

    def __init__(self, config: AgentConfig, rng: np.random.Generator,
                 reward_window: int = 10, clock: Callable[[], float] = time.time):
        """
        Initialize the agent.

        Args:
            config: Agent configuration
            rng: Random generator handed to the learner
            reward_window: Window of the reward moving average
            clock: Time source for message timestamps

        Raises:
            ConfigError: If the algorithm or an optimizer is unknown
        """
        self.config = config
        self.agent_id = config.agent_id
        self.agent_type = parse_enum(AgentType, config.agent_type, "agent type")
        self.algorithm_name = parse_enum(AlgorithmType, config.algorithm, "algorithm").value
        self.algorithm = build_algorithm(config, rng)
        self.clock = clock

        self.cooperation_level = COOPERATION_LEVELS[self.agent_type]
        self.communication_enabled = self.agent_type != AgentType.INDEPENDENT
        self.inbox: Deque[Message] = deque()
        self.shared_knowledge: Dict[str, StrategySummary] = {}
        self.neighbor_intentions: Dict[str, Action] = {}
        self.last_directive: Optional[CoordinationDirective] = None
        self.stats = AgentStatistics(window=reward_window)

    def __repr__(self) -> str:
        return f"Agent({self.agent_id!r}, {self.agent_type.value}, {self.algorithm_name})"

    @property
    def exploration_rate(self) -> float:
        return self.algorithm.exploration_rate

    @exploration_rate.setter
    def exploration_rate(self, value: float):
        self.algorithm.exploration_rate = value

    @property
    def is_cooperative(self) -> bool:
        return self.agent_type in (AgentType.COOPERATIVE, AgentType.MIXED)

    # ------------------------------------------------------------------
    # Acting and learning
    # ------------------------------------------------------------------

    def select_action(self, state: State, available_actions: Sequence[Action]) -> Action:
        """
        Select an action using the learner.

        Args:
            state: Encoded observation of this agent
            available_actions: Legal actions

        Returns:
            Chosen action (a pass when nothing is available)
        """
        if not available_actions:
            return Action(ActionType.PASS_TURN)
        return self.algorithm.select_action(state, list(available_actions))

    def select_action_in_context(self, state: State, available_actions: Sequence[Action],
                                 other_agent_ids: Sequence[str]) -> Action:
        """
        Select an action knowing which other agents take part.

        Cooperative agents with a policy-based learner switch to a
        cooperative action when it is almost as likely as the chosen one.
        """
        action = self.select_action(state, available_actions)
        if self.agent_type != AgentType.COOPERATIVE or not other_agent_ids:
            return action
        probabilities = self.algorithm.action_probabilities(state, list(available_actions))
        keys = [candidate.key for candidate in available_actions]
        if probabilities is None or action.key not in keys:
            return action
        chosen_p = probabilities[keys.index(action.key)]
        threshold = self.config.actor_critic.cooperative_bias * chosen_p
        for candidate, p in zip(available_actions, probabilities):
            if candidate.type in COOPERATIVE_ACTIONS and candidate.type != action.type and p > threshold:
                return candidate.with_confidence(p)
        return action

    def update_experience(self, experience: Experience) -> Optional[float]:
        """Hand one transition to the learner."""
        self.stats.record_step(experience.action, experience.reward.total)
        return self.algorithm.observe(experience)

    def complete_episode(self) -> Dict[str, float]:
        """Close the episode for the learner and the statistics."""
        episode_reward = self.stats.close_episode()
        stats = dict(self.algorithm.end_episode())
        stats["episode_reward"] = episode_reward
        stats["moving_average_reward"] = self.stats.moving_average
        return stats

    def discard_episode(self):
        """Forget an evaluation episode without learning from it."""
        self.stats.current_episode_reward = 0.0
        self.algorithm.discard_episode()

    def process_multi_agent_reward(self, reward: MultiAgentReward):
        """Nudge the cooperation level from the shared reward signals."""
        if reward.cooperation_bonus > 0 and self.agent_type == AgentType.COOPERATIVE:
            self.cooperation_level = min(1.0, self.cooperation_level + COOPERATION_STEP)
        if reward.competition_penalty > 0 and self.agent_type == AgentType.COMPETITIVE:
            self.cooperation_level = max(0.0, self.cooperation_level - COOPERATION_STEP)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def receive_message(self, message: Message) -> None:
        self.inbox.append(message)

    def _message(self, receiver_id: str, payload, priority: int = 1) -> Message:
        return Message(self.agent_id, receiver_id, payload, timestamp=self.clock(), priority=priority)

    def process_incoming_messages(self) -> List[Message]:
        """
        Drain the inbox.

        Returns:
            Replies to send (answers to offers and cooperation requests)
        """
        replies: List[Message] = []
        while self.inbox:
            message = self.inbox.popleft()
            if not self.communication_enabled:
                continue
            payload = message.payload
            if isinstance(payload, KnowledgeShare):
                if self.is_cooperative:
                    self.shared_knowledge[message.sender_id] = payload.summary
            elif isinstance(payload, ActionIntention):
                self.neighbor_intentions[message.sender_id] = payload.action
            elif isinstance(payload, CoordinationDirective):
                self.last_directive = payload
            elif isinstance(payload, TradeProposal):
                reply = self.respond_to_proposal(message.sender_id, payload)
                if reply is not None:
                    replies.append(reply)
            elif isinstance(payload, CooperationRequest):
                if self.is_cooperative:
                    replies.append(self.propose_cooperation(message.sender_id))
            elif isinstance(payload, (ProposalAccepted, ProposalRejected)):
                logger.debug("%s got %s from %s", self.agent_id, message.kind.value, message.sender_id)
        return replies

    def evaluate_proposal(self, proposal: TradeProposal) -> float:
        """Benefit score of a proposal scaled by the cooperation level."""
        score = PROPOSAL_SCORES.get(proposal.proposal_type, 0.3)
        return score * self.cooperation_level

    def respond_to_proposal(self, sender_id: str, proposal: TradeProposal) -> Optional[Message]:
        """Cooperative agents accept valuable offers and reject the rest."""
        if self.agent_type != AgentType.COOPERATIVE:
            return None
        if self.evaluate_proposal(proposal) > 0.5:
            return self._message(sender_id, ProposalAccepted(proposal))
        return self._message(sender_id, ProposalRejected(proposal))

    def propose_cooperation(self, other_id: str) -> Message:
        proposal = TradeProposal(
            proposal_type="resource_sharing",
            terms={"duration": 10, "benefit_split": 0.5},
            expected_benefit=self.cooperation_level,
        )
        return self._message(other_id, proposal, priority=1)

    def strategy_summary(self) -> StrategySummary:
        return StrategySummary(
            best_actions=tuple(self.stats.best_actions()),
            average_reward=self.stats.moving_average,
            exploration_rate=self.exploration_rate,
            episodes=len(self.stats.episode_rewards),
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_model(self) -> Dict[str, Any]:
        """
        JSON serializable model blob.

        Returns:
            {weights, biases, hyperparameters, metadata, ...}
        """
        blob = self.algorithm.state_dict()
        blob["metadata"].update({
            "agent_id": self.agent_id,
            "agent_type": self.agent_type.value,
            "cooperation_level": self.cooperation_level,
            "saved_at": self.clock(),
        })
        return blob

    def load_model(self, blob: Dict[str, Any]):
        """
        Restore a blob produced by ``save_model``.

        Raises:
            ModelFormatError: If the blob belongs to another algorithm or shape
        """
        metadata = blob.get("metadata", {})
        version = metadata.get("version", MODEL_VERSION)
        if version.split(".")[0] != MODEL_VERSION.split(".")[0]:
            raise ModelFormatError(f"Unsupported model version {version}")
        self.algorithm.load_state_dict(blob)
        if "cooperation_level" in metadata:
            self.cooperation_level = float(metadata["cooperation_level"])
        logger.info("Loaded %s model into %s", self.algorithm_name, self.agent_id)


class MultiAgentSystem:
    """
    Container for all agents of a training run.
    """

    def __init__(self, agents: Optional[Sequence[Agent]] = None):
        self.agents: Dict[str, Agent] = {}
        for agent in agents or []:
            self.add(agent)

    @classmethod
    def from_configs(cls, configs: Sequence[AgentConfig], rng: np.random.Generator,
                     reward_window: int = 10) -> "MultiAgentSystem":
        """Build one agent per config, each with its own child generator."""
        children = spawn_rngs(rng, len(configs))
        return cls([Agent(config, child, reward_window=reward_window)
                    for config, child in zip(configs, children)])

    def add(self, agent: Agent):
        if agent.agent_id in self.agents:
            raise ValueError(f"Duplicate agent id {agent.agent_id}")
        self.agents[agent.agent_id] = agent

    def remove(self, agent_id: str) -> Optional[Agent]:
        return self.agents.pop(agent_id, None)

    def __getitem__(self, agent_id: str) -> Agent:
        return self.agents[agent_id]

    def __iter__(self) -> Iterator[Agent]:
        return iter(list(self.agents.values()))

    def __len__(self) -> int:
        return len(self.agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self.agents

    @property
    def ids(self) -> List[str]:
        return list(self.agents)

    def cooperative_agents(self) -> List[Agent]:
        return [a for a in self.agents.values() if a.is_cooperative]
