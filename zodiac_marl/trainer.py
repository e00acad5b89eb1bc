# ============================================================================
# File: trainer.py
# Description: Training loop for the multi-agent board game
# ============================================================================
"""
Training Module for zodiac_marl

This module provides:
- Episode execution (act, coordinate, step, learn)
- Periodic knowledge sharing between cooperative agents
- Adaptive exploration from moving-average rewards
- Training statistics tracking and evaluation
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np
from tqdm import tqdm

from .agent import Agent, MultiAgentSystem
from .config import Config, TrainingConfig
from .coordination import CoordinationMechanism
from .environment import Environment
from .events import (
    AgentAdded,
    AgentRemoved,
    EpisodeCompleted,
    EpisodeStarted,
    EventBus,
    ExplorationAdapted,
    KnowledgeShared,
    StepCompleted,
    TrainingCompleted,
    TrainingStarted,
)
from .structures import ConflictResolution, Experience, JointState, KnowledgeShare, Message

logger = logging.getLogger(__name__)

KNOWLEDGE_PRIORITY = 0


class EpisodePhase(str, Enum):
    RUNNING = "running"
    DONE = "done"


@dataclass
class EpisodeSummary:
    """Outcome of one episode."""
    episode: int
    steps: int
    rewards: Dict[str, float]
    terminated: bool
    stopped: bool = False
    conflicts: int = 0
    messages: int = 0
    agent_stats: Dict[str, Dict[str, float]] = field(default_factory=dict)

    @property
    def total_reward(self) -> float:
        return float(sum(self.rewards.values()))


class TrainingOrchestrator:
    """
    Trainer for independent learners sharing one environment

    Handles:
    - Environment interaction
    - Coordination of the per-agent actions
    - Message routing through the environment
    - Statistics tracking

    Attributes:
        env: Environment adapter
        agents: Participating agents
        config: Training configuration
        coordination: Coordination mechanism
        events: Event bus notified of training progress
        training_stats: Per-episode statistics
    """

    def __init__(self, env: Environment, agents: MultiAgentSystem,
                 config: Optional[TrainingConfig] = None,
                 coordination: Optional[CoordinationMechanism] = None,
                 events: Optional[EventBus] = None,
                 log_interval: int = 10, show_progress: bool = True,
                 clock: Callable[[], float] = time.time):
        """
        Initialize trainer

        Args:
            env: Environment adapter
            agents: Agents taking part
            config: Training configuration
            coordination: Coordination mechanism (pass-through when omitted)
            events: Event bus, a private one is created when omitted
            log_interval: Log progress every N episodes
            show_progress: Display a tqdm progress bar
            clock: Time source
        """
        self.env = env
        self.agents = MultiAgentSystem()
        self.config = config or TrainingConfig()
        self.coordination = coordination or CoordinationMechanism()
        self.events = events or EventBus()
        self.log_interval = log_interval
        self.show_progress = show_progress
        self.clock = clock
        self.episode = 0
        self._stop_requested = False

        self.training_stats: Dict[str, object] = {
            "episode_rewards": {},
            "episode_lengths": [],
            "exploration_rates": {},
            "conflicts": [],
            "messages": [],
            "knowledge_shares": 0,
        }
        for agent in agents:
            self.add_agent(agent)

    @classmethod
    def from_config(cls, config: Config, env: Environment, rng: np.random.Generator,
                    events: Optional[EventBus] = None) -> "TrainingOrchestrator":
        """Build agents and coordination from a master config."""
        agents = MultiAgentSystem.from_configs(config.agents, rng,
                                               reward_window=config.training.reward_window)
        return cls(env, agents, config=config.training,
                   coordination=CoordinationMechanism(config.coordination),
                   events=events,
                   log_interval=config.logging.log_interval,
                   show_progress=config.logging.show_progress)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def add_agent(self, agent: Agent):
        self.agents.add(agent)
        self.env.add_agent(agent)
        self.training_stats["episode_rewards"].setdefault(agent.agent_id, [])
        self.training_stats["exploration_rates"].setdefault(agent.agent_id, [])
        self.events.publish(AgentAdded(agent.agent_id, agent.agent_type.value, agent.algorithm_name))

    def remove_agent(self, agent_id: str):
        if self.agents.remove(agent_id) is not None:
            self.env.remove_agent(agent_id)
            self.events.publish(AgentRemoved(agent_id))

    def request_stop(self):
        """Ask the running episode to stop before its next step."""
        self._stop_requested = True

    # ------------------------------------------------------------------
    # Episodes
    # ------------------------------------------------------------------

    def _route(self, messages) -> int:
        delivered = 0
        for message in messages:
            if message.is_broadcast:
                delivered += self.env.broadcast_message(message)
            elif self.env.deliver_message(message):
                delivered += 1
        return delivered

    def _select_actions(self, state: JointState):
        actions = {}
        ids = self.agents.ids
        for agent in self.agents:
            available = self.env.available_actions(state, agent.agent_id)
            others = [other for other in ids if other != agent.agent_id]
            actions[agent.agent_id] = agent.select_action_in_context(
                state.state_of(agent.agent_id), available, others)
        return actions

    def run_episode(self, training: bool = True) -> EpisodeSummary:
        """
        Run a single episode

        Args:
            training: If True, agents learn from the generated experiences

        Returns:
            EpisodeSummary of the episode
        """
        episode = self.episode
        self.events.publish(EpisodeStarted(episode))
        state = self.env.reset()
        rewards = {agent_id: 0.0 for agent_id in self.agents.ids}
        conflicts = messages = 0
        step = 0
        done = False
        phase = EpisodePhase.RUNNING

        while phase == EpisodePhase.RUNNING:
            if done or step >= self.config.max_steps_per_episode or self._stop_requested:
                phase = EpisodePhase.DONE
                continue

            actions = self._select_actions(state)
            joint_action = self.coordination.coordinate(actions, state)
            if self.config.enable_communication:
                messages += self._route(joint_action.communications)
            conflicts += sum(1 for s in joint_action.signals.values() if isinstance(s, ConflictResolution))

            outcome = self.env.step(joint_action)
            done = outcome.done
            step_rewards = {}
            for agent in self.agents:
                agent_id = agent.agent_id
                reward = outcome.rewards.for_agent(agent_id)
                step_rewards[agent_id] = reward.total
                rewards[agent_id] = rewards.get(agent_id, 0.0) + reward.total
                if not training:
                    continue
                experience = Experience(
                    state=state.state_of(agent_id),
                    action=joint_action.actions[agent_id],
                    reward=reward,
                    next_state=outcome.next_state.state_of(agent_id),
                    done=done,
                    next_available_actions=tuple(self.env.available_actions(outcome.next_state, agent_id)),
                    episode_id=episode,
                    timestamp=self.clock(),
                )
                agent.update_experience(experience)
                agent.process_multi_agent_reward(outcome.rewards)

            if self.config.enable_communication:
                for agent in self.agents:
                    messages += self._route(agent.process_incoming_messages())

            state = outcome.next_state
            step += 1
            self.events.publish(StepCompleted(episode, step, step_rewards, conflicts, messages))

        agent_stats = {}
        for agent in self.agents:
            if training:
                agent_stats[agent.agent_id] = agent.complete_episode()
            else:
                agent.discard_episode()

        stopped = self._stop_requested
        summary = EpisodeSummary(episode, step, rewards, terminated=done, stopped=stopped,
                                 conflicts=conflicts, messages=messages, agent_stats=agent_stats)
        self.events.publish(EpisodeCompleted(episode, step, dict(rewards), done, agent_stats))
        return summary

    # ------------------------------------------------------------------
    # Periodic multi-agent bookkeeping
    # ------------------------------------------------------------------

    def share_knowledge(self) -> int:
        """
        Cooperative and mixed agents send each other their strategy summary.

        Returns:
            Number of delivered messages
        """
        cooperative = self.agents.cooperative_agents()
        now = self.clock()
        messages = []
        for sender in cooperative:
            summary = sender.strategy_summary()
            for receiver in cooperative:
                if receiver.agent_id != sender.agent_id:
                    messages.append(Message(sender.agent_id, receiver.agent_id, KnowledgeShare(summary),
                                            timestamp=now, priority=KNOWLEDGE_PRIORITY))
        delivered = self._route(messages)
        for agent in cooperative:
            agent.process_incoming_messages()
        self.training_stats["knowledge_shares"] += delivered
        self.events.publish(KnowledgeShared(self.episode, delivered))
        return delivered

    def adapt_exploration(self) -> Dict[str, float]:
        """
        Nudge each agent's exploration rate.

        Shrinks it by ``1 - factor`` when the moving-average reward improved
        since the last adaptation, grows it by ``1 + factor`` otherwise, and
        clamps to [min_exploration, max_exploration].
        """
        cfg = self.config
        rates = {}
        for agent in self.agents:
            average = agent.stats.moving_average
            previous = agent.stats.previous_average
            improved = previous is not None and average > previous
            factor = (1.0 - cfg.adaptation_factor) if improved else (1.0 + cfg.adaptation_factor)
            rate = float(np.clip(agent.exploration_rate * factor, cfg.min_exploration, cfg.max_exploration))
            agent.exploration_rate = rate
            agent.stats.previous_average = average
            rates[agent.agent_id] = rate
        self.events.publish(ExplorationAdapted(self.episode, rates))
        return rates

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _record(self, summary: EpisodeSummary):
        for agent_id, reward in summary.rewards.items():
            self.training_stats["episode_rewards"].setdefault(agent_id, []).append(reward)
        for agent in self.agents:
            self.training_stats["exploration_rates"].setdefault(agent.agent_id, []).append(
                agent.exploration_rate)
        self.training_stats["episode_lengths"].append(summary.steps)
        self.training_stats["conflicts"].append(summary.conflicts)
        self.training_stats["messages"].append(summary.messages)

    def train(self, n_episodes: Optional[int] = None) -> Dict[str, object]:
        """
        Main training loop

        Args:
            n_episodes: Episodes to run, defaults to ``config.max_episodes``

        Returns:
            training_stats: Dictionary of training statistics
        """
        n_episodes = self.config.max_episodes if n_episodes is None else n_episodes
        self._stop_requested = False
        start_time = self.clock()
        logger.info("Starting training: %d episodes, %d agents, coordination=%s",
                    n_episodes, len(self.agents), self.coordination.protocol.value)
        self.events.publish(TrainingStarted(n_episodes, tuple(self.agents.ids)))

        pbar = tqdm(range(n_episodes), desc="Training", unit="episode", disable=not self.show_progress)
        for _ in pbar:
            summary = self.run_episode(training=True)
            self._record(summary)
            self.episode += 1

            if self.episode % self.config.knowledge_share_interval == 0:
                self.share_knowledge()
            if self.episode % self.config.adaptation_interval == 0:
                self.adapt_exploration()

            pbar.set_postfix({
                "Reward": f"{summary.total_reward:.2f}",
                "Steps": summary.steps,
            })
            if self.episode % self.log_interval == 0:
                self._log_progress()
            if summary.stopped:
                logger.info("Training stopped at episode %d", self.episode)
                break
        pbar.close()

        duration = self.clock() - start_time
        self.training_stats["total_time"] = duration
        self.events.publish(TrainingCompleted(self.episode, duration, self._stop_requested))
        logger.info("Training complete after %d episodes (%.1fs)", self.episode, duration)
        return self.training_stats

    def _log_progress(self):
        """Log training progress"""
        window = self.log_interval
        lengths = self.training_stats["episode_lengths"][-window:]
        logger.info("Episode %d: average length %.1f", self.episode, float(np.mean(lengths)) if lengths else 0.0)
        for agent in self.agents:
            logger.info("  %-12s avg reward %9.2f  exploration %.4f",
                        agent.agent_id, agent.stats.moving_average, agent.exploration_rate)

    def evaluate(self, n_episodes: int = 5) -> Dict[str, float]:
        """
        Run episodes without learning and without exploration.

        Returns:
            Mean episode reward per agent
        """
        saved_rates = {agent.agent_id: agent.exploration_rate for agent in self.agents}
        for agent in self.agents:
            agent.exploration_rate = 0.0
        totals: Dict[str, List[float]] = {agent_id: [] for agent_id in self.agents.ids}
        try:
            for _ in range(n_episodes):
                summary = self.run_episode(training=False)
                for agent_id, reward in summary.rewards.items():
                    totals.setdefault(agent_id, []).append(reward)
        finally:
            for agent in self.agents:
                agent.exploration_rate = saved_rates[agent.agent_id]
        return {agent_id: float(np.mean(values)) if values else 0.0 for agent_id, values in totals.items()}

    def save_models(self) -> Dict[str, dict]:
        return {agent.agent_id: agent.save_model() for agent in self.agents}

    def load_models(self, blobs: Dict[str, dict]):
        for agent_id, blob in blobs.items():
            if agent_id in self.agents:
                self.agents[agent_id].load_model(blob)
