"""
Tabular Q-learning with optional TD(λ) eligibility traces.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .config import ExplorationConfig, TabularConfig
from .learning import LearningAlgorithm, random_choice
from .q_table import ConvergenceTracker, EligibilityTraces, QTable
from .structures import Action, Experience, State

logger = logging.getLogger(__name__)


class TabularQLearner(LearningAlgorithm):
    """
    Epsilon-greedy Q-learning over a lookup table.

    Implements Q(s,a) <- Q(s,a) + α[r + γ max_a' Q(s',a') - Q(s,a)].
    With eligibility traces enabled the TD error of each step is applied to
    every traced (state, action) pair instead of the visited pair only.

    Attributes:
        config: Tabular hyperparameters
        table: Value table
        traces: Eligibility traces (empty when traces are disabled)
        convergence: Tracker of recent value changes
    """

    name = "q_learning"

    def __init__(self, config: TabularConfig, exploration: ExplorationConfig,
                 rng: np.random.Generator):
        """
        Initialize the learner.

        Args:
            config: Tabular hyperparameters
            exploration: Epsilon schedule
            rng: Random generator used for exploration draws
        """
        super().__init__(exploration, rng)
        self.config = config
        self.table = QTable(initial_value=config.initial_value)
        self.traces = EligibilityTraces(threshold=config.trace_threshold)
        self.convergence = ConvergenceTracker(window=config.convergence_window)
        self.episode_td_errors: List[float] = []

    # ------------------------------------------------------------------
    # Acting
    # ------------------------------------------------------------------

    def q_value(self, state: State, action: Action) -> float:
        return self.table.get(state.key, action.key)

    def select_action(self, state: State, available_actions: Sequence[Action]) -> Action:
        keys = [action.key for action in available_actions]
        self.table.ensure_state(state.key, keys)
        if self.rng.random() < self.exploration_rate:
            return random_choice(self.rng, available_actions)
        best_key = self.table.best_action(state.key, keys)
        return available_actions[keys.index(best_key)]

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def update(self, state: State, action: Action, reward: float, next_state: State,
               next_available_actions: Sequence[Action], done: bool = False) -> float:
        """
        Apply one Q-learning update.

        Args:
            state: State the action was taken in
            action: Taken action
            reward: Scalar reward
            next_state: Resulting state
            next_available_actions: Legal actions in ``next_state``
            done: Whether ``next_state`` is terminal

        Returns:
            The TD error of the update
        """
        alpha, gamma = self.config.learning_rate, self.config.gamma
        next_keys = [a.key for a in next_available_actions]
        self.table.ensure_state(next_state.key, next_keys)

        current = self.table.get(state.key, action.key)
        max_next = 0.0 if done else self.table.max_value(next_state.key, next_keys)
        td_error = reward + gamma * max_next - current

        if self.config.eligibility_traces:
            self.traces.mark(state.key, action.key)
            for (s_key, a_key), trace in self.traces.items():
                self.table.add(s_key, a_key, alpha * td_error * trace)
            self.traces.decay(gamma * self.config.trace_decay)
        else:
            self.table.add(state.key, action.key, alpha * td_error)

        self.table.record_visit(state.key, action.key)
        self.convergence.record(td_error)
        self.episode_td_errors.append(abs(td_error))
        return td_error

    def observe(self, experience: Experience) -> Optional[float]:
        self.step_count += 1
        return self.update(
            experience.state,
            experience.action,
            experience.reward.total,
            experience.next_state,
            experience.next_available_actions,
            done=experience.done,
        )

    def end_episode(self) -> Dict[str, float]:
        stats = super().end_episode()
        stats["mean_td_error"] = float(np.mean(self.episode_td_errors)) if self.episode_td_errors else 0.0
        stats["table_states"] = len(self.table)
        self.traces.clear()
        self.episode_td_errors = []
        return stats

    def metrics(self) -> Dict[str, float]:
        metrics = super().metrics()
        metrics.update(self.convergence.get_metrics())
        metrics["table_states"] = len(self.table)
        metrics["total_updates"] = self.table.total_updates
        return metrics

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def hyperparameters(self) -> Dict[str, Any]:
        return {
            "learning_rate": self.config.learning_rate,
            "gamma": self.config.gamma,
            "initial_value": self.config.initial_value,
            "eligibility_traces": self.config.eligibility_traces,
            "trace_decay": self.config.trace_decay,
            "exploration_decay": self.exploration.decay,
            "exploration_minimum": self.exploration.minimum,
        }

    def state_dict(self) -> Dict[str, Any]:
        return {
            "weights": [],
            "biases": [],
            "hyperparameters": self.hyperparameters(),
            "metadata": self._metadata(),
            "q_table": self.table.to_dict(),
        }

    def load_state_dict(self, blob: Dict[str, Any]):
        self._load_metadata(blob.get("metadata", {}))
        self.table.load_dict(blob["q_table"])
        self.traces.clear()
        logger.debug("Loaded Q-table with %d states", len(self.table))
