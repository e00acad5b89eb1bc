# ============================================================================
# File: learning.py
# Description: Common interface of the learning algorithms
# ============================================================================
"""
Learning algorithm interface

Every learner (tabular, DQN, actor-critic) implements ``LearningAlgorithm``.
The agent picks one implementation when it is built and afterwards only
talks to this interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .config import ExplorationConfig, ModelFormatError
from .structures import Action, Experience, State


MODEL_VERSION = "1.0.0"


class ExplorationSchedule:
    """
    Epsilon schedule with geometric per-episode decay.

    Attributes:
        epsilon: Current exploration rate
        decay: Factor applied after every episode
        minimum: Floor of the decayed rate
    """

    def __init__(self, config: ExplorationConfig):
        self.epsilon = config.initial
        self.decay = config.decay
        self.minimum = config.minimum

    def step(self) -> float:
        """Decay epsilon after an episode."""
        self.epsilon = max(self.minimum, self.epsilon * self.decay)
        return self.epsilon


class LearningAlgorithm(ABC):
    """
    Base class of all learners.

    Subclasses own their value function / networks and replay memory; nothing
    outside the learner mutates them.

    Attributes:
        name: Algorithm identifier stored in saved models
        rng: Injected random generator
        exploration: Exploration schedule
        step_count: Number of experiences observed
        episode_count: Number of completed episodes
    """

    name = "base"

    def __init__(self, exploration: ExplorationConfig, rng: np.random.Generator):
        self.rng = rng
        self.exploration = ExplorationSchedule(exploration)
        self.step_count = 0
        self.episode_count = 0

    @property
    def exploration_rate(self) -> float:
        return self.exploration.epsilon

    @exploration_rate.setter
    def exploration_rate(self, value: float):
        self.exploration.epsilon = float(value)

    @abstractmethod
    def select_action(self, state: State, available_actions: Sequence[Action]) -> Action:
        """
        Choose an action among ``available_actions``.

        Args:
            state: Encoded observation
            available_actions: Legal actions, must not be empty

        Returns:
            One of the available actions (or a low confidence pass)
        """

    @abstractmethod
    def observe(self, experience: Experience) -> Optional[float]:
        """
        Learn from one transition.

        Returns:
            A loss or TD error when an update happened, else None
        """

    def end_episode(self) -> Dict[str, float]:
        """Episode bookkeeping; returns episode statistics."""
        self.episode_count += 1
        self.exploration.step()
        return {"exploration_rate": self.exploration_rate}

    def discard_episode(self):
        """Drop per-episode state of an episode that is not learned from."""

    def action_probabilities(self, state: State,
                             available_actions: Sequence[Action]) -> Optional[np.ndarray]:
        """Policy probabilities of ``available_actions``; None for value-based learners."""
        return None

    def metrics(self) -> Dict[str, float]:
        return {
            "step_count": self.step_count,
            "episode_count": self.episode_count,
            "exploration_rate": self.exploration_rate,
        }

    @abstractmethod
    def hyperparameters(self) -> Dict[str, Any]:
        """JSON friendly hyperparameters stored with saved models."""

    @abstractmethod
    def state_dict(self) -> Dict[str, Any]:
        """
        JSON friendly model blob.

        Contains ``weights``, ``biases``, ``hyperparameters`` and ``metadata``
        plus learner specific sections.
        """

    @abstractmethod
    def load_state_dict(self, blob: Dict[str, Any]):
        """Restore a blob produced by ``state_dict``."""

    def _metadata(self) -> Dict[str, Any]:
        return {
            "step_count": self.step_count,
            "episode_count": self.episode_count,
            "version": MODEL_VERSION,
            "algorithm": self.name,
            "exploration_rate": self.exploration_rate,
        }

    def _load_metadata(self, metadata: Dict[str, Any]):
        saved = metadata.get("algorithm", self.name)
        if saved != self.name:
            raise ModelFormatError(f"Model was saved by '{saved}', cannot load into '{self.name}'")
        self.step_count = int(metadata.get("step_count", 0))
        self.episode_count = int(metadata.get("episode_count", 0))
        if "exploration_rate" in metadata:
            self.exploration_rate = metadata["exploration_rate"]


def random_choice(rng: np.random.Generator, actions: Sequence[Action]) -> Action:
    """Uniform draw from a non-empty action list."""
    return actions[int(rng.integers(len(actions)))]


def available_indices(actions: Sequence[Action]) -> List[int]:
    """Distinct output-layer indices covered by ``actions``, in order."""
    seen: List[int] = []
    for action in actions:
        if action.index not in seen:
            seen.append(action.index)
    return seen
