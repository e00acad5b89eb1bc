"""
Training events and a small typed publish/subscribe bus.

Events are frozen dataclasses. Subscribers register for one event class and
are only called with instances of that class (or of its subclasses).
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Tuple, Type, TypeVar, Union


@dataclass(frozen=True)
class TrainingStarted:
    episodes: int
    agent_ids: Tuple[str, ...]


@dataclass(frozen=True)
class TrainingCompleted:
    episodes: int
    duration: float
    stopped_early: bool = False


@dataclass(frozen=True)
class AgentAdded:
    agent_id: str
    agent_type: str
    algorithm: str


@dataclass(frozen=True)
class AgentRemoved:
    agent_id: str


@dataclass(frozen=True)
class EpisodeStarted:
    episode: int


@dataclass(frozen=True)
class StepCompleted:
    """Emitted after every environment step of an episode."""
    episode: int
    step: int
    rewards: Mapping[str, float]
    conflicts: int = 0
    messages: int = 0


@dataclass(frozen=True)
class EpisodeCompleted:
    episode: int
    steps: int
    rewards: Mapping[str, float]
    terminated: bool
    agent_stats: Mapping[str, Mapping[str, float]] = field(default_factory=dict)


@dataclass(frozen=True)
class KnowledgeShared:
    episode: int
    messages: int


@dataclass(frozen=True)
class ExplorationAdapted:
    episode: int
    rates: Mapping[str, float]


TrainingEvent = Union[TrainingStarted, TrainingCompleted, AgentAdded, AgentRemoved,
                      EpisodeStarted, StepCompleted, EpisodeCompleted, KnowledgeShared,
                      ExplorationAdapted]

E = TypeVar("E")


class EventBus:
    """
    Synchronous typed event bus.

    Publishing calls matching subscribers immediately in registration order.
    An exception raised by a subscriber stops the publication and propagates.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[type, List[Callable]] = {}

    def subscribe(self, event_type: Type[E], callback: Callable[[E], None]) -> Callable[[], None]:
        """Register ``callback`` for ``event_type``; returns an unsubscribe function."""
        self._subscribers.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def publish(self, event: TrainingEvent) -> None:
        # Copy so that subscribers may unsubscribe while being called
        for event_type, callbacks in list(self._subscribers.items()):
            if isinstance(event, event_type):
                for callback in list(callbacks):
                    callback(event)
