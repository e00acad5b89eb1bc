# ============================================================================
# File: structures.py
# Description: Immutable data model shared by learners, agents and trainer
# ============================================================================
"""
Data model for zodiac_marl

Defines the value types flowing through one training step:
- State / JointState: encoded observations
- Action / JointAction: decisions and their coordinated form
- Reward / MultiAgentReward: additive reward breakdowns
- Experience: a stored transition
- Coordination signals and message payloads as closed sets of variants
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np


# ============================================================================
# Actions
# ============================================================================

class ActionType(str, Enum):
    """Fixed action vocabulary of the board game."""
    ROLL_DICE = "roll_dice"
    BUY_PROPERTY = "buy_property"
    DEVELOP_PROPERTY = "develop_property"
    TRADE_OFFER = "trade_offer"
    USE_SKILL = "use_skill"
    MORTGAGE_PROPERTY = "mortgage_property"
    UNMORTGAGE_PROPERTY = "unmortgage_property"
    PASS_TURN = "pass_turn"


ACTION_VOCABULARY: Tuple[ActionType, ...] = tuple(ActionType)
ACTION_INDEX: Dict[ActionType, int] = {a: i for i, a in enumerate(ACTION_VOCABULARY)}


@dataclass(frozen=True)
class Substitution:
    """Why an action was replaced during coordination."""
    reason: str
    original: "Action"
    resource: Optional[str] = None


@dataclass(frozen=True)
class Action:
    """
    A decision taken by an agent.

    Attributes:
        type: Entry of the action vocabulary
        target: Resource the action is aimed at (property id, player id)
        parameters: Extra structured arguments, e.g. a trade amount
        confidence: Confidence/validity score in [0, 1]
        substitution: Set when coordination replaced the agent's own choice
    """
    type: ActionType
    target: Optional[str] = None
    parameters: Mapping[str, Any] = field(default_factory=dict, compare=False)
    confidence: float = 1.0
    substitution: Optional[Substitution] = None

    @property
    def key(self) -> str:
        """Identifier of the action inside a value table."""
        if self.target is None:
            return self.type.value
        return f"{self.type.value}:{self.target}"

    @property
    def index(self) -> int:
        """Position of the action type in the network output layer."""
        return ACTION_INDEX[self.type]

    def with_confidence(self, confidence: float) -> "Action":
        return replace(self, confidence=float(confidence))


def pass_action(confidence: float = 1.0) -> Action:
    return Action(ActionType.PASS_TURN, confidence=confidence)


# ============================================================================
# States
# ============================================================================

def state_key(features: Sequence[float]) -> str:
    """Content key of a feature vector, stable for identical vectors."""
    return "_".join(f"{float(value):.3f}" for value in features)


@dataclass(frozen=True)
class State:
    """
    Encoded observation of one player.

    Attributes:
        features: Fixed-length numeric feature vector
        player_id: Player the observation belongs to
        timestamp: Creation time
        key: Content key used for table lookups
    """
    features: Tuple[float, ...]
    player_id: str
    timestamp: float = 0.0
    key: str = ""

    @classmethod
    def from_features(cls, features: Sequence[float], player_id: str,
                      timestamp: Optional[float] = None) -> "State":
        values = tuple(float(v) for v in features)
        return cls(
            features=values,
            player_id=player_id,
            timestamp=time.time() if timestamp is None else timestamp,
            key=state_key(values),
        )

    def as_array(self) -> np.ndarray:
        return np.asarray(self.features, dtype=np.float64)

    def __len__(self) -> int:
        return len(self.features)


@dataclass(frozen=True)
class PlayerSnapshot:
    """Raw per-player game facts consumed by the encoder and coordination."""
    player_id: str
    position: int = 0
    money: float = 1500.0
    properties: Tuple[str, ...] = ()
    houses: int = 0
    hotels: int = 0
    mortgaged: Tuple[str, ...] = ()
    in_jail: bool = False
    turns_in_jail: int = 0
    double_roll_count: int = 0
    available_skills: int = 0
    used_skills: int = 0
    seasonal_bonus: float = 1.0
    bankrupt: bool = False


@dataclass(frozen=True)
class JointState:
    """
    Observation of all participating agents at one step.

    Attributes:
        global_state: Encoding of the game from the active player's seat
        agent_states: Per-agent encoded states
        players: Per-agent raw snapshots (positions, wealth, ...)
        round_number: Game round
        timestamp: Creation time
    """
    global_state: State
    agent_states: Mapping[str, State]
    players: Mapping[str, PlayerSnapshot]
    round_number: int = 0
    timestamp: float = 0.0

    @property
    def agent_ids(self) -> List[str]:
        return list(self.agent_states)

    def state_of(self, agent_id: str) -> State:
        return self.agent_states.get(agent_id, self.global_state)


# ============================================================================
# Rewards
# ============================================================================

@dataclass(frozen=True)
class Reward:
    """Additive reward breakdown; ``total`` is always the sum of ``components``."""
    total: float
    components: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def from_components(cls, components: Mapping[str, float]) -> "Reward":
        parts = {name: float(value) for name, value in components.items()}
        return cls(total=float(sum(parts.values())), components=parts)

    @classmethod
    def scalar(cls, value: float, name: str = "immediate") -> "Reward":
        return cls.from_components({name: value})

    @classmethod
    def zero(cls) -> "Reward":
        return cls(total=0.0, components={})

    def plus(self, name: str, value: float) -> "Reward":
        """Return a copy with one more component (added to an existing one)."""
        parts = dict(self.components)
        parts[name] = parts.get(name, 0.0) + float(value)
        return Reward.from_components(parts)


@dataclass(frozen=True)
class MultiAgentReward:
    """Rewards of one environment step for every agent."""
    individual: Mapping[str, Reward]
    shared: float = 0.0
    cooperation_bonus: float = 0.0
    competition_penalty: float = 0.0
    cooperation_level: float = 0.0

    def for_agent(self, agent_id: str) -> Reward:
        return self.individual.get(agent_id, Reward.zero())


# ============================================================================
# Experience
# ============================================================================

@dataclass(frozen=True)
class Experience:
    """
    One stored transition.

    ``advantage`` and ``returns`` are only set by ``with_annotations``,
    which returns a new object.
    """
    state: State
    action: Action
    reward: Reward
    next_state: State
    done: bool
    next_available_actions: Tuple[Action, ...] = ()
    episode_id: int = 0
    timestamp: float = 0.0
    advantage: Optional[float] = None
    returns: Optional[float] = None

    def with_annotations(self, advantage: float, returns: float) -> "Experience":
        return replace(self, advantage=float(advantage), returns=float(returns))


# ============================================================================
# Message payloads (one variant per purpose, the kind follows the variant)
# ============================================================================

class MessageKind(str, Enum):
    INFORMATION = "information"
    REQUEST = "request"
    OFFER = "offer"
    ACCEPT = "accept"
    REJECT = "reject"


BROADCAST = "broadcast"


@dataclass(frozen=True)
class ActionIntention:
    """Intended action shared with neighbors under distributed coordination."""
    kind: ClassVar[MessageKind] = MessageKind.INFORMATION
    action: Action


@dataclass(frozen=True)
class StrategySummary:
    """Best-strategy digest exchanged between cooperative agents."""
    best_actions: Tuple[str, ...]
    average_reward: float
    exploration_rate: float
    episodes: int


@dataclass(frozen=True)
class KnowledgeShare:
    kind: ClassVar[MessageKind] = MessageKind.INFORMATION
    summary: StrategySummary


@dataclass(frozen=True)
class CoordinationDirective:
    """Suggestion sent by a hierarchical leader to a follower."""
    kind: ClassVar[MessageKind] = MessageKind.REQUEST
    leader_id: str
    leader_action: Action
    suggested_action: Action
    reason: str


@dataclass(frozen=True)
class CooperationRequest:
    kind: ClassVar[MessageKind] = MessageKind.REQUEST
    topic: str = "cooperation"


@dataclass(frozen=True)
class TradeProposal:
    kind: ClassVar[MessageKind] = MessageKind.OFFER
    proposal_type: str
    terms: Mapping[str, Any] = field(default_factory=dict)
    expected_benefit: float = 0.0


@dataclass(frozen=True)
class ProposalAccepted:
    kind: ClassVar[MessageKind] = MessageKind.ACCEPT
    proposal: TradeProposal


@dataclass(frozen=True)
class ProposalRejected:
    kind: ClassVar[MessageKind] = MessageKind.REJECT
    proposal: TradeProposal
    reason: str = "insufficient_benefit"


MessagePayload = Union[ActionIntention, KnowledgeShare, CoordinationDirective,
                       CooperationRequest, TradeProposal, ProposalAccepted,
                       ProposalRejected]


@dataclass(frozen=True)
class Message:
    """Immutable message between agents."""
    sender_id: str
    receiver_id: str
    payload: MessagePayload
    timestamp: float = 0.0
    priority: int = 1

    @property
    def kind(self) -> MessageKind:
        return self.payload.kind

    @property
    def is_broadcast(self) -> bool:
        return self.receiver_id == BROADCAST


# ============================================================================
# Coordination signals
# ============================================================================

@dataclass(frozen=True)
class ConflictResolution:
    """Record of a centralized conflict resolution for one claimant."""
    resource: str
    severity: int
    original_action: Action
    new_action: Action


@dataclass(frozen=True)
class HierarchyAssignment:
    leader_id: str
    followers: Tuple[str, ...]


CoordinationSignal = Union[ConflictResolution, HierarchyAssignment]


@dataclass(frozen=True)
class JointAction:
    """Coordinated actions of all agents for one step."""
    actions: Mapping[str, Action]
    communications: Tuple[Message, ...] = ()
    signals: Mapping[str, CoordinationSignal] = field(default_factory=dict)
    timestamp: float = 0.0
