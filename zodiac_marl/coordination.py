# ============================================================================
# File: coordination.py
# Description: Joint-action coordination protocols
# ============================================================================
"""
Coordination Mechanism

Turns independently chosen per-agent actions into a joint action under one
protocol fixed for the training run:
- none: actions pass through unchanged
- centralized: conflicting claims on a resource are resolved, the first
  claimant keeps its action and the others pass
- distributed: agents tell their positional neighbors what they intend to do
- hierarchical: the wealthiest agent leads and sends directives to followers
"""

import logging
import time
from collections import OrderedDict, defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Mapping, Optional, Tuple

from .config import CoordinationConfig, CoordinationProtocol, parse_enum
from .structures import (
    Action,
    ActionIntention,
    ActionType,
    ConflictResolution,
    CoordinationDirective,
    CoordinationSignal,
    HierarchyAssignment,
    JointAction,
    JointState,
    Message,
    Substitution,
)

logger = logging.getLogger(__name__)

CONFLICT_REASON = "conflict_resolution"
CONFLICT_CONFIDENCE = 0.5

INTENTION_PRIORITY = 1
DIRECTIVE_PRIORITY = 2

# Leader action type -> (suggested follower action, confidence, reason)
FOLLOWER_RULES: Dict[ActionType, Tuple[ActionType, float, str]] = {
    ActionType.BUY_PROPERTY: (ActionType.DEVELOP_PROPERTY, 0.7, "support_leader_strategy"),
}
DEFAULT_FOLLOWER_RULE: Tuple[ActionType, float, str] = (ActionType.PASS_TURN, 0.5, "follow_leader")

# Action types whose target is a board property
CONTESTED_ACTIONS = frozenset({
    ActionType.BUY_PROPERTY,
    ActionType.DEVELOP_PROPERTY,
    ActionType.MORTGAGE_PROPERTY,
    ActionType.UNMORTGAGE_PROPERTY,
})


@dataclass(frozen=True)
class ActionConflict:
    """Several agents claiming the same resource in one step."""
    resource: str
    agent_ids: Tuple[str, ...]

    @property
    def severity(self) -> int:
        return len(self.agent_ids)


def detect_conflicts(actions: Mapping[str, Action]) -> List[ActionConflict]:
    """
    Group property claims by target; every property with more than one
    claimant is a conflict. Claimants keep the order of ``actions``.
    """
    claims: Dict[str, List[str]] = OrderedDict()
    for agent_id, action in actions.items():
        if action.type in CONTESTED_ACTIONS and action.target is not None:
            claims.setdefault(action.target, []).append(agent_id)
    return [ActionConflict(resource, tuple(agent_ids))
            for resource, agent_ids in claims.items() if len(agent_ids) > 1]


def positional_neighbors(positions: Mapping[str, int], agent_id: str, distance: int) -> List[str]:
    """Agents whose board position is within ``distance`` of ``agent_id``."""
    if agent_id not in positions:
        return []
    me = positions[agent_id]
    return [other_id for other_id, position in positions.items()
            if other_id != agent_id and abs(position - me) <= distance]


def suggest_follower_action(leader_action: Action) -> Tuple[Action, str]:
    """Suggested follower action and reason for a given leader action."""
    action_type, confidence, reason = FOLLOWER_RULES.get(leader_action.type, DEFAULT_FOLLOWER_RULE)
    return Action(action_type, confidence=confidence, parameters={"reason": reason}), reason


class CoordinationMechanism:
    """
    Resolves per-agent actions into a joint action.

    Attributes:
        protocol: Active protocol
        neighbor_distance: Maximum board distance between neighbors
        history: Recent coordination records per agent
        conflicts_resolved: Number of conflicts resolved so far
    """

    def __init__(self, config: Optional[CoordinationConfig] = None,
                 clock: Callable[[], float] = time.time):
        config = config or CoordinationConfig()
        self.protocol = parse_enum(CoordinationProtocol, config.protocol, "coordination protocol")
        self.neighbor_distance = config.neighbor_distance
        self.clock = clock
        self.history: Dict[str, Deque[str]] = defaultdict(lambda: deque(maxlen=config.history_length))
        self.conflicts_resolved = 0
        self.messages_sent = 0
        self._handlers = {
            CoordinationProtocol.NONE: self._coordinate_none,
            CoordinationProtocol.CENTRALIZED: self._coordinate_centralized,
            CoordinationProtocol.DISTRIBUTED: self._coordinate_distributed,
            CoordinationProtocol.HIERARCHICAL: self._coordinate_hierarchical,
        }

    def coordinate(self, actions: Mapping[str, Action], state: JointState) -> JointAction:
        """
        Build the joint action for one step.

        Args:
            actions: Action chosen by each agent, in agent order
            state: Current joint state

        Returns:
            JointAction with the (possibly substituted) actions, the messages
            to route and the coordination signals
        """
        return self._handlers[self.protocol](dict(actions), state)

    def _coordinate_none(self, actions: Dict[str, Action], state: JointState) -> JointAction:
        return JointAction(actions=actions, timestamp=self.clock())

    # ------------------------------------------------------------------
    # Centralized
    # ------------------------------------------------------------------

    def resolve_conflict(self, conflict: ActionConflict,
                         actions: Mapping[str, Action]) -> Dict[str, ConflictResolution]:
        """
        First claimant keeps its action; every other claimant passes.

        Returns:
            Resolution record per substituted agent
        """
        resolutions = {}
        for agent_id in conflict.agent_ids[1:]:
            original = actions[agent_id]
            substitute = Action(
                ActionType.PASS_TURN,
                confidence=CONFLICT_CONFIDENCE,
                parameters={"reason": CONFLICT_REASON},
                substitution=Substitution(CONFLICT_REASON, original, conflict.resource),
            )
            resolutions[agent_id] = ConflictResolution(
                resource=conflict.resource,
                severity=conflict.severity,
                original_action=original,
                new_action=substitute,
            )
        return resolutions

    def _coordinate_centralized(self, actions: Dict[str, Action], state: JointState) -> JointAction:
        signals: Dict[str, CoordinationSignal] = {}
        for conflict in detect_conflicts(actions):
            logger.debug("Conflict on %s between %s", conflict.resource, ", ".join(conflict.agent_ids))
            for agent_id, resolution in self.resolve_conflict(conflict, actions).items():
                actions[agent_id] = resolution.new_action
                signals[agent_id] = resolution
                self.history[agent_id].append(f"{CONFLICT_REASON}:{conflict.resource}")
            self.conflicts_resolved += 1
        return JointAction(actions=actions, signals=signals, timestamp=self.clock())

    # ------------------------------------------------------------------
    # Distributed
    # ------------------------------------------------------------------

    def neighbors(self, agent_id: str, state: JointState) -> List[str]:
        """Agents whose board position is within ``neighbor_distance``."""
        positions = {player_id: player.position for player_id, player in state.players.items()}
        return positional_neighbors(positions, agent_id, self.neighbor_distance)

    def _coordinate_distributed(self, actions: Dict[str, Action], state: JointState) -> JointAction:
        now = self.clock()
        messages = []
        for agent_id, action in actions.items():
            for neighbor_id in self.neighbors(agent_id, state):
                if neighbor_id not in actions:
                    continue
                messages.append(Message(agent_id, neighbor_id, ActionIntention(action),
                                        timestamp=now, priority=INTENTION_PRIORITY))
            self.history[agent_id].append(f"intention:{action.type.value}")
        self.messages_sent += len(messages)
        return JointAction(actions=actions, communications=tuple(messages), timestamp=now)

    # ------------------------------------------------------------------
    # Hierarchical
    # ------------------------------------------------------------------

    def select_leader(self, agent_ids: List[str], state: JointState) -> str:
        """Agent with the highest wealth; ties go to the first listed."""
        leader, best = agent_ids[0], float("-inf")
        for agent_id in agent_ids:
            player = state.players.get(agent_id)
            if player is not None and player.money > best:
                leader, best = agent_id, player.money
        return leader

    def _coordinate_hierarchical(self, actions: Dict[str, Action], state: JointState) -> JointAction:
        if not actions:
            return JointAction(actions=actions, timestamp=self.clock())
        now = self.clock()
        agent_ids = list(actions)
        leader_id = self.select_leader(agent_ids, state)
        leader_action = actions[leader_id]
        followers = tuple(a for a in agent_ids if a != leader_id)

        suggestion, reason = suggest_follower_action(leader_action)
        messages = tuple(
            Message(leader_id, follower_id,
                    CoordinationDirective(leader_id, leader_action, suggestion, reason),
                    timestamp=now, priority=DIRECTIVE_PRIORITY)
            for follower_id in followers
        )
        for follower_id in followers:
            self.history[follower_id].append(f"directive:{leader_id}")
        self.messages_sent += len(messages)
        signals = {leader_id: HierarchyAssignment(leader_id, followers)}
        return JointAction(actions=actions, communications=messages, signals=signals, timestamp=now)

    def get_statistics(self) -> Dict[str, float]:
        return {
            "protocol": self.protocol.value,
            "conflicts_resolved": self.conflicts_resolved,
            "messages_sent": self.messages_sent,
        }
